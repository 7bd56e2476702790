import subprocess
from importlib import metadata


def _git(*args: str) -> str:
    result = subprocess.run(['git', *args], capture_output=True, check=True, text=True, timeout=5)
    return result.stdout.strip()


def _resolve_version() -> str:
    """
    Prefer an exact release tag, then the short commit hash, then the
    installed distribution version.
    """
    for args in (('describe', '--tags', '--exact-match'), ('rev-parse', '--short', 'HEAD')):
        try:
            version = _git(*args)
        except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
            continue
        if version:
            return version

    try:
        return metadata.version('mcp-telemetry-server')
    except metadata.PackageNotFoundError:
        return 'unknown'


VERSION = _resolve_version()
