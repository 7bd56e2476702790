"""
In-process TTL caches for the read side.

Entries carry tags. Event writes and deletes invalidate by tag so only the
keys derived from event data are dropped.
"""

import json
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Set

from loguru import logger

from telemetry_server import settings

EVENTS_TAG = 'events'
SESSIONS_TAG = 'sessions'
USERS_TAG = 'users'
EVENT_WRITE_TAGS = (EVENTS_TAG, SESSIONS_TAG, USERS_TAG)


def cache_key(prefix: str, **params: Any) -> str:
    """
    Deterministic key from query parameters
    """
    return f'{prefix}:{json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))}'


class TTLCache:
    """Thread safe TTL map with tag based invalidation"""

    def __init__(self, name: str, default_ttl: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._data: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key not in self._expiry:
                return None
            if self._clock() > self._expiry[key]:
                # Lazy eviction
                self._evict(key)
                return None
            return self._data.get(key)

    def set(self, key: str, value: Any, ttl: Optional[float] = None, tags: Iterable[str] = ()) -> None:
        with self._lock:
            self._data[key] = value
            self._expiry[key] = self._clock() + (ttl if ttl is not None else self._default_ttl)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = key in self._data
            self._evict(key)
            return existed

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        with self._lock:
            keys: Set[str] = set()
            for tag in tags:
                keys |= self._tags.pop(tag, set())
            for key in keys:
                self._evict(key)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._expiry.clear()
            self._tags.clear()

    def cleanup(self) -> int:
        """
        Evicts every expired entry, returns how many were removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, expires_at in self._expiry.items() if now > expires_at]
            for key in expired:
                self._evict(key)
            return len(expired)

    def size(self) -> int:
        return len(self._data)

    def _evict(self, key: str) -> None:
        # Caller holds the lock
        self._data.pop(key, None)
        self._expiry.pop(key, None)
        for tag, keys in list(self._tags.items()):
            keys.discard(key)
            if not keys:
                del self._tags[tag]


stats_cache = TTLCache('stats', default_ttl=30)
sessions_cache = TTLCache('sessions', default_ttl=60)
user_ids_cache = TTLCache('userIds', default_ttl=120)
health_cache = TTLCache('health', default_ttl=settings.HEALTH_CHECK_CACHE_TTL_MS / 1000)

ALL_CACHES = (stats_cache, sessions_cache, user_ids_cache, health_cache)


def invalidate_event_caches() -> None:
    """
    Called after any event write or delete
    """
    removed = sum(cache.invalidate_tags(EVENT_WRITE_TAGS) for cache in ALL_CACHES)
    if removed:
        logger.debug('event caches invalidated', removed=removed)


def clear_all_caches() -> None:
    for cache in ALL_CACHES:
        cache.clear()


def cleanup_all_caches() -> int:
    return sum(cache.cleanup() for cache in ALL_CACHES)


class CacheSweeper:
    """
    Background thread evicting expired entries on a fixed interval
    """

    def __init__(self, interval_seconds: float = settings.CACHE_CLEANUP_INTERVAL_SECONDS):
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='cache-sweeper', daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            evicted = cleanup_all_caches()
            if evicted:
                logger.debug('expired cache entries evicted', evicted=evicted)
