import time
from contextvars import ContextVar, Token
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from telemetry_server import settings
from telemetry_server.network.database.adapter import create_db_engine

engine = create_db_engine()

_session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

# Context local, so request threads and worker threads never share a session
_current_session: ContextVar[Optional[Session]] = ContextVar('_current_session', default=None)


if settings.DB_LOG_STATEMENTS:

    @event.listens_for(Engine, 'before_cursor_execute')
    def _start_statement_timer(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        conn.info.setdefault('statement_started', []).append(time.perf_counter())

    @event.listens_for(Engine, 'after_cursor_execute')
    def _log_statement(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        elapsed = time.perf_counter() - conn.info['statement_started'].pop()
        logger.debug(statement, parameters=parameters, duration=round(elapsed, 4))


class SessionNotAvailable(Exception):
    def __init__(self) -> None:
        super().__init__(
            'No database session in this context. Requests get one from the session '
            'middleware; scripts, actors and tests open one with `with db(): ...`'
        )


class _SessionAccess(type):
    """Lets callers use `db.session` without holding a manager instance"""

    @property
    def session(cls) -> Session:
        session = _current_session.get()
        if session is None:
            raise SessionNotAvailable
        return session


class SessionManager(metaclass=_SessionAccess):
    """
    `with db(commit_on_success=True):` opens a session for the block, or joins
    the one already open in this context. Only the manager that opened a
    session commits, rolls back and closes it.
    """

    def __init__(self, session_kwargs: Optional[Dict[str, Any]] = None, commit_on_success: bool = False) -> None:
        self.session_kwargs = session_kwargs or {}
        self.commit_on_success = commit_on_success
        self._token: Optional[Token[Optional[Session]]] = None

    def _should_open(self) -> bool:
        return _current_session.get() is None

    def __enter__(self) -> Any:
        if self._should_open():
            self._token = _current_session.set(_session_factory(**self.session_kwargs))
        return type(self)

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        if self._token is None:
            return

        session = _current_session.get()
        try:
            if session is not None:
                if exc_type is None and self.commit_on_success:
                    session.commit()
                else:
                    session.rollback()
        finally:
            if session is not None:
                session.close()
            _current_session.reset(self._token)
            self._token = None


db: _SessionAccess = SessionManager


class IsolatedSession(SessionManager):
    """
    Always opens its own session and restores the outer one on exit. Writes
    that must outlive a rolled back request use it, like the discard log and
    background persistence.
    """

    def _should_open(self) -> bool:
        return True

    def __enter__(self) -> Any:
        super().__enter__()
        return _current_session.get()


def on_commit(func: Callable[[], Any]) -> None:
    """
    Run `func` once after the current session commits. Nothing runs on rollback.
    """
    event.listen(db.session, 'after_commit', lambda session: func(), once=True)
