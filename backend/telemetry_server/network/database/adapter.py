"""
Everything that differs between the embedded SQLite store and PostgreSQL
lives here. Services and queries stay dialect agnostic.
"""

import os
from typing import Any, Iterable, Type

from loguru import logger
from sqlalchemy import JSON, DDL, Table, create_engine, event, func, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from telemetry_server import settings

POSTGRESQL = 'postgresql'
SQLITE = 'sqlite'

# JSON document column, JSONB where the store supports containment queries
JSONPayload = JSON().with_variant(postgresql.JSONB(), POSTGRESQL)


def _sqlite_engine() -> Engine:
    directory = os.path.dirname(os.path.abspath(settings.DB_PATH))
    os.makedirs(directory, exist_ok=True)

    engine = create_engine(
        f'sqlite:///{settings.DB_PATH}',
        # Worker threads and request threads share the pool
        connect_args={'check_same_thread': False, 'timeout': 30},
        pool_pre_ping=True,
    )

    @event.listens_for(engine, 'connect')
    def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA synchronous=NORMAL')
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    return engine


def _postgresql_engine() -> Engine:
    database_uri = URL.create(
        drivername='postgresql',
        username=settings.DB_USER,
        password=settings.DB_PASSWORD or None,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME,
    ).render_as_string(hide_password=False)

    return create_engine(
        database_uri,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=0,
        connect_args={
            'options': '-c timezone=utc -c statement_timeout=300000',  # 5 min statement timeout
            'connect_timeout': 10,
        },
        pool_pre_ping=True,  # Verify connections before use
    )


def create_db_engine() -> Engine:
    if settings.DB_TYPE == POSTGRESQL:
        engine = _postgresql_engine()
    else:
        engine = _sqlite_engine()
    logger.debug(f'database engine created for {settings.DB_TYPE}')
    return engine


def dialect_name(session: Session) -> str:
    return session.get_bind().dialect.name


def upsert(
    session: Session,
    model: Type[Any],
    values: dict[str, Any],
    conflict_keys: Iterable[str],
    update_keys: Iterable[str],
) -> None:
    """
    INSERT ... ON CONFLICT (conflict_keys) DO UPDATE SET update_keys
    """
    insert = postgresql.insert if dialect_name(session) == POSTGRESQL else sqlite.insert
    statement = insert(model).values(**values)
    statement = statement.on_conflict_do_update(
        index_elements=list(conflict_keys),
        set_={key: getattr(statement.excluded, key) for key in update_keys},
    )
    session.execute(statement)


def day_bucket(column: Any) -> ColumnElement[Any]:
    """
    UTC calendar day of a naive UTC timestamp column. SQLite returns text,
    PostgreSQL a date; callers normalise with str().
    """
    return func.date(column)


def database_size(session: Session) -> int:
    if dialect_name(session) == POSTGRESQL:
        return int(session.execute(text('SELECT pg_database_size(current_database())')).scalar() or 0)

    size = 0
    # The write ahead log holds data not yet checkpointed into the main file
    for path in (settings.DB_PATH, f'{settings.DB_PATH}-wal'):
        if os.path.exists(path):
            size += os.path.getsize(path)
    return size


def register_json_containment_index(table: Table, column_name: str) -> None:
    """
    GIN index for JSON containment lookups, only where the store supports it
    """
    index_name = f'idx_{table.name}_{column_name}_gin'
    event.listen(
        table,
        'after_create',
        DDL(f'CREATE INDEX IF NOT EXISTS {index_name} ON {table.name} USING GIN ({column_name})').execute_if(
            dialect=POSTGRESQL
        ),
    )
