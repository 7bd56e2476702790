from logging.config import fileConfig

from alembic import context

from telemetry_server import setup
from telemetry_server.common.model import BaseModel

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

setup.configure_models()
target_metadata = BaseModel.metadata


class MissingMigrationMessage(Exception): ...


def application_engine():
    # DB_TYPE, DB_PATH and DATABASE_URL resolve exactly as they do for the server
    from telemetry_server.network.database import engine

    return engine


def configure_context(**kwargs) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL for the configured database without connecting to it"""
    url = application_engine().url.render_as_string(hide_password=False)
    configure_context(
        url=url,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
        render_as_batch=url.startswith('sqlite'),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    if getattr(config.cmd_opts, 'autogenerate', False) and not getattr(config.cmd_opts, 'message', None):
        raise MissingMigrationMessage("Name the revision: alembic revision --autogenerate -m 'what changed'")

    with application_engine().connect() as connection:
        # SQLite alters tables by copying them
        configure_context(connection=connection, render_as_batch=connection.dialect.name == 'sqlite')
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
