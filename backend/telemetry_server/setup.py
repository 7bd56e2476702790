def run():
    """
    Run before every entry point:
        fastapi server
        maintenance scripts
        alembic
        tests
    """
    from loguru import logger

    from telemetry_server.common.logs import configure_logging

    configure_logging()
    configure_queue()
    configure_models()
    configure_tasks()

    logger.info('application setup complete ✅')


def configure_queue():
    """
    Sets up the in-process dramatiq broker. The middleware list is explicit:
    persistence is never time limited, and `Retries` stays so actors can
    declare `max_retries`.
    """
    import dramatiq
    from dramatiq.middleware import Retries

    from telemetry_server import settings
    from telemetry_server.network.queue.broker import EagerBroker, StubBroker
    from telemetry_server.network.queue.middleware import BoundedQueueMiddleware, DramatiqTelemetryMiddleware

    middleware = [
        DramatiqTelemetryMiddleware(),
        BoundedQueueMiddleware(max_size=settings.INGEST_QUEUE_MAX_SIZE),
        Retries(),
    ]
    if settings.INGEST_BROKER == 'eager':
        # Run tasks in the calling thread
        # Useful for tests and de-buggers
        broker = EagerBroker(middleware=middleware)
    else:
        # Drained by the worker pool the http server starts
        broker = StubBroker(middleware=middleware)
    broker.emit_after('process_boot')
    dramatiq.set_broker(broker)


def configure_models():
    """
    When using declarative we need to run this for our entry points
    to have context on our models
    """
    from telemetry_server.common.model import import_model_modules

    import_model_modules()


def configure_tasks():
    """
    Actors bind to the broker that is current at import, so this runs
    after configure_queue
    """
    from telemetry_server.network.queue.worker import import_task_modules

    import_task_modules()


def create_tables():
    """
    Creates missing tables. Deployments that manage the schema with alembic
    turn this off with DB_CREATE_TABLES.
    """
    from loguru import logger

    from telemetry_server.common.model import BaseModel
    from telemetry_server.network.database import engine

    BaseModel.metadata.create_all(bind=engine)
    logger.info('database tables ready')


def backfill_derived_columns():
    from telemetry_server.app.events.service import EventService
    from telemetry_server.network.database import db

    with db(commit_on_success=True):
        return EventService.backfill_derived_columns()


def prepare_database():
    """
    Schema and data upkeep the server runs once at boot
    """
    from telemetry_server import settings

    if settings.DB_CREATE_TABLES:
        create_tables()
    if settings.DB_BACKFILL_ON_STARTUP:
        backfill_derived_columns()
