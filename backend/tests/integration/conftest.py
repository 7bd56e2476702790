import pytest
from sqlalchemy.orm import Session

from telemetry_server.network.database.session import db as session_manager


@pytest.fixture(scope='function', autouse=True)
def db() -> Session:
    with session_manager(commit_on_success=False):
        session = session_manager.session

        # Patch commit() to prevent accidental commits in tests
        # This allows production code to use db.session.commit() naturally
        # without breaking test rollbacks
        def no_op_commit():
            # In tests, flush changes but don't actually commit
            session.flush()

        session.commit = no_op_commit

        yield session

    session.rollback()
