from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

from telemetry_server.app.events.domains import EventRead
from telemetry_server.common.model import BaseModel
from telemetry_server.network.database import db
from tests.factories.telemetry import build_event


@pytest.fixture(scope='module')
def client() -> TestClient:
    from telemetry_server.network.http.server import server

    # Unhandled errors are answered by the app's own 500 handler
    with TestClient(server, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture(autouse=True)
def clean_tables():
    """
    Requests commit for real, so every table is emptied after each test
    """
    yield
    with db(commit_on_success=True):
        for table in reversed(BaseModel.metadata.sorted_tables):
            db.session.execute(delete(table))


@pytest.fixture
def stored_event() -> Callable[..., EventRead]:
    """
    Stores and commits an event outside of any request
    """
    from telemetry_server.app.events.service import EventService

    def _store(**kwargs: Any) -> EventRead:
        with db(commit_on_success=True):
            return EventService.store_event(build_event(**kwargs))

    return _store
