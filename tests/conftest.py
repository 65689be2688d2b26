"""
Test configuration and fixtures for the short link service.
This centralizes all test setup, making individual tests clean.
"""

import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from main import app
from shortlink_app.cache.strategies import InMemoryCache
from shortlink_app.dependencies import get_cache, get_queue, get_storage
from shortlink_app.queue.strategies import InMemoryQueue
from shortlink_app.security import TokenAuthority
from shortlink_app.storage.strategies import InMemoryStorage, SQLAlchemyStorage


@pytest.fixture(scope="function")
def engine():
    """
    Fresh in-memory SQLite database for each test.
    StaticPool keeps the single connection alive across sessions and threads.
    """
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield test_engine
    finally:
        test_engine.dispose()


@pytest.fixture(scope="function")
def sql_storage(engine):
    return SQLAlchemyStorage(engine)


@pytest.fixture(scope="function")
def memory_storage():
    return InMemoryStorage()


@pytest.fixture(params=["sqlalchemy", "memory"])
def storage(request):
    """Runs a test once per storage backend"""
    if request.param == "sqlalchemy":
        return request.getfixturevalue("sql_storage")
    return request.getfixturevalue("memory_storage")


@pytest.fixture
def authority():
    return TokenAuthority()


@pytest.fixture
def auth_headers(authority):
    return {"Authorization": f"Bearer {authority.issue_token('user-1')}"}


@pytest.fixture
def other_auth_headers(authority):
    return {"Authorization": f"Bearer {authority.issue_token('user-2')}"}


@pytest.fixture(scope="function")
def client(sql_storage):
    """
    Test client with storage, cache and queue dependencies overridden.
    Entering the client runs the lifespan, which starts the click pipeline.
    """
    cache = InMemoryCache()
    queue = InMemoryQueue(max_size=1000, publish_timeout=0.1)

    app.dependency_overrides[get_storage] = lambda: sql_storage
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_queue] = lambda: queue

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def drain_clicks(client):
    """Blocks until every handed-off click is stored and aggregated"""
    def drain():
        pipeline = client.app.state.click_pipeline
        assert client.portal.call(pipeline.drain, 5.0)
    return drain


@pytest.fixture
def slow_queries(engine):
    """Call with a delay to make every statement on the test engine that slow"""
    listeners = []

    def slow_down(delay):
        def pause(conn, cursor, statement, parameters, context, executemany):
            time.sleep(delay)
        event.listen(engine, "before_cursor_execute", pause)
        listeners.append(pause)

    yield slow_down

    for pause in listeners:
        event.remove(engine, "before_cursor_execute", pause)
