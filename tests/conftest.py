import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from kanban.engine import MutationEngine
from kanban.main import app, get_engine
from kanban.storage import MemoryStore


@pytest.fixture
def clock():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def events():
    return []


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store, clock, events):
    return MutationEngine(store, clock=clock, observer=events.append)


@pytest.fixture
def alice(engine):
    return engine.register("Alice", "alice@example.com")


@pytest.fixture
def bob(engine):
    return engine.register("Bob", "bob@example.com")


@pytest.fixture
def carol(engine):
    return engine.register("Carol", "carol@example.com")


@pytest.fixture
def board(engine, alice):
    return engine.add_board(alice.id, "Trip Planning")


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()
