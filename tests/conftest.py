"""Pytest fixtures: manual clock, in-memory store, isolated DB per test, FastAPI TestClient."""
import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from momentum.models import AppState, Chain

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start=T0):
        self.current = start

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class MemoryStore:
    """Same surface as momentum.database, kept in memory."""

    def __init__(self):
        self.chains = []
        self.scheduled_sessions = []
        self.active_session = None
        self.completion_history = []
        self.saves = 0

    def get_chains(self):
        return list(self.chains)

    def save_chains(self, chains):
        self.saves += 1
        self.chains = [c.model_copy(deep=True) for c in chains]

    def get_scheduled_sessions(self):
        return list(self.scheduled_sessions)

    def save_scheduled_sessions(self, sessions):
        self.saves += 1
        self.scheduled_sessions = [s.model_copy(deep=True) for s in sessions]

    def get_active_session(self):
        return self.active_session

    def save_active_session(self, session):
        self.saves += 1
        self.active_session = session.model_copy(deep=True) if session else None

    def get_completion_history(self):
        return list(self.completion_history)

    def save_completion_history(self, history):
        self.saves += 1
        self.completion_history = [h.model_copy(deep=True) for h in history]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def chain():
    return Chain(
        id="chain-1",
        name="Deep work",
        trigger="Put on headphones",
        duration=25,
        auxiliary_signal="Snap fingers",
        auxiliary_duration=15,
        created_at=T0 - timedelta(days=10),
    )


@pytest.fixture
def state(chain):
    return AppState(chains=[chain])


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def tracker(memory_store, clock):
    from momentum.tracker import Tracker
    return Tracker(store=memory_store, clock=clock)


@pytest.fixture
def db(tmp_path):
    os.environ["MOMENTUM_DB"] = str(tmp_path / "test.db")
    from momentum import database
    database.init_db()
    yield database
    os.environ.pop("MOMENTUM_DB", None)


# Set test DB before importing app so startup uses it
@pytest.fixture
def client(db, clock):
    os.environ["MOMENTUM_TIMERS"] = "0"
    from momentum.main import app, get_tracker
    from momentum.tracker import Tracker
    tracker = Tracker(store=db, clock=clock)
    app.dependency_overrides[get_tracker] = lambda: tracker
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    os.environ.pop("MOMENTUM_TIMERS", None)
