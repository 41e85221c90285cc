"""
Shared fixtures: a fresh SQLite database per test, the FastAPI app behind a
TestClient, and gateways/sessions talking to it.
"""
import os

os.environ["TASKFLOW_DATABASE_URL"] = "sqlite://"
os.environ["TASKFLOW_CELERY_EAGER"] = "1"
os.environ.pop("TASKFLOW_API_KEY", None)
os.environ.pop("SMTP_USER", None)

import threading
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from taskflow import crud, database, models
from taskflow.gateway import Gateway
from taskflow.local_cache import LocalCache
from taskflow.main import app
from taskflow.notifications import Toaster
from taskflow.session import UserSession

PASSWORD = "secret123"


class Clock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class SerializedClient:
    """TestClient wrapper that lets one request through at a time.

    The client code fans requests out over worker threads; SQLite is
    happier when they reach it one by one.
    """

    def __init__(self, client: TestClient):
        self.client = client
        self.lock = threading.Lock()

    def request(self, method, url, **kwargs):
        with self.lock:
            return self.client.request(method, url, **kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = database.make_engine(f"sqlite:///{tmp_path / 'taskflow.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(db_factory):
    session = db_factory()
    yield session
    session.close()


@pytest.fixture
def client(db_factory):
    def override_get_db():
        session = db_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_gateway(client):
    def factory():
        return Gateway("http://testserver", http=SerializedClient(client), timeout=None)
    return factory


@pytest.fixture
def register(make_gateway):
    """Register a user and return a signed-in UserSession for them."""
    def factory(username, full_name=None):
        return UserSession.signup(
            make_gateway(), f"{username}@taskflow.io", PASSWORD, username, full_name=full_name or username.title()
        )
    return factory


@pytest.fixture
def alice(register):
    return register("alice", "Alice Adams")


@pytest.fixture
def bob(register):
    return register("bob", "Bob Brown")


@pytest.fixture
def make_super_admin(db):
    def promote(session):
        crud.set_super_admin(db, session.user_id, True)
        session.refresh_user()
        return session
    return promote


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache")


@pytest.fixture
def toaster():
    return Toaster()
