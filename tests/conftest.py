"""
Shared test fixtures.

Every test gets its own in-memory SQLite database (StaticPool, so the app and
the test see the same connection) and a fresh application bound to it.
"""

import os

import pytest

# Environment must be in place before the application modules are imported.
# BCRYPT_ROUNDS sets the hashing cost for code that runs without an app.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlmodel import Session  # noqa: E402

from taskboard.config import Settings  # noqa: E402
from taskboard.database import create_db_engine  # noqa: E402
from taskboard.main import create_app  # noqa: E402
from taskboard.migrations import migrate  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(name="test_engine")
def test_engine_fixture():
    test_engine = create_db_engine(TEST_DATABASE_URL, echo=False)
    migrate(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(name="test_db_session")
def test_db_session_fixture(test_engine: Engine):
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(database_url=TEST_DATABASE_URL, bcrypt_rounds=4, log_level="WARNING")


@pytest.fixture(name="app")
def app_fixture(test_engine: Engine, settings: Settings):
    return create_app(settings=settings, engine=test_engine, configure_logging=False)


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture(name="make_client")
def make_client_fixture(app):
    """
    Factory for extra clients with their own cookie jars, e.g. a second user.
    """
    clients = []

    def _make() -> TestClient:
        new_client = TestClient(app)
        clients.append(new_client)
        return new_client

    yield _make
    for extra in clients:
        extra.close()


def register(client: TestClient, username: str, password: str = "secret-password"):
    response = client.post("/auth/register", json={"username": username, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture(name="authenticated_client")
def authenticated_client_fixture(client: TestClient):
    """
    A client holding the session cookie of a freshly registered user.
    """
    register(client, "authuser", "auth-password")
    return client


@pytest.fixture(name="other_client")
def other_client_fixture(make_client):
    other = make_client()
    register(other, "otheruser", "other-password")
    return other


@pytest.fixture(name="register_user")
def register_user_fixture():
    return register
