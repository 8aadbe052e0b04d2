# tests/conftest.py

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock

from negotiation_service.main import app
from negotiation_service.api import deps
from negotiation_service.db.session import get_db
from negotiation_service.db.base_class import Base
from negotiation_service import models  # noqa: F401  registers every table

from negotiation_service.core.kafka_producer import get_kafka_producer

from tests.utils.auth import INITIATOR_ORG, MockTokenPayload


# --- Test Database Setup ---
# One in-memory SQLite database per test; StaticPool keeps the single
# connection alive so every session sees the same tables.
@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


# --- Mock Dependencies Setup ---
@pytest.fixture
def current_user():
    """Token of the caller; tests switch sides by replacing org_id."""
    return MockTokenPayload(org_id=INITIATOR_ORG)


@pytest.fixture
def kafka_producer():
    return MagicMock()


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def client(db, current_user, kafka_producer):
    """
    TestClient backed by the SQLite test database, with auth and Kafka mocked.
    """

    def override_get_db():
        yield db

    def override_get_kafka_producer():
        yield kafka_producer

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_current_user] = lambda: current_user
    app.dependency_overrides[get_kafka_producer] = override_get_kafka_producer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
