from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_billing import events
from crm_billing.core.config import get_settings
from crm_billing.core.database import Base, get_db
from crm_billing.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_event_log() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header(client: TestClient) -> None:
    response = client.get(f"/customers/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert uuid.UUID(header_value)


def test_supplied_correlation_id_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "req-42.billing"})
    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") == "req-42.billing"


def test_event_envelopes_include_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/customers",
        json={"name": "Corr Co", "monthly_price": "99"},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 201

    by_type = {item["event_type"]: item for item in events.published_events}
    assert by_type["customer.created"]["correlation_id"] == "corr-event-1"
    assert by_type["invoice.created"]["correlation_id"] == "corr-event-1"
    assert by_type["invoice.created"]["customer_id"] == response.json()["id"]


@pytest.mark.parametrize("supplied", ["has spaces in it", "x" * 129, "bad/id?"])
def test_unsafe_correlation_id_replaced_with_generated(client: TestClient, supplied: str) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": supplied})
    header_value = response.headers.get("x-correlation-id")
    assert header_value != supplied
    assert uuid.UUID(header_value)
