from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_billing.billing.models import Invoice
from crm_billing.billing.sweeps import StatusSweeper
from crm_billing.context import correlation_scope
from crm_billing.core.config import Settings, get_settings
from crm_billing.core.database import Base, get_db
from crm_billing.customers.models import Customer
from crm_billing.main import app
from crm_billing.otel import attach_memory_exporter
from crm_billing.scheduler import STATUS_SWEEP_JOB, BillingScheduler, ScheduledJob


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = attach_memory_exporter(Settings(otel_service_name="crm-billing-test"))
    exporter.clear()
    return exporter


@pytest.fixture()
def client(session_factory: sessionmaker[Session]) -> Generator[TestClient, None, None]:
    db_session = session_factory()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    db_session.close()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/customers",
        json={"name": "OTel Co", "one_time_price": "300"},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_job_span_contains_job_name_counts_and_correlation(
    session_factory: sessionmaker[Session],
    span_exporter: InMemorySpanExporter,
) -> None:
    session = session_factory()
    customer = Customer(name="Span Co")
    session.add(customer)
    session.flush()
    session.add(
        Invoice(
            customer_id=customer.id,
            invoice_number="INV-202403-0001",
            status="sent",
            issue_date=date(2024, 3, 1),
            due_date=date(2024, 3, 8),
        )
    )
    session.commit()
    session.close()

    sweeper = StatusSweeper(session_factory, clock=lambda: datetime(2024, 4, 1, tzinfo=timezone.utc))
    scheduler = BillingScheduler([ScheduledJob(name=STATUS_SWEEP_JOB, hours=(0,), run=sweeper.run_status_sweep)])

    with correlation_scope("otel-job-corr-1"):
        scheduler.run_now(STATUS_SWEEP_JOB)

    spans = span_exporter.get_finished_spans()
    job_spans = [span for span in spans if span.name == "billing.job.run"]
    sweep_spans = [span for span in spans if span.name == "billing.status_sweep"]
    assert any(
        span.attributes.get("job_name") == STATUS_SWEEP_JOB
        and span.attributes.get("correlation_id") == "otel-job-corr-1"
        for span in job_spans
    )
    assert sweep_spans
    assert sweep_spans[-1].attributes.get("invoices_overdue") == 1
    assert sweep_spans[-1].parent is not None
