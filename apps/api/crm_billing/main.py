from contextlib import asynccontextmanager, contextmanager
import logging
from typing import Any
import uuid

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.orm import Session

from crm_billing.api.routes import router as api_router
from crm_billing.billing.service import billing_service
from crm_billing.core.config import get_settings
from crm_billing.core.database import SessionLocal, get_db
from crm_billing.core.events import CUSTOMER_CREATED, SYSTEM_STARTED, InternalEvent, event_bus
from crm_billing.logging import configure_logging
from crm_billing.middleware.correlation_id import CorrelationIdMiddleware
from crm_billing.middleware.request_logging import RequestLoggingMiddleware
from crm_billing.otel import configure_tracing, server_request_hook
from crm_billing.scheduler import build_reminder_dispatcher, build_scheduler, build_status_sweeper


configure_logging()
logger = logging.getLogger("crm_billing.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"status": "started"})


def _open_session() -> Session:
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        return SessionLocal()
    return next(override())


@contextmanager
def _session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


def _on_customer_created(event: InternalEvent) -> None:
    if not isinstance(event.payload, dict):
        return
    envelope: dict[str, Any] = event.payload
    if not get_settings().auto_invoice_on_customer_create:
        return

    customer_id_raw = envelope.get("customer_id")
    if not isinstance(customer_id_raw, str):
        return
    try:
        customer_id = uuid.UUID(customer_id_raw)
    except ValueError:
        return

    try:
        with _session_scope() as session:
            billing_service.create_auto_invoice_if_absent(session, customer_id)
    except Exception as exc:
        logger.exception(
            "auto_invoice_on_create_failed",
            extra={"customer_id": customer_id_raw, "error": str(exc)[:500]},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe(SYSTEM_STARTED, _on_system_started)
    event_bus.subscribe(CUSTOMER_CREATED, _on_customer_created)

    settings = get_settings()
    if getattr(app.state, "reminder_dispatcher", None) is None:
        app.state.reminder_dispatcher = build_reminder_dispatcher(settings, session_factory=_open_session)
    if getattr(app.state, "status_sweeper", None) is None:
        app.state.status_sweeper = build_status_sweeper(settings, session_factory=_open_session)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(app.state.reminder_dispatcher, app.state.status_sweeper, settings)
        scheduler.start()
    app.state.scheduler = scheduler

    event_bus.publish(SYSTEM_STARTED, {"service": "api"})
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


settings = get_settings()
app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

configure_tracing(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
