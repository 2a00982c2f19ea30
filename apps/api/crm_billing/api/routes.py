from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from crm_billing.billing.api import invoices_router, renewals_router
from crm_billing.billing.reminders import ReminderDispatcher
from crm_billing.billing.schemas import ReminderSweepRead, StatusSweepRead
from crm_billing.billing.sweeps import StatusSweeper
from crm_billing.core.config import get_settings
from crm_billing.customers.api import router as customers_router
from crm_billing.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(customers_router)
router.include_router(renewals_router)
router.include_router(invoices_router)

jobs_router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_reminder_dispatcher(request: Request) -> ReminderDispatcher:
    dispatcher = getattr(request.app.state, "reminder_dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="reminder dispatcher not configured")
    return dispatcher


def get_status_sweeper(request: Request) -> StatusSweeper:
    sweeper = getattr(request.app.state, "status_sweeper", None)
    if sweeper is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="status sweeper not configured")
    return sweeper


@jobs_router.post("/reminder-sweep", response_model=ReminderSweepRead)
def run_reminder_sweep(dispatcher: ReminderDispatcher = Depends(get_reminder_dispatcher)) -> ReminderSweepRead:
    result = dispatcher.run_reminder_sweep()
    return ReminderSweepRead(
        sent_count=result.sent_count,
        failed_count=result.failed_count,
        skipped_count=result.skipped_count,
        skipped_overlap=result.skipped_overlap,
    )


@jobs_router.post("/status-sweep", response_model=StatusSweepRead)
def run_status_sweep(sweeper: StatusSweeper = Depends(get_status_sweeper)) -> StatusSweepRead:
    result = sweeper.run_status_sweep()
    return StatusSweepRead(
        renewals_expired=result.renewals_expired,
        renewals_expiring=result.renewals_expiring,
        invoices_overdue=result.invoices_overdue,
    )


router.include_router(jobs_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
