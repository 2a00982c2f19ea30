from celery import Celery
from celery.schedules import crontab

from crm_billing.core.config import get_settings

settings = get_settings()

celery_app = Celery("crm_billing", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=False,
    beat_schedule={
        "renewal-reminder-sweep": {
            "task": "crm_billing.tasks.reminder_sweep",
            "schedule": crontab(minute=0, hour=",".join(str(hour) for hour in settings.reminder_sweep_hours)),
        },
        "renewal-status-sweep": {
            "task": "crm_billing.tasks.status_sweep",
            "schedule": crontab(minute=0, hour=settings.status_sweep_hour),
        },
    },
)


def _run_job(job_name: str):
    from crm_billing.scheduler import build_reminder_dispatcher, build_scheduler, build_status_sweeper

    scheduler = build_scheduler(build_reminder_dispatcher(settings), build_status_sweeper(settings), settings)
    return scheduler.run_now(job_name)


@celery_app.task(name="crm_billing.tasks.reminder_sweep")
def reminder_sweep_task() -> dict[str, int | bool]:
    result = _run_job("reminder_sweep")
    return {
        "sent_count": result.sent_count,
        "failed_count": result.failed_count,
        "skipped_count": result.skipped_count,
        "skipped_overlap": result.skipped_overlap,
    }


@celery_app.task(name="crm_billing.tasks.status_sweep")
def status_sweep_task() -> dict[str, int]:
    result = _run_job("status_sweep")
    return {
        "renewals_expired": result.renewals_expired,
        "renewals_expiring": result.renewals_expiring,
        "invoices_overdue": result.invoices_overdue,
    }
