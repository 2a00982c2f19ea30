from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from crm_billing.billing.reminders import ReminderDispatcher
from crm_billing.billing.sweeps import StatusSweeper
from crm_billing.billing.temporal import Clock, utc_now
from crm_billing.context import job_scope
from crm_billing.core.config import Settings, get_settings
from crm_billing.messaging.notifier import Notifier, build_notifier
from crm_billing.metrics import observe_job
from crm_billing.otel import get_tracer


logger = logging.getLogger("crm_billing.scheduler")
tracer = get_tracer(__name__)

REMINDER_SWEEP_JOB = "reminder_sweep"
STATUS_SWEEP_JOB = "status_sweep"


@dataclass(slots=True)
class ScheduledJob:
    name: str
    hours: tuple[int, ...]
    run: Callable[[], Any]
    minute: int = 0


def next_run_after(job: ScheduledJob, now: datetime) -> datetime:
    """First UTC wall-clock slot of ``job`` strictly after ``now``."""
    now_utc = now.astimezone(timezone.utc)
    hours = sorted({hour % 24 for hour in job.hours})
    for day_offset in (0, 1):
        day = now_utc.date() + timedelta(days=day_offset)
        for hour in hours:
            candidate = datetime.combine(day, dt_time(hour, job.minute), tzinfo=timezone.utc)
            if candidate > now_utc:
                return candidate
    raise ValueError(f"job {job.name} has no hours configured")


class BillingScheduler:
    """Owns one timer per job and re-arms it after every run until stopped."""

    def __init__(
        self,
        jobs: Iterable[ScheduledJob],
        *,
        clock: Clock = utc_now,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.jobs = {job.name: job for job in jobs}
        self.clock = clock
        self.timer_factory = timer_factory
        self._timers: dict[str, Any] = {}
        self._next_runs: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            for job in self.jobs.values():
                self._arm(job)
        logger.info("scheduler.started", extra={"status": "running"})

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timers = list(self._timers.values())
            self._timers.clear()
            self._next_runs.clear()
        for timer in timers:
            timer.cancel()
        logger.info("scheduler.stopped", extra={"status": "stopped"})

    def next_run_at(self, job_name: str) -> datetime | None:
        return self._next_runs.get(job_name)

    def run_now(self, job_name: str) -> Any:
        job = self.jobs.get(job_name)
        if job is None:
            raise KeyError(job_name)
        return self._execute(job, reraise=True)

    def _arm(self, job: ScheduledJob) -> None:
        now = self.clock()
        run_at = next_run_after(job, now)
        delay = max(0.0, (run_at - now).total_seconds())
        timer = self.timer_factory(delay, self._fire, args=(job.name,))
        timer.daemon = True
        self._timers[job.name] = timer
        self._next_runs[job.name] = run_at
        timer.start()

    def _fire(self, job_name: str) -> None:
        job = self.jobs[job_name]
        try:
            self._execute(job, reraise=False)
        finally:
            with self._lock:
                if self._running:
                    self._arm(job)

    def _execute(self, job: ScheduledJob, *, reraise: bool) -> Any:
        started = time.perf_counter()
        final_status = "failed"
        with job_scope(job.name) as correlation_id:
            try:
                with tracer.start_as_current_span("billing.job.run") as span:
                    span.set_attribute("job_name", job.name)
                    span.set_attribute("correlation_id", correlation_id)
                    logger.info("job.started", extra={"job_name": job.name, "status": "running"})
                    try:
                        result = job.run()
                    except Exception as exc:
                        logger.exception("job.failed", extra={"job_name": job.name, "status": "failed", "error": str(exc)})
                        if reraise:
                            raise
                        return None
                    final_status = "succeeded"
                    logger.info(
                        "job.finished",
                        extra={
                            "job_name": job.name,
                            "status": final_status,
                            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        },
                    )
                    return result
            finally:
                observe_job(job.name, final_status, time.perf_counter() - started)


def _default_session_factory() -> Callable[[], Session]:
    from crm_billing.core.database import SessionLocal

    return SessionLocal


def build_reminder_dispatcher(
    settings: Settings | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    notifier: Notifier | None = None,
    clock: Clock = utc_now,
) -> ReminderDispatcher:
    settings = settings or get_settings()
    return ReminderDispatcher(
        session_factory or _default_session_factory(),
        notifier or build_notifier(settings),
        clock=clock,
        date_format=settings.reminder_date_format,
        default_template=settings.default_reminder_template,
    )


def build_status_sweeper(
    settings: Settings | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    clock: Clock = utc_now,
) -> StatusSweeper:
    settings = settings or get_settings()
    return StatusSweeper(
        session_factory or _default_session_factory(),
        clock=clock,
        expiring_window_days=settings.renewal_expiring_window_days,
    )


def build_scheduler(
    dispatcher: ReminderDispatcher,
    sweeper: StatusSweeper,
    settings: Settings | None = None,
    *,
    clock: Clock = utc_now,
    timer_factory: Callable[..., Any] = threading.Timer,
) -> BillingScheduler:
    settings = settings or get_settings()
    jobs = [
        ScheduledJob(name=REMINDER_SWEEP_JOB, hours=tuple(settings.reminder_sweep_hours), run=dispatcher.run_reminder_sweep),
        ScheduledJob(name=STATUS_SWEEP_JOB, hours=(settings.status_sweep_hour,), run=sweeper.run_status_sweep),
    ]
    return BillingScheduler(jobs, clock=clock, timer_factory=timer_factory)
