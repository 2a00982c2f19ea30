from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_billing.billing.models import Invoice, Renewal
from crm_billing.billing.temporal import Clock, utc_now
from crm_billing.metrics import observe_status_transitions
from crm_billing.otel import get_tracer, set_span_counts


logger = logging.getLogger("crm_billing.sweeps")
tracer = get_tracer(__name__)

EXPIRING_WINDOW_DAYS = 30


@dataclass(slots=True)
class StatusSweepResult:
    renewals_expired: int = 0
    renewals_expiring: int = 0
    invoices_overdue: int = 0


class StatusSweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Clock = utc_now,
        expiring_window_days: int = EXPIRING_WINDOW_DAYS,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.expiring_window_days = expiring_window_days

    def run_status_sweep(self) -> StatusSweepResult:
        started = time.perf_counter()
        today = self.clock().date()
        window_end = today + timedelta(days=self.expiring_window_days)

        with tracer.start_as_current_span("billing.status_sweep") as span:
            session = self.session_factory()
            try:
                expired = session.execute(
                    update(Renewal)
                    .where(Renewal.expiry_date < today, Renewal.status != "expired")
                    .values(status="expired")
                    .execution_options(synchronize_session=False)
                )
                expiring = session.execute(
                    update(Renewal)
                    .where(
                        Renewal.expiry_date >= today,
                        Renewal.expiry_date <= window_end,
                        Renewal.status == "active",
                    )
                    .values(status="expiring")
                    .execution_options(synchronize_session=False)
                )
                overdue = session.execute(
                    update(Invoice)
                    .where(Invoice.due_date < today, Invoice.status == "sent")
                    .values(status="overdue")
                    .execution_options(synchronize_session=False)
                )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception("status_sweep.failed")
                raise
            finally:
                session.close()

            result = StatusSweepResult(
                renewals_expired=expired.rowcount or 0,
                renewals_expiring=expiring.rowcount or 0,
                invoices_overdue=overdue.rowcount or 0,
            )
            set_span_counts(
                span,
                renewals_expired=result.renewals_expired,
                renewals_expiring=result.renewals_expiring,
                invoices_overdue=result.invoices_overdue,
            )

        observe_status_transitions("renewal", "expired", result.renewals_expired)
        observe_status_transitions("renewal", "expiring", result.renewals_expiring)
        observe_status_transitions("invoice", "overdue", result.invoices_overdue)
        logger.info(
            "status_sweep.finished",
            extra={
                "renewals_expired": result.renewals_expired,
                "renewals_expiring": result.renewals_expiring,
                "invoices_overdue": result.invoices_overdue,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result
