"""Renewal reminder dispatch.

Each run walks the active reminders, works out how many days remain until
expiry and sends a WhatsApp message when that number is one of the
reminder's configured offsets. A reminder is sent at most once per calendar
day. There is no catch-up: when a run fails or does not happen on the day an
offset matches, that reminder is skipped for good.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_billing import events
from crm_billing.billing.models import RenewalReminder
from crm_billing.billing.temporal import Clock, days_until, utc_now
from crm_billing.core.events import REMINDER_DISPATCHED
from crm_billing.customers.models import Customer
from crm_billing.messaging.models import WhatsAppMessage
from crm_billing.messaging.notifier import Notifier
from crm_billing.metrics import observe_reminder_dispatch
from crm_billing.otel import get_tracer, set_span_counts


logger = logging.getLogger("crm_billing.reminders")
tracer = get_tracer(__name__)

DEFAULT_TEMPLATE = "Hi {customerName}, your {serviceName} expires on {expiryDate}. Please renew to continue service."
DEFAULT_DATE_FORMAT = "%d %b %Y"


@dataclass(slots=True)
class ReminderSweepResult:
    sent_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    skipped_overlap: bool = False


def parse_reminder_days(raw: Any) -> set[int]:
    """Offsets stored on a reminder; anything malformed yields an empty set."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return set()
    if not isinstance(raw, (list, tuple)):
        return set()

    offsets: set[int] = set()
    for value in raw:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            offsets.add(value)
        elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
            offsets.add(int(value.strip()))
    return offsets


def render_reminder_message(
    template: str | None,
    *,
    customer_name: str,
    service_name: str,
    expiry_date: date,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> str:
    text = template if template and template.strip() else DEFAULT_TEMPLATE
    replacements = {
        "{customerName}": customer_name,
        "{serviceName}": service_name,
        "{expiryDate}": expiry_date.strftime(date_format),
    }
    for placeholder, value in replacements.items():
        text = text.replace(placeholder, value)
    return text


class ReminderDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
        date_format: str = DEFAULT_DATE_FORMAT,
        default_template: str = DEFAULT_TEMPLATE,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock
        self.date_format = date_format
        self.default_template = default_template
        self._lock = threading.Lock()

    def run_reminder_sweep(self) -> ReminderSweepResult:
        if not self._lock.acquire(blocking=False):
            logger.warning("reminder_sweep.skipped_overlap", extra={"status": "skipped"})
            return ReminderSweepResult(skipped_overlap=True)
        try:
            return self._run()
        finally:
            self._lock.release()

    def _run(self) -> ReminderSweepResult:
        result = ReminderSweepResult()
        started = time.perf_counter()
        now = self.clock()
        today = now.date()

        with tracer.start_as_current_span("billing.reminder_sweep") as span:
            session = self.session_factory()
            try:
                rows = session.execute(
                    select(RenewalReminder, Customer)
                    .join(Customer, Customer.id == RenewalReminder.customer_id)
                    .where(
                        RenewalReminder.status == "active",
                        Customer.whatsapp_number.is_not(None),
                        Customer.whatsapp_number != "",
                    )
                    .order_by(RenewalReminder.expiry_date.asc())
                ).all()

                for reminder, customer in rows:
                    days = days_until(reminder.expiry_date, now)
                    if days not in parse_reminder_days(reminder.reminder_days) or reminder.last_reminder_sent == today:
                        result.skipped_count += 1
                        continue
                    if self._dispatch(session, reminder, customer, days=days, today=today):
                        result.sent_count += 1
                    else:
                        result.failed_count += 1
            finally:
                session.close()

            set_span_counts(span, sent_count=result.sent_count, failed_count=result.failed_count, skipped_count=result.skipped_count)

        logger.info(
            "reminder_sweep.finished",
            extra={
                "sent_count": result.sent_count,
                "failed_count": result.failed_count,
                "skipped_count": result.skipped_count,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    def _dispatch(self, session: Session, reminder: RenewalReminder, customer: Customer, *, days: int, today: date) -> bool:
        reminder_id = reminder.id
        customer_id = customer.id
        destination = customer.whatsapp_number or ""
        text = render_reminder_message(
            reminder.whatsapp_template or self.default_template,
            customer_name=customer.name,
            service_name=reminder.service_name,
            expiry_date=reminder.expiry_date,
            date_format=self.date_format,
        )
        message = WhatsAppMessage(
            customer_id=customer_id,
            reminder_id=reminder_id,
            phone_number=destination,
            message=text,
            status="pending",
        )

        try:
            outcome = self.notifier.send(destination, text)
        except Exception as exc:
            message.status = "failed"
            message.error_message = str(exc)[:500]
            self._persist(session, reminder_id, message)
            observe_reminder_dispatch("failed")
            logger.warning(
                "reminder.failed",
                extra={
                    "reminder_id": str(reminder_id),
                    "customer_id": str(customer_id),
                    "days_until_expiry": days,
                    "error": str(exc),
                },
            )
            return False

        message.status = "sent"
        message.provider_message_id = outcome.provider_message_id
        message.sent_at = self.clock()
        reminder.last_reminder_sent = today
        if not self._persist(session, reminder_id, message, reminder):
            observe_reminder_dispatch("failed")
            return False

        observe_reminder_dispatch("sent")
        logger.info(
            "reminder.dispatched",
            extra={"reminder_id": str(reminder_id), "customer_id": str(customer_id), "days_until_expiry": days},
        )
        events.publish(
            REMINDER_DISPATCHED,
            reminder_id=str(reminder_id),
            customer_id=str(customer_id),
            days_until_expiry=days,
        )
        return True

    @staticmethod
    def _persist(session: Session, reminder_id: Any, *rows: Any) -> bool:
        """Commit one reminder's outcome; a failure is rolled back so the sweep can go on."""
        session.add_all(rows)
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("reminder.persist_failed", extra={"reminder_id": str(reminder_id), "error": str(exc)})
            return False
        return True
