from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from crm_billing import events
from crm_billing.billing.derivation import (
    EXPIRING_WITHIN_DAYS,
    InvoiceCandidate,
    build_invoice,
    build_renewal,
    interval_months,
    next_cycle_expiry,
)
from crm_billing.billing.fields import INVOICE_FIELD_MAP, RENEWAL_FIELD_MAP, map_fields
from crm_billing.billing.models import Invoice, InvoiceItem, Renewal, RenewalReminder
from crm_billing.billing.reminders import parse_reminder_days
from crm_billing.billing.schemas import (
    AutoGenerateSummary,
    AutoInvoiceResult,
    AutoRenewalResult,
    InvoiceCreate,
    InvoiceItemRead,
    InvoiceRead,
    InvoiceUpdate,
    ReminderCreate,
    ReminderRead,
    RenewalCreate,
    RenewalExpiryBucket,
    RenewalMonthBucket,
    RenewalRead,
    RenewalStats,
    RenewalStatusBucket,
    RenewalUpdate,
)
from crm_billing.billing.temporal import Clock, add_months, days_until, utc_now
from crm_billing.core.config import get_settings
from crm_billing.core.events import INVOICE_CREATED, RENEWAL_CREATED
from crm_billing.customers.models import Customer
from crm_billing.metrics import observe_auto_generation, observe_invoice_number_collision


logger = logging.getLogger("crm_billing.billing")

OPEN_AUTO_RENEWAL_STATUSES = ("active", "expiring")
OPEN_AUTO_INVOICE_STATUSES = ("draft",)


@dataclass(slots=True)
class BillingService:
    clock: Clock = utc_now

    def create_renewal(self, session: Session, payload: RenewalCreate) -> RenewalRead:
        customer = self._get_customer(session, payload.customer_id)
        candidate = build_renewal(customer, payload.model_dump(exclude_none=True), today=self._today())

        renewal = Renewal(customer_id=customer.id, **candidate.as_row())
        session.add(renewal)
        if customer.recurring_enabled:
            customer.next_renewal_date = add_months(candidate.expiry_date, interval_months(customer.recurring_interval))
            session.add(customer)
        try:
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        session.refresh(renewal)

        self._publish_renewal_created(renewal, auto=False)
        return self._to_renewal_read(renewal)

    def get_renewal(self, session: Session, renewal_id: uuid.UUID) -> RenewalRead:
        return self._to_renewal_read(self._get_renewal(session, renewal_id))

    def update_renewal(self, session: Session, renewal_id: uuid.UUID, payload: RenewalUpdate) -> RenewalRead:
        renewal = self._get_renewal(session, renewal_id)
        changes = map_fields(payload.model_dump(exclude_unset=True), RENEWAL_FIELD_MAP)
        changes.pop("customer_id", None)
        for column, value in changes.items():
            if value is None and column != "notes":
                continue
            setattr(renewal, column, value)

        session.add(renewal)
        session.commit()
        session.refresh(renewal)
        return self._to_renewal_read(renewal)

    def create_auto_renewal_if_absent(self, session: Session, customer_id: uuid.UUID) -> AutoRenewalResult:
        customer = self._guard_customer(session, customer_id)
        customer_id = customer.id

        existing = self._guard_lookup(
            session,
            select(Renewal)
            .where(
                Renewal.customer_id == customer_id,
                Renewal.auto_cycle_key.is_not(None),
                Renewal.status.in_(OPEN_AUTO_RENEWAL_STATUSES),
            )
            .order_by(Renewal.expiry_date.desc()),
        )
        if existing is not None:
            observe_auto_generation("renewal", "existing")
            return AutoRenewalResult(created=False, renewal=self._to_renewal_read(existing))

        override: dict[str, Any] = {}
        previous = session.scalar(
            select(Renewal)
            .where(Renewal.customer_id == customer_id, Renewal.auto_cycle_key.is_not(None))
            .order_by(Renewal.expiry_date.desc())
            .limit(1)
        )
        if previous is not None:
            override["expiry_date"] = next_cycle_expiry(customer, previous.expiry_date, self._today())

        candidate = build_renewal(customer, override, today=self._today())
        cycle_key = f"renewal:{candidate.expiry_date.isoformat()}"
        renewal = Renewal(customer_id=customer_id, auto_cycle_key=cycle_key, **candidate.as_row())
        session.add(renewal)
        if customer.recurring_enabled:
            customer.next_renewal_date = next_cycle_expiry(customer, candidate.expiry_date, self._today())
            session.add(customer)
        try:
            session.flush()
            session.commit()
        except IntegrityError:
            session.rollback()
            winner = session.scalar(
                select(Renewal).where(Renewal.customer_id == customer_id, Renewal.auto_cycle_key == cycle_key)
            )
            if winner is None:
                raise
            observe_auto_generation("renewal", "existing")
            return AutoRenewalResult(created=False, renewal=self._to_renewal_read(winner))
        except SQLAlchemyError:
            session.rollback()
            raise

        session.refresh(renewal)
        observe_auto_generation("renewal", "created")
        logger.info(
            "auto_renewal.created",
            extra={"customer_id": str(customer_id), "renewal_id": str(renewal.id), "status": renewal.status},
        )
        self._publish_renewal_created(renewal, auto=True)
        return AutoRenewalResult(created=True, renewal=self._to_renewal_read(renewal))

    def auto_generate_renewals(self, session: Session) -> AutoGenerateSummary:
        customer_ids = session.scalars(
            select(Customer.id)
            .where(~exists().where(Renewal.customer_id == Customer.id))
            .order_by(Customer.created_at.asc())
        ).all()

        created = 0
        existing = 0
        for customer_id in customer_ids:
            result = self.create_auto_renewal_if_absent(session, customer_id)
            if result.created:
                created += 1
            else:
                existing += 1

        logger.info(
            "auto_renewals.generated",
            extra={"customers_checked": len(customer_ids), "created": created, "existing": existing},
        )
        return AutoGenerateSummary(customers_checked=len(customer_ids), created=created, existing=existing)

    def renewal_stats(self, session: Session) -> RenewalStats:
        today = self._today()
        window_days = get_settings().renewal_expiring_window_days

        status_rows = session.execute(
            select(Renewal.status, func.count(Renewal.id), func.coalesce(func.sum(Renewal.amount), 0))
            .group_by(Renewal.status)
            .order_by(Renewal.status)
        ).all()

        def expiry_bucket(expiry_date: date) -> str:
            days = days_until(expiry_date, today)
            if days < 0:
                return "expired"
            if days <= EXPIRING_WITHIN_DAYS:
                return "expiring_week"
            if days <= window_days:
                return "expiring_month"
            return "future"

        open_rows = session.execute(
            select(Renewal.expiry_date, Renewal.amount).where(Renewal.status.in_(OPEN_AUTO_RENEWAL_STATUSES))
        ).all()
        by_expiry = self._tally((expiry_bucket(expiry_date), amount) for expiry_date, amount in open_rows)

        recent_rows = session.execute(
            select(Renewal.expiry_date, Renewal.amount)
            .where(Renewal.expiry_date >= add_months(today, -12))
            .order_by(Renewal.expiry_date.asc())
        ).all()
        by_month = self._tally((f"{expiry_date:%Y-%m}", amount) for expiry_date, amount in recent_rows)

        return RenewalStats(
            status_breakdown=[
                RenewalStatusBucket(status=row_status, count=count, total_amount=self._cents(Decimal(str(total))))
                for row_status, count, total in status_rows
            ],
            expiry_breakdown=[
                RenewalExpiryBucket(expiry_status=bucket, count=by_expiry[bucket][0], total_amount=by_expiry[bucket][1])
                for bucket in ("expired", "expiring_week", "expiring_month", "future")
                if bucket in by_expiry
            ],
            monthly_revenue=[
                RenewalMonthBucket(month=month, count=count, total_amount=total)
                for month, (count, total) in by_month.items()
            ],
        )

    def create_invoice(self, session: Session, payload: InvoiceCreate) -> InvoiceRead:
        customer = self._get_customer(session, payload.customer_id)
        candidate = build_invoice(customer, payload.model_dump(exclude_none=True), today=self._today())
        invoice, _ = self._insert_invoice(session, customer.id, candidate)

        self._publish_invoice_created(invoice, auto=False)
        return self._to_invoice_read(invoice)

    def get_invoice(self, session: Session, invoice_id: uuid.UUID) -> InvoiceRead:
        return self._to_invoice_read(self._get_invoice(session, invoice_id))

    def update_invoice(self, session: Session, invoice_id: uuid.UUID, payload: InvoiceUpdate) -> InvoiceRead:
        invoice = self._get_invoice(session, invoice_id)
        changes = map_fields(payload.model_dump(exclude_unset=True), INVOICE_FIELD_MAP)
        for column in ("customer_id", "items"):
            changes.pop(column, None)
        for column, value in changes.items():
            if value is None and column not in {"notes", "paid_date"}:
                continue
            setattr(invoice, column, value)

        # A stored total stays pinned unless amount or tax moves under it.
        if changes.get("total") is None and any(changes.get(column) is not None for column in ("amount", "tax")):
            amount = Decimal(invoice.amount)
            invoice.total = self._cents(amount + amount * Decimal(invoice.tax) / Decimal(100))

        session.add(invoice)
        session.commit()
        session.refresh(invoice)
        return self._to_invoice_read(invoice)

    def create_auto_invoice_if_absent(self, session: Session, customer_id: uuid.UUID) -> AutoInvoiceResult:
        customer = self._guard_customer(session, customer_id)
        customer_id = customer.id

        existing = self._guard_lookup(
            session,
            select(Invoice)
            .where(
                Invoice.customer_id == customer_id,
                Invoice.auto_cycle_key.is_not(None),
                Invoice.status.in_(OPEN_AUTO_INVOICE_STATUSES),
            )
            .options(selectinload(Invoice.items))
            .order_by(Invoice.created_at.desc()),
        )
        if existing is not None:
            observe_auto_generation("invoice", "existing")
            return AutoInvoiceResult(created=False, invoice=self._to_invoice_read(existing))

        service_name = customer.recurring_service or customer.service or "Service"
        amount = self._auto_invoice_amount(customer)
        override: dict[str, Any] = {
            "items": [{"description": service_name, "quantity": 1, "rate": amount}],
        }
        if not customer.default_invoice_notes:
            override["notes"] = f"Auto-generated invoice for {service_name}. Total value: {amount}"

        candidate = build_invoice(customer, override, today=self._today())
        cycle_key = f"invoice:{candidate.issue_date:%Y-%m}"
        invoice, created = self._insert_invoice(session, customer_id, candidate, cycle_key=cycle_key)

        observe_auto_generation("invoice", "created" if created else "existing")
        if created:
            logger.info(
                "auto_invoice.created",
                extra={
                    "customer_id": str(customer_id),
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                },
            )
            self._publish_invoice_created(invoice, auto=True)
        return AutoInvoiceResult(created=created, invoice=self._to_invoice_read(invoice))

    def create_reminder(self, session: Session, payload: ReminderCreate) -> ReminderRead:
        customer = self._get_customer(session, payload.customer_id)
        reminder = RenewalReminder(
            customer_id=customer.id,
            service_type=payload.service_type,
            service_name=payload.service_name,
            expiry_date=payload.expiry_date,
            reminder_days=sorted(set(payload.reminder_days), reverse=True),
            status=payload.status,
            whatsapp_template=payload.whatsapp_template,
        )
        session.add(reminder)
        session.commit()
        session.refresh(reminder)
        return self._to_reminder_read(reminder)

    def list_reminders(self, session: Session, *, customer_id: uuid.UUID | None = None) -> list[ReminderRead]:
        stmt = select(RenewalReminder).where(RenewalReminder.status == "active")
        if customer_id is not None:
            stmt = stmt.where(RenewalReminder.customer_id == customer_id)
        rows = session.scalars(stmt.order_by(RenewalReminder.expiry_date.asc())).all()
        return [self._to_reminder_read(row) for row in rows]

    def _insert_invoice(
        self,
        session: Session,
        customer_id: uuid.UUID,
        candidate: InvoiceCandidate,
        *,
        cycle_key: str | None = None,
    ) -> tuple[Invoice, bool]:
        max_attempts = max(1, get_settings().invoice_number_max_attempts)
        for attempt in range(1, max_attempts + 1):
            invoice_number = self._next_invoice_number(session, candidate.issue_date)
            invoice = Invoice(
                customer_id=customer_id,
                invoice_number=invoice_number,
                auto_cycle_key=cycle_key,
                **candidate.as_row(),
            )
            invoice.items = [
                InvoiceItem(
                    position=position,
                    description=item.description,
                    quantity=item.quantity,
                    rate=item.rate,
                    amount=item.amount,
                )
                for position, item in enumerate(candidate.items)
            ]
            session.add(invoice)
            try:
                session.flush()
                session.commit()
            except IntegrityError:
                session.rollback()
                if cycle_key is not None:
                    winner = self._find_invoice_by_cycle(session, customer_id, cycle_key)
                    if winner is not None:
                        return winner, False
                if session.scalar(select(Invoice.id).where(Invoice.invoice_number == invoice_number)) is None:
                    raise
                observe_invoice_number_collision()
                logger.warning(
                    "invoice_number.collision",
                    extra={"customer_id": str(customer_id), "invoice_number": invoice_number, "attempt": attempt},
                )
                continue
            except SQLAlchemyError:
                session.rollback()
                raise

            return self._get_invoice(session, invoice.id), True

        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice number allocation exhausted")

    def _next_invoice_number(self, session: Session, issue_date: date) -> str:
        prefix = f"INV-{issue_date:%Y%m}-"
        latest = session.scalar(select(func.max(Invoice.invoice_number)).where(Invoice.invoice_number.like(f"{prefix}%")))
        sequence = 1
        if latest:
            suffix = latest.removeprefix(prefix)
            sequence = int(suffix) + 1 if suffix.isdigit() else 1

        number = f"{prefix}{sequence:04d}"
        while session.scalar(select(Invoice.id).where(Invoice.invoice_number == number)) is not None:
            sequence += 1
            number = f"{prefix}{sequence:04d}"
        return number

    def _guard_lookup(self, session: Session, stmt: Any) -> Any:
        try:
            return session.scalars(stmt.limit(1)).first()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("auto_generation.lookup_failed", extra={"error": str(exc)})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="billing store unavailable",
            ) from exc

    def _guard_customer(self, session: Session, customer_id: uuid.UUID) -> Customer:
        customer = self._guard_lookup(session, select(Customer).where(Customer.id == customer_id))
        if customer is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="customer not found")
        return customer

    def _find_invoice_by_cycle(self, session: Session, customer_id: uuid.UUID, cycle_key: str) -> Invoice | None:
        return session.scalar(
            select(Invoice)
            .where(Invoice.customer_id == customer_id, Invoice.auto_cycle_key == cycle_key)
            .options(selectinload(Invoice.items))
        )

    def _auto_invoice_amount(self, customer: Customer) -> Decimal:
        candidates = [customer.one_time_price, customer.monthly_price, customer.total_value]
        if customer.recurring_enabled:
            candidates.insert(0, customer.recurring_amount)
        for value in candidates:
            if value is not None and Decimal(value) > 0:
                return self._cents(Decimal(value))
        return Decimal("0.00")

    def _publish_renewal_created(self, renewal: Renewal, *, auto: bool) -> None:
        events.publish(
            RENEWAL_CREATED,
            renewal_id=str(renewal.id),
            customer_id=str(renewal.customer_id),
            expiry_date=renewal.expiry_date.isoformat(),
            status=renewal.status,
            auto=auto,
        )

    def _publish_invoice_created(self, invoice: Invoice, *, auto: bool) -> None:
        events.publish(
            INVOICE_CREATED,
            invoice_id=str(invoice.id),
            customer_id=str(invoice.customer_id),
            invoice_number=invoice.invoice_number,
            total=str(invoice.total),
            auto=auto,
        )

    def _today(self) -> date:
        return self.clock().date()

    def _get_customer(self, session: Session, customer_id: uuid.UUID) -> Customer:
        customer = session.scalar(select(Customer).where(Customer.id == customer_id))
        if customer is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="customer not found")
        return customer

    def _get_renewal(self, session: Session, renewal_id: uuid.UUID) -> Renewal:
        renewal = session.scalar(select(Renewal).where(Renewal.id == renewal_id))
        if renewal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="renewal not found")
        return renewal

    def _get_invoice(self, session: Session, invoice_id: uuid.UUID) -> Invoice:
        invoice = session.scalar(
            select(Invoice).where(Invoice.id == invoice_id).options(selectinload(Invoice.items))
        )
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
        return invoice

    @staticmethod
    def _cents(value: Decimal) -> Decimal:
        return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @classmethod
    def _tally(cls, pairs: Any) -> dict[str, tuple[int, Decimal]]:
        totals: dict[str, tuple[int, Decimal]] = {}
        for key, amount in pairs:
            count, total = totals.get(key, (0, Decimal("0")))
            totals[key] = (count + 1, total + Decimal(amount or 0))
        return {key: (count, cls._cents(total)) for key, (count, total) in totals.items()}

    def _to_renewal_read(self, renewal: Renewal) -> RenewalRead:
        return RenewalRead.model_validate(renewal)

    def _to_invoice_read(self, invoice: Invoice) -> InvoiceRead:
        payload = {
            "id": invoice.id,
            "customer_id": invoice.customer_id,
            "invoice_number": invoice.invoice_number,
            "amount": invoice.amount,
            "tax": invoice.tax,
            "total": invoice.total,
            "status": invoice.status,
            "issue_date": invoice.issue_date,
            "due_date": invoice.due_date,
            "paid_date": invoice.paid_date,
            "notes": invoice.notes,
            "auto_cycle_key": invoice.auto_cycle_key,
            "created_at": invoice.created_at,
            "updated_at": invoice.updated_at,
            "items": [InvoiceItemRead.model_validate(item) for item in invoice.items],
        }
        return InvoiceRead.model_validate(payload)

    def _to_reminder_read(self, reminder: RenewalReminder) -> ReminderRead:
        payload = {
            "id": reminder.id,
            "customer_id": reminder.customer_id,
            "service_type": reminder.service_type,
            "service_name": reminder.service_name,
            "expiry_date": reminder.expiry_date,
            "reminder_days": sorted(parse_reminder_days(reminder.reminder_days), reverse=True),
            "last_reminder_sent": reminder.last_reminder_sent,
            "status": reminder.status,
            "whatsapp_template": reminder.whatsapp_template,
            "created_at": reminder.created_at,
            "updated_at": reminder.updated_at,
            "days_until_expiry": days_until(reminder.expiry_date, self._today()),
        }
        return ReminderRead.model_validate(payload)


billing_service = BillingService()
