"""Derive renewal and invoice records from customer defaults.

Both builders are pure: they read the customer, the caller's override and an
explicit ``today`` and return a fully resolved candidate. Every field is
resolved independently, first non-empty source wins. Override values that
cannot be interpreted (a non-numeric amount, an unparseable date, an unknown
status) are treated as absent rather than rejected.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from crm_billing.billing.fields import INVOICE_FIELD_MAP, RENEWAL_FIELD_MAP, map_fields
from crm_billing.billing.temporal import add_months, days_until, to_calendar_date


RENEWAL_STATUSES = ("active", "expiring", "expired", "renewed")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
RECURRING_INTERVALS = ("monthly", "yearly")

DEFAULT_SERVICE = "Service"
DEFAULT_REMINDER_DAYS = 30
DEFAULT_DUE_DAYS = 7
EXPIRING_WITHIN_DAYS = 7

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class RenewalCandidate:
    service: str
    amount: Decimal
    expiry_date: date
    status: str
    reminder_days: int
    notes: str | None

    def as_row(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "amount": self.amount,
            "expiry_date": self.expiry_date,
            "status": self.status,
            "reminder_days": self.reminder_days,
            "notes": self.notes,
        }


@dataclass(frozen=True, slots=True)
class InvoiceItemCandidate:
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True, slots=True)
class InvoiceCandidate:
    amount: Decimal
    tax: Decimal
    total: Decimal
    issue_date: date
    due_date: date
    status: str
    notes: str | None
    items: tuple[InvoiceItemCandidate, ...] = field(default_factory=tuple)

    def as_row(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "tax": self.tax,
            "total": self.total,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "status": self.status,
            "notes": self.notes,
        }


def interval_months(interval: Any) -> int:
    return 12 if interval == "yearly" else 1


def first_cycle_expiry(customer: Any, today: date) -> date:
    base = to_calendar_date(_attr(customer, "created_at")) or today
    return add_months(base, interval_months(_attr(customer, "recurring_interval")))


def next_cycle_expiry(customer: Any, after: date, today: date) -> date:
    """First cycle date strictly after ``after``, counted from the creation anchor.

    Each cycle is ``created_at + k * interval`` so a month-end anchor survives
    short months (Jan 31 gives Feb 29, Mar 31, Apr 30).
    """
    base = to_calendar_date(_attr(customer, "created_at")) or today
    months = interval_months(_attr(customer, "recurring_interval"))
    cycle = 1
    expiry = add_months(base, months)
    while expiry <= after:
        cycle += 1
        expiry = add_months(base, cycle * months)
    return expiry


def classify_renewal_status(expiry_date: date, today: date) -> str:
    days = days_until(expiry_date, today)
    if days < 0:
        return "expired"
    if days <= EXPIRING_WITHIN_DAYS:
        return "expiring"
    return "active"


def build_renewal(customer: Any, override: Mapping[str, Any] | None = None, *, today: date) -> RenewalCandidate:
    fields = map_fields(override, RENEWAL_FIELD_MAP)

    service = _first_text(fields.get("service"), _attr(customer, "recurring_service"), _attr(customer, "service"))
    amount = _first_amount(fields.get("amount"), _attr(customer, "recurring_amount"))
    expiry_date = to_calendar_date(fields.get("expiry_date")) or first_cycle_expiry(customer, today)
    status = _first_choice(RENEWAL_STATUSES, fields.get("status"), _attr(customer, "default_renewal_status"))
    reminder_days = _first_int(fields.get("reminder_days"), _attr(customer, "default_renewal_reminder_days"), minimum=1)
    notes = _first_text(fields.get("notes"), _attr(customer, "default_renewal_notes"))

    return RenewalCandidate(
        service=service or DEFAULT_SERVICE,
        amount=_cents(amount if amount is not None else _ZERO),
        expiry_date=expiry_date,
        status=status or classify_renewal_status(expiry_date, today),
        reminder_days=reminder_days if reminder_days is not None else DEFAULT_REMINDER_DAYS,
        notes=notes,
    )


def build_invoice(customer: Any, override: Mapping[str, Any] | None = None, *, today: date) -> InvoiceCandidate:
    fields = map_fields(override, INVOICE_FIELD_MAP)
    items = _build_items(fields.get("items"))

    amount = _first_amount(fields.get("amount"))
    if amount is None:
        amount = sum((item.amount for item in items), start=_ZERO)
    amount = _cents(amount)

    tax = _first_amount(fields.get("tax"), _attr(customer, "default_tax_rate"))
    if tax is None:
        tax = _ZERO

    total = _first_amount(fields.get("total"))
    total = _cents(total if total is not None else amount + amount * tax / Decimal(100))

    issue_date = to_calendar_date(fields.get("issue_date")) or today
    due_date = to_calendar_date(fields.get("due_date"))
    if due_date is None:
        due_days = _first_int(_attr(customer, "default_due_days"), minimum=0)
        due_date = issue_date + timedelta(days=due_days if due_days is not None else DEFAULT_DUE_DAYS)

    return InvoiceCandidate(
        amount=amount,
        tax=tax,
        total=total,
        issue_date=issue_date,
        due_date=due_date,
        status=_first_choice(INVOICE_STATUSES, fields.get("status")) or "draft",
        notes=_first_text(fields.get("notes"), _attr(customer, "default_invoice_notes")),
        items=items,
    )


def _build_items(raw_items: Any) -> tuple[InvoiceItemCandidate, ...]:
    if not isinstance(raw_items, (list, tuple)):
        return ()

    items: list[InvoiceItemCandidate] = []
    for raw in raw_items:
        if hasattr(raw, "model_dump"):
            raw = raw.model_dump()
        if not isinstance(raw, Mapping):
            continue
        quantity = _first_amount(raw.get("quantity"))
        rate = _first_amount(raw.get("rate"))
        quantity = quantity if quantity is not None else Decimal(1)
        rate = rate if rate is not None else _ZERO
        amount = _first_amount(raw.get("amount"))
        items.append(
            InvoiceItemCandidate(
                description=_first_text(raw.get("description")) or "Item",
                quantity=quantity,
                rate=_cents(rate),
                amount=_cents(amount if amount is not None else quantity * rate),
            )
        )
    return tuple(items)


def _attr(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str) and value.strip():
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite() or result < 0:
        return None
    return result


def _first_amount(*values: Any) -> Decimal | None:
    for value in values:
        parsed = _to_decimal(value)
        if parsed is not None:
            return parsed
    return None


def _first_int(*values: Any, minimum: int) -> int | None:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            parsed = int(str(value).strip())
        except ValueError:
            continue
        if parsed >= minimum:
            return parsed
    return None


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_choice(choices: tuple[str, ...], *values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip().lower() in choices:
            return value.strip().lower()
    return None
