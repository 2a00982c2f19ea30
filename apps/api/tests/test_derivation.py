from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from crm_billing.billing.derivation import (
    build_invoice,
    build_renewal,
    classify_renewal_status,
)


def _customer(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "name": "Asha Traders",
        "service": "Website Hosting",
        "recurring_enabled": True,
        "recurring_interval": "monthly",
        "recurring_amount": Decimal("499.00"),
        "recurring_service": None,
        "default_renewal_status": None,
        "default_renewal_reminder_days": None,
        "default_renewal_notes": None,
        "default_tax_rate": None,
        "default_due_days": None,
        "default_invoice_notes": None,
        "created_at": datetime(2024, 1, 31, 8, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_monthly_renewal_from_month_end_clamps_and_classifies_expiring() -> None:
    candidate = build_renewal(_customer(), {}, today=date(2024, 2, 25))

    assert candidate.expiry_date == date(2024, 2, 29)
    assert candidate.status == "expiring"
    assert candidate.service == "Website Hosting"
    assert candidate.amount == Decimal("499.00")
    assert candidate.reminder_days == 30
    assert candidate.notes is None


def test_yearly_renewal_adds_twelve_months() -> None:
    customer = _customer(recurring_interval="yearly", created_at=datetime(2024, 2, 29, tzinfo=timezone.utc))

    candidate = build_renewal(customer, None, today=date(2024, 3, 1))

    assert candidate.expiry_date == date(2025, 2, 28)
    assert candidate.status == "active"


def test_unknown_interval_is_treated_as_monthly() -> None:
    customer = _customer(recurring_interval="weekly", created_at=datetime(2024, 5, 10, tzinfo=timezone.utc))

    assert build_renewal(customer, {}, today=date(2024, 5, 10)).expiry_date == date(2024, 6, 10)


def test_missing_created_at_uses_today_as_cycle_base() -> None:
    candidate = build_renewal(_customer(created_at=None), {}, today=date(2024, 7, 15))
    assert candidate.expiry_date == date(2024, 8, 15)


@pytest.mark.parametrize(
    ("expiry", "expected"),
    [
        (date(2024, 2, 29), "expired"),
        (date(2024, 3, 1), "expiring"),
        (date(2024, 3, 8), "expiring"),
        (date(2024, 3, 9), "active"),
    ],
)
def test_status_classification_boundaries(expiry: date, expected: str) -> None:
    assert classify_renewal_status(expiry, date(2024, 3, 1)) == expected


def test_override_fields_win_over_customer_defaults() -> None:
    customer = _customer(
        recurring_service="Managed WhatsApp Panel",
        default_renewal_reminder_days=15,
        default_renewal_notes="Call before renewing",
    )

    candidate = build_renewal(
        customer,
        {
            "service": "Domain",
            "amount": "1200.5",
            "expiryDate": "2025-01-10",
            "status": "renewed",
            "reminderDays": 7,
            "notes": "Paid by cheque",
        },
        today=date(2024, 2, 25),
    )

    assert candidate.service == "Domain"
    assert candidate.amount == Decimal("1200.50")
    assert candidate.expiry_date == date(2025, 1, 10)
    assert candidate.status == "renewed"
    assert candidate.reminder_days == 7
    assert candidate.notes == "Paid by cheque"


def test_customer_defaults_fill_absent_fields() -> None:
    customer = _customer(
        recurring_service="Managed WhatsApp Panel",
        default_renewal_reminder_days=15,
        default_renewal_notes="Call before renewing",
    )

    candidate = build_renewal(customer, {}, today=date(2024, 2, 25))

    assert candidate.service == "Managed WhatsApp Panel"
    assert candidate.reminder_days == 15
    assert candidate.notes == "Call before renewing"


def test_explicit_status_is_never_merged_with_auto_classification() -> None:
    candidate = build_renewal(_customer(), {"status": "active", "expiry_date": "2020-01-01"}, today=date(2024, 2, 25))
    assert candidate.status == "active"


def test_customer_default_status_wins_over_classification() -> None:
    candidate = build_renewal(_customer(default_renewal_status="renewed"), {}, today=date(2024, 2, 25))
    assert candidate.status == "renewed"


def test_malformed_override_values_are_treated_as_absent() -> None:
    candidate = build_renewal(
        _customer(),
        {"amount": "abc", "expiryDate": "31/02/2024", "status": "archived", "reminderDays": "soon", "service": "   "},
        today=date(2024, 2, 25),
    )

    assert candidate.amount == Decimal("499.00")
    assert candidate.expiry_date == date(2024, 2, 29)
    assert candidate.status == "expiring"
    assert candidate.reminder_days == 30
    assert candidate.service == "Website Hosting"


def test_unknown_override_keys_are_dropped() -> None:
    noisy = build_renewal(_customer(), {"is_admin": True, "auto_cycle_key": "forged", "tax": 99}, today=date(2024, 2, 25))
    assert noisy == build_renewal(_customer(), {}, today=date(2024, 2, 25))


def test_renewal_falls_back_to_generic_service_and_zero_amount() -> None:
    customer = _customer(service=None, recurring_amount=None)

    candidate = build_renewal(customer, {}, today=date(2024, 2, 25))

    assert candidate.service == "Service"
    assert candidate.amount == Decimal("0.00")


def test_invoice_total_applies_tax_percentage() -> None:
    customer = _customer(default_tax_rate=Decimal("18"))

    candidate = build_invoice(customer, {"items": [{"description": "Setup", "quantity": 1, "rate": 1000}]}, today=date(2024, 4, 1))

    assert candidate.amount == Decimal("1000.00")
    assert candidate.tax == Decimal("18")
    assert candidate.total == Decimal("1180.00")
    assert candidate.status == "draft"


def test_invoice_dates_default_from_today_and_due_days() -> None:
    candidate = build_invoice(_customer(), {}, today=date(2024, 4, 28))
    assert candidate.issue_date == date(2024, 4, 28)
    assert candidate.due_date == date(2024, 5, 5)

    custom = build_invoice(_customer(default_due_days=15), {"issueDate": "2024-05-01"}, today=date(2024, 4, 28))
    assert custom.issue_date == date(2024, 5, 1)
    assert custom.due_date == date(2024, 5, 16)


def test_invoice_item_amount_defaults_to_quantity_times_rate() -> None:
    candidate = build_invoice(
        _customer(),
        {"items": [{"description": "Hours", "quantity": "2.5", "rate": "400"}, {"description": "Domain", "rate": 799}]},
        today=date(2024, 4, 1),
    )

    assert [item.amount for item in candidate.items] == [Decimal("1000.00"), Decimal("799.00")]
    assert candidate.amount == Decimal("1799.00")
    assert candidate.total == Decimal("1799.00")


def test_invoice_overrides_win() -> None:
    customer = _customer(default_tax_rate=Decimal("18"), default_invoice_notes="Thank you")

    candidate = build_invoice(
        customer,
        {"amount": 100, "tax": 5, "total": 200, "status": "sent", "dueDate": "2024-06-01", "notes": "Custom"},
        today=date(2024, 4, 1),
    )

    assert candidate.amount == Decimal("100.00")
    assert candidate.tax == Decimal("5")
    assert candidate.total == Decimal("200.00")
    assert candidate.status == "sent"
    assert candidate.due_date == date(2024, 6, 1)
    assert candidate.notes == "Custom"


def test_invoice_notes_fall_back_to_customer_default() -> None:
    candidate = build_invoice(_customer(default_invoice_notes="Thank you"), {}, today=date(2024, 4, 1))
    assert candidate.notes == "Thank you"


def test_builders_accept_mapping_customers() -> None:
    customer = {"service": "Hosting", "recurring_amount": "250", "created_at": "2024-01-15T00:00:00Z"}

    candidate = build_renewal(customer, {}, today=date(2024, 1, 20))

    assert candidate.service == "Hosting"
    assert candidate.amount == Decimal("250.00")
    assert candidate.expiry_date == date(2024, 2, 15)
    assert candidate.status == "active"


def test_builders_are_deterministic() -> None:
    customer = _customer(default_tax_rate=Decimal("12.5"))
    override = {"items": [{"description": "Plan", "rate": "333.33"}]}

    assert build_renewal(customer, {}, today=date(2024, 2, 25)) == build_renewal(customer, {}, today=date(2024, 2, 25))
    assert build_invoice(customer, override, today=date(2024, 2, 25)) == build_invoice(customer, override, today=date(2024, 2, 25))
