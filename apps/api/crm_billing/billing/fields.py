from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Request key -> column name. Only keys listed here ever reach a model or a query.
CUSTOMER_FIELD_MAP: dict[str, str] = {
    "name": "name",
    "email": "email",
    "company": "company",
    "service": "service",
    "whatsappNumber": "whatsapp_number",
    "totalValue": "total_value",
    "oneTimePrice": "one_time_price",
    "monthlyPrice": "monthly_price",
    "defaultTaxRate": "default_tax_rate",
    "defaultDueDays": "default_due_days",
    "defaultInvoiceNotes": "default_invoice_notes",
    "recurringEnabled": "recurring_enabled",
    "recurringInterval": "recurring_interval",
    "recurringAmount": "recurring_amount",
    "recurringService": "recurring_service",
    "nextRenewalDate": "next_renewal_date",
    "defaultRenewalStatus": "default_renewal_status",
    "defaultRenewalReminderDays": "default_renewal_reminder_days",
    "defaultRenewalNotes": "default_renewal_notes",
}

RENEWAL_FIELD_MAP: dict[str, str] = {
    "customerId": "customer_id",
    "service": "service",
    "amount": "amount",
    "expiryDate": "expiry_date",
    "status": "status",
    "reminderDays": "reminder_days",
    "notes": "notes",
}

INVOICE_FIELD_MAP: dict[str, str] = {
    "customerId": "customer_id",
    "amount": "amount",
    "tax": "tax",
    "total": "total",
    "status": "status",
    "issueDate": "issue_date",
    "dueDate": "due_date",
    "paidDate": "paid_date",
    "notes": "notes",
    "items": "items",
}

REMINDER_FIELD_MAP: dict[str, str] = {
    "customerId": "customer_id",
    "serviceType": "service_type",
    "serviceName": "service_name",
    "expiryDate": "expiry_date",
    "reminderDays": "reminder_days",
    "status": "status",
    "whatsappTemplate": "whatsapp_template",
}


def map_fields(payload: Mapping[str, Any] | None, field_map: Mapping[str, str]) -> dict[str, Any]:
    """Translate request keys to column names, dropping anything not in ``field_map``.

    Both the request spelling (``expiryDate``) and the column spelling
    (``expiry_date``) are accepted; the first one seen wins.
    """
    if not payload:
        return {}

    columns = set(field_map.values())
    mapped: dict[str, Any] = {}
    for key, value in payload.items():
        column = field_map.get(key)
        if column is None and key in columns:
            column = key
        if column is None or column in mapped:
            continue
        mapped[column] = value
    return mapped
