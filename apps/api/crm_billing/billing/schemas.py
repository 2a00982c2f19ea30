from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


RenewalStatus = Literal["active", "expiring", "expired", "renewed"]
InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]
ReminderStatus = Literal["active", "renewed", "expired", "cancelled"]
ServiceType = Literal["whatsapp-panel", "website", "hosting", "domain", "other"]


class RenewalCreate(BaseModel):
    customer_id: UUID
    service: str | None = None
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    expiry_date: date | None = None
    status: RenewalStatus | None = None
    reminder_days: int | None = Field(default=None, ge=1)
    notes: str | None = None


class RenewalUpdate(BaseModel):
    service: str | None = Field(default=None, min_length=1)
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    expiry_date: date | None = None
    status: RenewalStatus | None = None
    reminder_days: int | None = Field(default=None, ge=1)
    notes: str | None = None


class RenewalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    service: str
    amount: Decimal
    expiry_date: date
    status: RenewalStatus | str
    reminder_days: int
    notes: str | None
    auto_cycle_key: str | None
    created_at: datetime
    updated_at: datetime


class AutoRenewalResult(BaseModel):
    created: bool
    renewal: RenewalRead


class AutoGenerateSummary(BaseModel):
    customers_checked: int
    created: int
    existing: int


ExpiryBucket = Literal["expired", "expiring_week", "expiring_month", "future"]


class RenewalStatusBucket(BaseModel):
    status: str
    count: int
    total_amount: Decimal


class RenewalExpiryBucket(BaseModel):
    expiry_status: ExpiryBucket
    count: int
    total_amount: Decimal


class RenewalMonthBucket(BaseModel):
    month: str
    count: int
    total_amount: Decimal


class RenewalStats(BaseModel):
    status_breakdown: list[RenewalStatusBucket]
    expiry_breakdown: list[RenewalExpiryBucket]
    monthly_revenue: list[RenewalMonthBucket]


class InvoiceItemCreate(BaseModel):
    description: str = Field(min_length=1)
    quantity: Decimal = Field(default=Decimal("1"), gt=Decimal("0"))
    rate: Decimal = Field(ge=Decimal("0"))
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))


class InvoiceItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


class InvoiceCreate(BaseModel):
    customer_id: UUID
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    tax: Decimal | None = Field(default=None, ge=Decimal("0"))
    total: Decimal | None = Field(default=None, ge=Decimal("0"))
    status: InvoiceStatus | None = None
    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    items: list[InvoiceItemCreate] = Field(min_length=1)


class InvoiceUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    tax: Decimal | None = Field(default=None, ge=Decimal("0"))
    total: Decimal | None = Field(default=None, ge=Decimal("0"))
    status: InvoiceStatus | None = None
    issue_date: date | None = None
    due_date: date | None = None
    paid_date: date | None = None
    notes: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    invoice_number: str
    amount: Decimal
    tax: Decimal
    total: Decimal
    status: InvoiceStatus | str
    issue_date: date
    due_date: date
    paid_date: date | None
    notes: str | None
    auto_cycle_key: str | None
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItemRead] = Field(default_factory=list)


class AutoInvoiceResult(BaseModel):
    created: bool
    invoice: InvoiceRead


class ReminderCreate(BaseModel):
    customer_id: UUID
    service_type: ServiceType
    service_name: str = Field(min_length=1)
    expiry_date: date
    reminder_days: list[int] = Field(min_length=1)
    status: ReminderStatus = "active"
    whatsapp_template: str | None = None


class ReminderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    service_type: ServiceType | str
    service_name: str
    expiry_date: date
    reminder_days: list[int]
    last_reminder_sent: date | None
    status: ReminderStatus | str
    whatsapp_template: str | None
    created_at: datetime
    updated_at: datetime
    days_until_expiry: int | None = None


class ReminderSweepRead(BaseModel):
    sent_count: int
    failed_count: int
    skipped_count: int
    skipped_overlap: bool


class StatusSweepRead(BaseModel):
    renewals_expired: int
    renewals_expiring: int
    invoices_overdue: int
