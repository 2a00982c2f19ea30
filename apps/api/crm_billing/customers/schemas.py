from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


RecurringInterval = Literal["monthly", "yearly"]


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = None
    company: str | None = None
    service: str | None = None
    whatsapp_number: str | None = Field(default=None, max_length=32)
    total_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    one_time_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    monthly_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    recurring_enabled: bool = False
    recurring_interval: RecurringInterval = "monthly"
    recurring_amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    recurring_service: str | None = None
    next_renewal_date: date | None = None
    default_renewal_status: str | None = None
    default_renewal_reminder_days: int | None = Field(default=None, ge=1)
    default_renewal_notes: str | None = None
    default_tax_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    default_due_days: int | None = Field(default=None, ge=0)
    default_invoice_notes: str | None = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None
    company: str | None
    service: str | None
    whatsapp_number: str | None
    total_value: Decimal | None
    one_time_price: Decimal | None
    monthly_price: Decimal | None
    recurring_enabled: bool
    recurring_interval: RecurringInterval | str
    recurring_amount: Decimal | None
    recurring_service: str | None
    next_renewal_date: date | None
    default_renewal_status: str | None
    default_renewal_reminder_days: int | None
    default_renewal_notes: str | None
    default_tax_rate: Decimal | None
    default_due_days: int | None
    default_invoice_notes: str | None
    created_at: datetime
    updated_at: datetime
