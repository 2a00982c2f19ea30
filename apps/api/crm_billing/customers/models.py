from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, Numeric, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from crm_billing.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(Base):
    __tablename__ = "customer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service: Mapped[str | None] = mapped_column(String(255), nullable=True)
    whatsapp_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    one_time_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    monthly_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    recurring_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    recurring_interval: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly", server_default="monthly")
    recurring_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    recurring_service: Mapped[str | None] = mapped_column(String(255), nullable=True)
    next_renewal_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    default_renewal_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    default_renewal_reminder_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_renewal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    default_due_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_invoice_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_customer_created_at", "created_at"),
    )
