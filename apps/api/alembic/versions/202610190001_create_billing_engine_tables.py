"""create customer, renewal, invoice and messaging tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("service", sa.String(length=255), nullable=True),
        sa.Column("whatsapp_number", sa.String(length=32), nullable=True),
        sa.Column("total_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("one_time_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("monthly_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("recurring_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurring_interval", sa.String(length=16), nullable=False, server_default="monthly"),
        sa.Column("recurring_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("recurring_service", sa.String(length=255), nullable=True),
        sa.Column("next_renewal_date", sa.Date(), nullable=True),
        sa.Column("default_renewal_status", sa.String(length=32), nullable=True),
        sa.Column("default_renewal_reminder_days", sa.Integer(), nullable=True),
        sa.Column("default_renewal_notes", sa.Text(), nullable=True),
        sa.Column("default_tax_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("default_due_days", sa.Integer(), nullable=True),
        sa.Column("default_invoice_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customer_created_at", "customer", ["created_at"])

    op.create_table(
        "renewal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("service", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("reminder_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("auto_cycle_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "auto_cycle_key", name="uq_renewal_customer_cycle"),
    )
    op.create_index("ix_renewal_expiry_status", "renewal", ["expiry_date", "status"])

    op.create_table(
        "renewal_reminder",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("service_type", sa.String(length=32), nullable=False),
        sa.Column("service_name", sa.String(length=255), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("reminder_days", sa.JSON(), nullable=False),
        sa.Column("last_reminder_sent", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("whatsapp_template", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_renewal_reminder_status_expiry", "renewal_reminder", ["status", "expiry_date"])

    op.create_table(
        "invoice",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tax", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("auto_cycle_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number", name="uq_invoice_number"),
        sa.UniqueConstraint("customer_id", "auto_cycle_key", name="uq_invoice_customer_cycle"),
    )
    op.create_index("ix_invoice_due_status", "invoice", ["due_date", "status"])

    op.create_table(
        "invoice_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("invoice_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoice.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invoice_item_invoice", "invoice_item", ["invoice_id"])

    op.create_table(
        "whatsapp_message",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("reminder_id", sa.Uuid(), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("provider_message_id", sa.String(length=128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reminder_id"], ["renewal_reminder.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_whatsapp_message_customer", "whatsapp_message", ["customer_id", "created_at"])
    op.create_index("ix_whatsapp_message_reminder", "whatsapp_message", ["reminder_id"])


def downgrade() -> None:
    op.drop_index("ix_whatsapp_message_reminder", table_name="whatsapp_message")
    op.drop_index("ix_whatsapp_message_customer", table_name="whatsapp_message")
    op.drop_table("whatsapp_message")
    op.drop_index("ix_invoice_item_invoice", table_name="invoice_item")
    op.drop_table("invoice_item")
    op.drop_index("ix_invoice_due_status", table_name="invoice")
    op.drop_table("invoice")
    op.drop_index("ix_renewal_reminder_status_expiry", table_name="renewal_reminder")
    op.drop_table("renewal_reminder")
    op.drop_index("ix_renewal_expiry_status", table_name="renewal")
    op.drop_table("renewal")
    op.drop_index("ix_customer_created_at", table_name="customer")
    op.drop_table("customer")
