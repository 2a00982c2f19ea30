from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from crm_billing.billing.schemas import (
    AutoGenerateSummary,
    AutoInvoiceResult,
    AutoRenewalResult,
    InvoiceCreate,
    InvoiceRead,
    InvoiceUpdate,
    ReminderCreate,
    ReminderRead,
    RenewalCreate,
    RenewalRead,
    RenewalStats,
    RenewalUpdate,
)
from crm_billing.billing.service import billing_service
from crm_billing.core.database import get_db


renewals_router = APIRouter(prefix="/renewals", tags=["renewals"])
invoices_router = APIRouter(prefix="/invoices", tags=["invoices"])


@renewals_router.post("", response_model=RenewalRead, status_code=status.HTTP_201_CREATED)
def create_renewal(payload: RenewalCreate, db: Session = Depends(get_db)) -> RenewalRead:
    return billing_service.create_renewal(db, payload)


@renewals_router.post("/auto-generate", response_model=AutoGenerateSummary)
def auto_generate_renewals(db: Session = Depends(get_db)) -> AutoGenerateSummary:
    return billing_service.auto_generate_renewals(db)


@renewals_router.post("/auto/{customer_id}", response_model=AutoRenewalResult)
def create_auto_renewal(customer_id: uuid.UUID, response: Response, db: Session = Depends(get_db)) -> AutoRenewalResult:
    result = billing_service.create_auto_renewal_if_absent(db, customer_id)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return result


@renewals_router.post("/reminders", response_model=ReminderRead, status_code=status.HTTP_201_CREATED)
def create_reminder(payload: ReminderCreate, db: Session = Depends(get_db)) -> ReminderRead:
    return billing_service.create_reminder(db, payload)


@renewals_router.get("/reminders", response_model=list[ReminderRead])
def list_reminders(
    customer_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ReminderRead]:
    return billing_service.list_reminders(db, customer_id=customer_id)


@renewals_router.get("/stats/overview", response_model=RenewalStats)
def renewal_stats(db: Session = Depends(get_db)) -> RenewalStats:
    return billing_service.renewal_stats(db)


@renewals_router.get("/{renewal_id}", response_model=RenewalRead)
def get_renewal(renewal_id: uuid.UUID, db: Session = Depends(get_db)) -> RenewalRead:
    return billing_service.get_renewal(db, renewal_id)


@renewals_router.patch("/{renewal_id}", response_model=RenewalRead)
def update_renewal(renewal_id: uuid.UUID, payload: RenewalUpdate, db: Session = Depends(get_db)) -> RenewalRead:
    return billing_service.update_renewal(db, renewal_id, payload)


@invoices_router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(payload: InvoiceCreate, db: Session = Depends(get_db)) -> InvoiceRead:
    return billing_service.create_invoice(db, payload)


@invoices_router.post("/auto/{customer_id}", response_model=AutoInvoiceResult)
def create_auto_invoice(customer_id: uuid.UUID, response: Response, db: Session = Depends(get_db)) -> AutoInvoiceResult:
    result = billing_service.create_auto_invoice_if_absent(db, customer_id)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return result


@invoices_router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(invoice_id: uuid.UUID, db: Session = Depends(get_db)) -> InvoiceRead:
    return billing_service.get_invoice(db, invoice_id)


@invoices_router.patch("/{invoice_id}", response_model=InvoiceRead)
def update_invoice(invoice_id: uuid.UUID, payload: InvoiceUpdate, db: Session = Depends(get_db)) -> InvoiceRead:
    return billing_service.update_invoice(db, invoice_id, payload)
