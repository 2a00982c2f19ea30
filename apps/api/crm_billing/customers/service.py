from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_billing import events
from crm_billing.core.events import CUSTOMER_CREATED
from crm_billing.customers.models import Customer
from crm_billing.customers.schemas import CustomerCreate, CustomerRead


logger = logging.getLogger("crm_billing.customers")


@dataclass(slots=True)
class CustomerService:
    def create_customer(self, session: Session, payload: CustomerCreate) -> CustomerRead:
        customer = Customer(**payload.model_dump())
        session.add(customer)
        try:
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        session.refresh(customer)

        logger.info("customer.created", extra={"customer_id": str(customer.id)})
        events.publish(
            CUSTOMER_CREATED,
            customer_id=str(customer.id),
            recurring_enabled=customer.recurring_enabled,
        )
        return CustomerRead.model_validate(customer)

    def get_customer(self, session: Session, customer_id: uuid.UUID) -> CustomerRead:
        customer = session.scalar(select(Customer).where(Customer.id == customer_id))
        if customer is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="customer not found")
        return CustomerRead.model_validate(customer)


customer_service = CustomerService()
