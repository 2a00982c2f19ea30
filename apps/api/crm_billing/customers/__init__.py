from crm_billing.customers.api import router
from crm_billing.customers.models import Customer
from crm_billing.customers.schemas import CustomerCreate, CustomerRead
from crm_billing.customers.service import CustomerService, customer_service

__all__ = [
    "router",
    "Customer",
    "CustomerCreate",
    "CustomerRead",
    "CustomerService",
    "customer_service",
]
