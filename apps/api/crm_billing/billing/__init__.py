from crm_billing.billing.api import invoices_router, renewals_router
from crm_billing.billing.derivation import InvoiceCandidate, RenewalCandidate, build_invoice, build_renewal
from crm_billing.billing.models import Invoice, InvoiceItem, Renewal, RenewalReminder
from crm_billing.billing.reminders import ReminderDispatcher, ReminderSweepResult
from crm_billing.billing.service import BillingService, billing_service
from crm_billing.billing.sweeps import StatusSweeper, StatusSweepResult

__all__ = [
    "invoices_router",
    "renewals_router",
    "InvoiceCandidate",
    "RenewalCandidate",
    "build_invoice",
    "build_renewal",
    "Invoice",
    "InvoiceItem",
    "Renewal",
    "RenewalReminder",
    "ReminderDispatcher",
    "ReminderSweepResult",
    "BillingService",
    "billing_service",
    "StatusSweeper",
    "StatusSweepResult",
]
