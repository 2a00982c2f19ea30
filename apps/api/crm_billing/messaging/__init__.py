from crm_billing.messaging.models import WhatsAppMessage
from crm_billing.messaging.notifier import (
    LoggingNotifier,
    NotificationOutcome,
    Notifier,
    NotifierError,
    WhatsAppCloudNotifier,
    build_notifier,
)

__all__ = [
    "WhatsAppMessage",
    "LoggingNotifier",
    "NotificationOutcome",
    "Notifier",
    "NotifierError",
    "WhatsAppCloudNotifier",
    "build_notifier",
]
