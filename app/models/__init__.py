"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .payment import OPEN_STATUSES, Payment, PaymentMethod, PaymentStatus
from .psp_webhook import PSPWebhookEvent
from .saved_payment_method import SavedPaymentMethod

__all__ = [
    "AuditLog",
    "Base",
    "OPEN_STATUSES",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PSPWebhookEvent",
    "SavedPaymentMethod",
]
