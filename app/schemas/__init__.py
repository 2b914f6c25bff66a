"""Schema package exports."""
from .booking import ParticipantDetail, PendingBookingDetails
from .payment import CheckoutRead, CheckoutRequest, PaymentRead, RefundRequest
from .payment_method import SavedPaymentMethodCreate, SavedPaymentMethodRead

__all__ = [
    "CheckoutRead",
    "CheckoutRequest",
    "ParticipantDetail",
    "PaymentRead",
    "PendingBookingDetails",
    "RefundRequest",
    "SavedPaymentMethodCreate",
    "SavedPaymentMethodRead",
]
