"""Payment checkout saga: charge first, book only once money has moved."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache, partial
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings, get_settings
from app.models import OPEN_STATUSES, Payment, PaymentMethod, PaymentStatus
from app.schemas.booking import PendingBookingDetails
from app.schemas.payment import CheckoutRequest
from app.services import payment_methods as payment_methods_service
from app.services.booking import BookingDelegate, BookingError, HttpBookingDelegate
from app.services.events import EventPublisher, completed_event, get_event_publisher, refunded_event
from app.services.fees import compute_fees
from app.services.psp_gateway import (
    GatewayAdapter,
    GatewayMode,
    GatewayResult,
    GatewayStatus,
    GatewayStatusResult,
    SavedCardDetails,
)
from app.services.psp_paypal import WalletGateway
from app.services.psp_stripe import CardGateway
from app.utils.audit import actor_from_user, log_audit
from app.utils.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[], GatewayAdapter]

USER_DELETED_REASON = "User account deleted"

_STATUS_TARGETS = {
    GatewayStatus.SETTLED: PaymentStatus.COMPLETED,
    GatewayStatus.VOIDED: PaymentStatus.CANCELLED,
}

_FAILURE_REASONS = {
    GatewayStatus.REQUIRES_ACTION: "Payment method required",
    GatewayStatus.DECLINED: "Payment declined by provider",
}

_CANCEL_REASONS = {
    PaymentMethod.CARD: "Checkout session expired",
    PaymentMethod.WALLET: "PayPal payment cancelled",
}


@dataclass(frozen=True)
class CheckoutResult:
    """A freshly created payment plus what the client must do next."""

    payment: Payment
    continuation: str | None = None
    client_secret: str | None = None
    redirect_url: str | None = None


def new_transaction_id() -> str:
    return f"TXN-{str(uuid4()).upper()}"


class PaymentOrchestrator:
    """Owns the payment lifecycle from checkout to refund.

    Booking creation goes through the ``BookingDelegate`` only and happens at
    most once per payment: the ``booking_id is None`` gate plus a committed
    claim (``booking_attempted_at``) guarded by the payment's version counter.
    Events are emitted after the state they describe has been committed.
    """

    def __init__(
        self,
        db: Session,
        *,
        gateways: Mapping[PaymentMethod, GatewayFactory],
        booking: BookingDelegate,
        events: EventPublisher,
        settings: Settings | None = None,
        actor: str = "system",
    ) -> None:
        self.db = db
        self.booking = booking
        self.events = events
        self.settings = settings or get_settings()
        self.actor = actor
        self._gateway_factories = dict(gateways)
        self._gateways: dict[PaymentMethod, GatewayAdapter] = {}

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def initiate_checkout(self, request: CheckoutRequest, auth: str | None = None) -> CheckoutResult:
        self._validate_checkout(request)
        gateway = self._gateway_for(request.method)
        method_token = self._resolve_method_token(request)

        breakdown = compute_fees(request.method, request.amount)
        payment = Payment(
            transaction_id=new_transaction_id(),
            payer_id=request.payer_id,
            trip_id=request.trip_id,
            manager_id=request.manager_id,
            participant_count=request.participant_count,
            amount=request.amount,
            currency=request.currency,
            fee=breakdown.fee,
            net_amount=breakdown.net_amount,
            method=request.method,
            status=PaymentStatus.PENDING,
        )
        if request.booking_id is not None:
            payment.booking_id = request.booking_id
        else:
            payment.pending_booking_details = PendingBookingDetails(
                trip_id=request.trip_id,
                participant_count=request.participant_count,
                payer_name=request.payer_name,
                participants=request.participant_details,
            ).to_snapshot()

        payment.transition_to(PaymentStatus.PROCESSING)
        self.db.add(payment)
        self.db.flush()
        self._audit(
            payment,
            "CHECKOUT_INITIATED",
            {
                "transaction_id": payment.transaction_id,
                "amount": str(payment.amount),
                "fee": str(payment.fee),
                "currency": payment.currency,
                "method": payment.method.value,
                "booking_id": payment.booking_id,
            },
            actor=actor_from_user(request.payer_id, fallback=self.actor),
        )
        logger.info(
            "Checkout initiated",
            extra={
                "payment_id": payment.id,
                "transaction_id": payment.transaction_id,
                "method": payment.method.value,
                "payment_first": payment.booking_id is None,
            },
        )

        if gateway is None:
            # offline settlement; stays PROCESSING until reconciled
            self.db.commit()
            return CheckoutResult(payment=payment)

        try:
            result = gateway.create(
                payment.amount,
                payment.currency,
                self._metadata(payment),
                method_token,
                description=self._description(payment),
                **self._save_card_options(request),
            )
        except GatewayError as exc:
            payment.transition_to(PaymentStatus.FAILED, at=utcnow())
            payment.failure_reason = exc.message
            self._audit(payment, "PAYMENT_FAILED", {"reason": exc.message})
            self.db.commit()
            logger.warning(
                "Gateway rejected checkout",
                extra={"payment_id": payment.id, "code": exc.code},
            )
            raise

        payment.psp_intent_ref = result.intent_ref
        payment.psp_session_ref = result.session_ref
        settled_now = False
        if result.settled:
            payment.transition_to(PaymentStatus.COMPLETED, at=utcnow())
            payment.psp_ref = result.transaction_ref or result.reference
            self._audit(payment, "PAYMENT_COMPLETED", {"psp_reference": payment.psp_ref})
            settled_now = True

        claimed = self._claim_booking(payment)
        self.db.commit()
        if claimed:
            payment = self._run_booking(payment, auth)
        if settled_now:
            self._publish_completed(payment)
        return self._checkout_result(payment, result)

    def _validate_checkout(self, request: CheckoutRequest) -> None:
        has_booking_params = request.participant_count is not None or bool(request.participant_details)
        if request.booking_id is not None and has_booking_params:
            raise ValidationError(
                "Provide either booking_id or booking parameters, not both",
                code="BOOKING_MODE_AMBIGUOUS",
            )
        if request.booking_id is None and not has_booking_params:
            raise ValidationError(
                "Either booking_id or booking parameters are required",
                code="BOOKING_MODE_MISSING",
            )
        if has_booking_params and (request.trip_id is None or request.participant_count is None):
            raise ValidationError(
                "trip_id and participant_count are required to book after payment",
                code="BOOKING_PARAMETERS_INCOMPLETE",
            )
        if request.payment_method_token and request.saved_payment_method_id is not None:
            raise ValidationError(
                "Provide either a payment method token or a saved payment method, not both",
                code="PAYMENT_METHOD_AMBIGUOUS",
            )

    def _resolve_method_token(self, request: CheckoutRequest) -> str | None:
        if request.saved_payment_method_id is None:
            return request.payment_method_token
        saved = payment_methods_service.get_payment_method(self.db, request.saved_payment_method_id)
        if saved.user_id != request.payer_id:
            raise ValidationError(
                "Saved payment method does not belong to the payer",
                code="PAYMENT_METHOD_NOT_OWNED",
            )
        return saved.provider_method_id

    def _save_card_options(self, request: CheckoutRequest) -> dict[str, Any]:
        if not (
            request.save_payment_method
            and request.method == PaymentMethod.CARD
            and request.payment_method_token
        ):
            return {}
        return {
            "on_method_saved": partial(self._store_card, request.payer_id),
            "cardholder_name": request.cardholder_name,
        }

    def _store_card(self, user_id: int, details: SavedCardDetails) -> None:
        with self.db.begin_nested():
            payment_methods_service.save_card(self.db, user_id, details)

    @staticmethod
    def _metadata(payment: Payment) -> dict[str, str]:
        metadata = {
            "payment_id": str(payment.id),
            "transaction_id": payment.transaction_id,
            "payer_id": str(payment.payer_id),
        }
        if payment.trip_id is not None:
            metadata["trip_id"] = str(payment.trip_id)
        if payment.booking_id is not None:
            metadata["booking_id"] = str(payment.booking_id)
        return metadata

    @staticmethod
    def _description(payment: Payment) -> str:
        if payment.trip_id is not None:
            return f"Trip #{payment.trip_id} ({payment.transaction_id})"
        return f"Trip booking ({payment.transaction_id})"

    @staticmethod
    def _checkout_result(payment: Payment, result: GatewayResult) -> CheckoutResult:
        if result.mode == GatewayMode.IMMEDIATE:
            return CheckoutResult(
                payment=payment,
                continuation="CLIENT_SECRET",
                client_secret=result.continuation,
            )
        return CheckoutResult(payment=payment, continuation="REDIRECT", redirect_url=result.continuation)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------
    def confirm(self, reference: str, auth: str | None = None) -> Payment:
        """Reconcile a payment with the provider's authoritative status."""

        payment = self._find_by_reference(reference)
        gateway = self._gateway_for(payment.method)
        if gateway is None:
            raise ConflictError(
                "Payment has no provider to confirm with",
                code="PAYMENT_NOT_CONFIRMABLE",
                details={"payment_id": payment.id},
            )
        status = gateway.retrieve_status(reference)
        return self._settle(payment, status, auth)

    def confirm_wallet(self, reference: str, payer_token: str, auth: str | None = None) -> Payment:
        """Execute an approved wallet payment, then reconcile it like ``confirm``."""

        payment = self._find_by_reference(reference)
        if payment.method != PaymentMethod.WALLET:
            raise ConflictError(
                "Payment was not made with a wallet",
                code="PAYMENT_NOT_WALLET",
                details={"payment_id": payment.id},
            )
        if payment.status == PaymentStatus.COMPLETED:
            # already executed; only a pending booking may be left to do
            return self._settle_booking_only(payment, auth)
        if payment.status != PaymentStatus.PROCESSING:
            raise ConflictError(
                f"Payment is {payment.status.value} and cannot be executed",
                code="PAYMENT_NOT_EXECUTABLE",
                details={"payment_id": payment.id},
            )
        gateway = self._gateway_for(PaymentMethod.WALLET)
        status = gateway.execute(reference, payer_token)
        return self._settle(payment, status, auth)

    def _settle(self, payment: Payment, status: GatewayStatusResult, auth: str | None) -> Payment:
        payment_id = payment.id
        moved_to_completed = self._apply_status(payment, status)
        claimed = self._claim_booking(payment)
        try:
            self.db.commit()
        except StaleDataError:
            return self._lost_race(payment_id)
        if claimed:
            payment = self._run_booking(payment, auth)
        if moved_to_completed:
            self._publish_completed(payment)
        return payment

    def _settle_booking_only(self, payment: Payment, auth: str | None) -> Payment:
        payment_id = payment.id
        if not self._claim_booking(payment):
            return payment
        try:
            self.db.commit()
        except StaleDataError:
            return self._lost_race(payment_id)
        return self._run_booking(payment, auth)

    def _apply_status(self, payment: Payment, status: GatewayStatusResult) -> bool:
        """Map a provider status onto the payment; True if it just completed."""

        target = _STATUS_TARGETS.get(status.status, PaymentStatus.FAILED)
        if payment.status == target:
            if target == PaymentStatus.COMPLETED and payment.psp_ref is None and status.transaction_ref:
                payment.psp_ref = status.transaction_ref
            return False
        if not payment.can_transition_to(target):
            logger.info(
                "Provider status does not apply to payment",
                extra={
                    "payment_id": payment.id,
                    "payment_status": payment.status.value,
                    "provider_status": status.status.value,
                },
            )
            return False

        payment.transition_to(target, at=utcnow())
        data: dict[str, Any] = {"provider_status": status.raw_status or status.status.value}
        if target == PaymentStatus.COMPLETED:
            if payment.psp_ref is None and status.transaction_ref:
                payment.psp_ref = status.transaction_ref
            data["psp_reference"] = payment.psp_ref
        elif target == PaymentStatus.FAILED:
            payment.failure_reason = self._failure_reason(payment, status)
            data["reason"] = payment.failure_reason
        elif target == PaymentStatus.CANCELLED:
            payment.failure_reason = _CANCEL_REASONS.get(payment.method, "Payment cancelled by provider")
            data["reason"] = payment.failure_reason
        self._audit(payment, f"PAYMENT_{target.value}", data)
        logger.info(
            "Payment status updated from provider",
            extra={"payment_id": payment.id, "status": target.value},
        )
        return target == PaymentStatus.COMPLETED

    @staticmethod
    def _failure_reason(payment: Payment, status: GatewayStatusResult) -> str:
        if payment.method == PaymentMethod.WALLET:
            reason = "PayPal payment not approved"
        else:
            reason = _FAILURE_REASONS.get(status.status, "Payment not completed")
        if status.raw_status:
            return f"{reason} (provider status: {status.raw_status})"
        return reason

    def _lost_race(self, payment_id: int) -> Payment:
        self.db.rollback()
        logger.info(
            "Payment changed concurrently; returning current state",
            extra={"payment_id": payment_id},
        )
        return self.get_payment(payment_id)

    # ------------------------------------------------------------------
    # Booking step
    # ------------------------------------------------------------------
    def _booking_in_flight(self, payment: Payment) -> bool:
        attempted = as_utc(payment.booking_attempted_at)
        if attempted is None or payment.failure_reason is not None:
            return False
        return utcnow() - attempted < timedelta(seconds=self.settings.BOOKING_CLAIM_TTL_SECONDS)

    def _claim_booking(self, payment: Payment) -> bool:
        """Stage the booking claim; the caller commits it before calling out."""

        if payment.status != PaymentStatus.COMPLETED or not payment.awaiting_booking:
            return False
        if self._booking_in_flight(payment):
            logger.info("Booking attempt already in flight", extra={"payment_id": payment.id})
            return False
        payment.booking_attempted_at = utcnow()
        payment.failure_reason = None
        return True

    def _run_booking(self, payment: Payment, auth: str | None) -> Payment:
        """Call the booking service for a claimed payment and record the outcome.

        If the row moved on while the booking service was working (a refund,
        say), the outcome is written again on the reloaded row so a created
        booking is never dropped.
        """

        payment_id = payment.id
        booking_id: int | None = None
        error: str | None = None
        try:
            details = PendingBookingDetails.from_snapshot(payment.pending_booking_details)
            booking_id = self.booking.create_booking(
                trip_id=details.trip_id,
                participant_count=details.participant_count,
                participant_details=details.participants,
                payer_id=payment.payer_id,
                payer_name=details.payer_name,
                auth=auth,
            )
        except (BookingError, SchemaValidationError, ValidationError) as exc:
            error = str(exc)
            logger.warning(
                "Booking failed after payment; manual follow-up required",
                extra={"payment_id": payment_id, "error": error},
            )
        self._record_booking_outcome(payment, booking_id, error)
        try:
            self.db.commit()
        except StaleDataError:
            return self._rerecord_booking_outcome(payment_id, booking_id, error)
        return payment

    def _record_booking_outcome(self, payment: Payment, booking_id: int | None, error: str | None) -> None:
        if booking_id is not None:
            payment.booking_id = booking_id
            payment.pending_booking_details = None
            self._audit(payment, "BOOKING_CREATED", {"booking_id": booking_id})
        else:
            payment.failure_reason = f"Payment completed but booking creation failed: {error}"
            self._audit(payment, "BOOKING_FAILED", {"reason": error})

    def _rerecord_booking_outcome(self, payment_id: int, booking_id: int | None, error: str | None) -> Payment:
        self.db.rollback()
        payment = self.get_payment(payment_id)
        logger.info(
            "Payment changed during booking; recording outcome on current state",
            extra={"payment_id": payment_id, "booking_id": booking_id, "status": payment.status.value},
        )
        if not payment.awaiting_booking:
            if booking_id is not None and payment.booking_id != booking_id:
                logger.error(
                    "Booking created for a payment that is already linked; reconcile manually",
                    extra={"payment_id": payment_id, "orphaned_booking_id": booking_id},
                )
            return payment
        self._record_booking_outcome(payment, booking_id, error)
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.error(
                "Booking outcome could not be recorded; reconcile manually",
                extra={"payment_id": payment_id, "orphaned_booking_id": booking_id, "error": error},
            )
            return self.get_payment(payment_id)
        return payment

    # ------------------------------------------------------------------
    # Refunds and operator actions
    # ------------------------------------------------------------------
    def refund_payment(
        self,
        payment_id: int,
        amount: Decimal | None = None,
        *,
        reason: str | None = None,
    ) -> Payment:
        payment = self.get_payment(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise ConflictError(
                f"Only completed payments can be refunded (status: {payment.status.value})",
                code="PAYMENT_NOT_REFUNDABLE",
                details={"payment_id": payment.id, "status": payment.status.value},
            )
        refund_amount = payment.amount if amount is None else Decimal(str(amount)).quantize(Decimal("0.01"))
        if refund_amount <= 0 or refund_amount > payment.amount:
            raise ValidationError(
                "Refund amount must be positive and not exceed the paid amount",
                code="REFUND_AMOUNT_INVALID",
                details={"amount": str(refund_amount), "paid": str(payment.amount)},
            )

        if self._refund_in_flight(payment):
            raise ConflictError(
                "A refund is already in progress",
                code="REFUND_IN_PROGRESS",
                details={"payment_id": payment.id},
            )

        gateway = self._gateway_for(payment.method)
        refund_ref = None
        if gateway is not None:
            reference = getattr(payment, gateway.refund_reference_field)
            if not reference:
                raise ConflictError(
                    "Payment has no provider reference to refund against",
                    code="PAYMENT_REFERENCE_MISSING",
                    details={"payment_id": payment.id},
                )
            # claim under the version counter so only one caller reaches the provider
            payment.refund_requested_at = utcnow()
            try:
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                raise ConflictError(
                    "Payment changed while preparing the refund; retry",
                    code="PAYMENT_CONCURRENT_UPDATE",
                    details={"payment_id": payment_id},
                )
            try:
                refund_ref = gateway.refund(reference, refund_amount, payment.currency).refund_ref
            except GatewayError:
                payment.refund_requested_at = None
                self.db.commit()
                raise

        self._record_refund(payment, refund_amount, refund_ref, reason)
        try:
            self.db.commit()
        except StaleDataError:
            payment = self._rerecord_refund(payment_id, refund_amount, refund_ref, reason)
        logger.info(
            "Payment refunded",
            extra={"payment_id": payment.id, "refund_amount": str(refund_amount)},
        )
        self._publish(self.settings.KAFKA_TOPIC_PAYMENT_REFUNDED, payment, refunded_event(payment))
        return payment

    def _refund_in_flight(self, payment: Payment) -> bool:
        requested = as_utc(payment.refund_requested_at)
        if requested is None:
            return False
        return utcnow() - requested < timedelta(seconds=self.settings.REFUND_CLAIM_TTL_SECONDS)

    def _record_refund(
        self,
        payment: Payment,
        refund_amount: Decimal,
        refund_ref: str | None,
        reason: str | None,
    ) -> None:
        payment.transition_to(PaymentStatus.REFUNDED, at=utcnow())
        payment.refund_amount = refund_amount
        self._audit(
            payment,
            "PAYMENT_REFUNDED",
            {"refund_amount": str(refund_amount), "refund_ref": refund_ref, "reason": reason},
        )

    def _rerecord_refund(
        self,
        payment_id: int,
        refund_amount: Decimal,
        refund_ref: str | None,
        reason: str | None,
    ) -> Payment:
        """The provider already refunded; write it onto the reloaded row."""

        self.db.rollback()
        payment = self.get_payment(payment_id)
        if payment.status == PaymentStatus.COMPLETED:
            self._record_refund(payment, refund_amount, refund_ref, reason)
            try:
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
            else:
                return payment
        logger.error(
            "Refund issued but could not be recorded; reconcile manually",
            extra={"payment_id": payment_id, "refund_ref": refund_ref, "status": payment.status.value},
        )
        raise ConflictError(
            "Payment changed while refunding; check provider state",
            code="PAYMENT_CONCURRENT_UPDATE",
            details={"payment_id": payment_id, "refund_ref": refund_ref},
        )

    def retry_booking(self, payment_id: int, auth: str | None = None) -> Payment:
        """Replay the booking step for a payment stuck in the compensation gap."""

        payment = self.get_payment(payment_id)
        if payment.status != PaymentStatus.COMPLETED or not payment.awaiting_booking:
            raise ConflictError(
                "Payment has no pending booking to retry",
                code="BOOKING_NOT_PENDING",
                details={"payment_id": payment.id, "status": payment.status.value},
            )
        if not self._claim_booking(payment):
            raise ConflictError(
                "A booking attempt is already in progress",
                code="BOOKING_IN_PROGRESS",
                details={"payment_id": payment.id},
            )
        try:
            self.db.commit()
        except StaleDataError:
            return self._lost_race(payment_id)
        return self._run_booking(payment, auth)

    def cancel_user_payments(self, user_id: int) -> int:
        """Erasure cascade: cancel open payments and forget saved methods."""

        stmt = select(Payment).where(Payment.payer_id == user_id, Payment.status.in_(OPEN_STATUSES))
        payments = list(self.db.scalars(stmt))
        now = utcnow()
        for payment in payments:
            if payment.status == PaymentStatus.PENDING:
                payment.transition_to(PaymentStatus.PROCESSING)
            payment.transition_to(PaymentStatus.CANCELLED, at=now)
            payment.failure_reason = USER_DELETED_REASON
            self._audit(payment, "PAYMENT_CANCELLED", {"reason": USER_DELETED_REASON})
        removed = payment_methods_service.delete_all_for_user(self.db, user_id)
        self.db.commit()
        logger.info(
            "User payments cancelled",
            extra={"user_id": user_id, "cancelled": len(payments), "payment_methods_removed": removed},
        )
        return len(payments)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})
        return payment

    def list_user_payments(self, user_id: int) -> list[Payment]:
        stmt = select(Payment).where(Payment.payer_id == user_id).order_by(Payment.created_at.desc(), Payment.id.desc())
        return list(self.db.scalars(stmt))

    def list_completed_user_payments(self, user_id: int) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.payer_id == user_id, Payment.status == PaymentStatus.COMPLETED)
            .order_by(Payment.paid_at.desc(), Payment.id.desc())
        )
        return list(self.db.scalars(stmt))

    def list_manager_payments(self, manager_id: int) -> list[Payment]:
        """Payments for trips run by a manager, newest first."""

        stmt = (
            select(Payment)
            .where(Payment.manager_id == manager_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        )
        return list(self.db.scalars(stmt))

    def get_payment_by_booking(self, booking_id: int) -> Payment:
        stmt = select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.id.desc())
        payment = self.db.scalars(stmt).first()
        if payment is None:
            raise NotFoundError("No payment for booking", details={"booking_id": booking_id})
        return payment

    def list_compensation_gaps(self) -> list[Payment]:
        """Completed payments whose booking was never created."""

        stmt = (
            select(Payment)
            .where(
                Payment.status == PaymentStatus.COMPLETED,
                Payment.booking_id.is_(None),
                Payment.pending_booking_details.is_not(None),
            )
            .order_by(Payment.paid_at.asc(), Payment.id.asc())
        )
        return list(self.db.scalars(stmt))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find_by_reference(self, reference: str) -> Payment:
        payment = self.db.scalar(select(Payment).where(Payment.psp_session_ref == reference))
        if payment is None:
            payment = self.db.scalar(select(Payment).where(Payment.psp_intent_ref == reference))
        if payment is None:
            raise NotFoundError("No payment matches the provider reference", details={"reference": reference})
        return payment

    def _gateway_for(self, method: PaymentMethod) -> GatewayAdapter | None:
        method = PaymentMethod(method)
        if method not in self._gateways:
            factory = self._gateway_factories.get(method)
            if factory is None:
                return None
            self._gateways[method] = factory()
        return self._gateways[method]

    def _audit(self, payment: Payment, action: str, data: dict[str, Any], *, actor: str | None = None) -> None:
        log_audit(self.db, actor=actor or self.actor, action=action, entity="Payment", entity_id=payment.id, data=data)

    def _publish_completed(self, payment: Payment) -> None:
        self._publish(self.settings.KAFKA_TOPIC_PAYMENT_COMPLETED, payment, completed_event(payment))

    def _publish(self, topic: str, payment: Payment, event) -> None:
        try:
            self.events.publish(topic, str(payment.id), event)
        except Exception:  # noqa: BLE001
            logger.exception("Event publish failed", extra={"payment_id": payment.id, "topic": topic})


@lru_cache
def get_booking_delegate() -> HttpBookingDelegate:
    return HttpBookingDelegate.from_env()


def build_orchestrator(db: Session, *, actor: str = "system") -> PaymentOrchestrator:
    """Wire the orchestrator with the configured providers."""

    settings = get_settings()
    return PaymentOrchestrator(
        db,
        gateways={
            PaymentMethod.CARD: partial(CardGateway, settings),
            PaymentMethod.WALLET: partial(WalletGateway, settings),
        },
        booking=get_booking_delegate(),
        events=get_event_publisher(),
        settings=settings,
        actor=actor,
    )


__all__ = [
    "CheckoutResult",
    "PaymentOrchestrator",
    "USER_DELETED_REASON",
    "build_orchestrator",
    "get_booking_delegate",
    "new_transaction_id",
]
