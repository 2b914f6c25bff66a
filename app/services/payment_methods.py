"""Saved payment method management."""
from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.models import SavedPaymentMethod
from app.models.payment import PaymentMethod
from app.schemas.payment_method import SavedPaymentMethodCreate
from app.services.psp_gateway import SavedCardDetails
from app.utils.audit import actor_from_user, log_audit
from app.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


def _clear_default(db: Session, user_id: int) -> None:
    db.execute(
        update(SavedPaymentMethod)
        .where(SavedPaymentMethod.user_id == user_id, SavedPaymentMethod.is_default.is_(True))
        .values(is_default=False)
    )


def save_card(db: Session, user_id: int, details: SavedCardDetails, *, is_default: bool = False) -> SavedPaymentMethod:
    """Store or refresh a card the user asked to keep. Does not commit."""

    method = db.scalar(
        select(SavedPaymentMethod).where(
            SavedPaymentMethod.user_id == user_id,
            SavedPaymentMethod.provider_method_id == details.provider_method_id,
        )
    )
    if method is None:
        method = SavedPaymentMethod(
            user_id=user_id,
            method_type=PaymentMethod.CARD,
            provider_method_id=details.provider_method_id,
        )
        db.add(method)
    if is_default:
        _clear_default(db, user_id)
    method.brand = details.brand
    method.last4 = details.last4
    method.exp_month = details.exp_month
    method.exp_year = details.exp_year
    method.cardholder_name = details.cardholder_name
    method.is_default = is_default
    db.flush()
    log_audit(
        db,
        actor=actor_from_user(user_id),
        action="PAYMENT_METHOD_SAVED",
        entity="SavedPaymentMethod",
        entity_id=method.id,
        data={"brand": method.brand, "last4": method.last4},
    )
    return method


def create_payment_method(db: Session, payload: SavedPaymentMethodCreate) -> SavedPaymentMethod:
    details = SavedCardDetails(
        provider_method_id=payload.provider_method_id,
        brand=None,
        last4=None,
        exp_month=None,
        exp_year=None,
        cardholder_name=payload.cardholder_name,
    )
    method = save_card(db, payload.user_id, details, is_default=payload.is_default)
    method.method_type = payload.method_type
    db.commit()
    db.refresh(method)
    return method


def list_payment_methods(db: Session, user_id: int) -> list[SavedPaymentMethod]:
    stmt = (
        select(SavedPaymentMethod)
        .where(SavedPaymentMethod.user_id == user_id)
        .order_by(SavedPaymentMethod.is_default.desc(), SavedPaymentMethod.created_at.desc())
    )
    return list(db.scalars(stmt))


def get_default_payment_method(db: Session, user_id: int) -> SavedPaymentMethod:
    method = db.scalar(
        select(SavedPaymentMethod).where(
            SavedPaymentMethod.user_id == user_id,
            SavedPaymentMethod.is_default.is_(True),
        )
    )
    if method is None:
        raise NotFoundError("No default payment method", details={"user_id": user_id})
    return method


def get_payment_method(db: Session, method_id: int) -> SavedPaymentMethod:
    method = db.get(SavedPaymentMethod, method_id)
    if method is None:
        raise NotFoundError("Saved payment method not found", details={"payment_method_id": method_id})
    return method


def set_default_payment_method(db: Session, method_id: int) -> SavedPaymentMethod:
    method = get_payment_method(db, method_id)
    _clear_default(db, method.user_id)
    method.is_default = True
    db.commit()
    db.refresh(method)
    return method


def delete_payment_method(db: Session, method_id: int) -> None:
    method = get_payment_method(db, method_id)
    db.delete(method)
    log_audit(
        db,
        actor=actor_from_user(method.user_id),
        action="PAYMENT_METHOD_DELETED",
        entity="SavedPaymentMethod",
        entity_id=method_id,
    )
    db.commit()


def delete_all_for_user(db: Session, user_id: int) -> int:
    """Remove every saved method of a user. Does not commit."""

    result = db.execute(delete(SavedPaymentMethod).where(SavedPaymentMethod.user_id == user_id))
    removed = result.rowcount or 0
    if removed:
        logger.info("Saved payment methods removed", extra={"user_id": user_id, "count": removed})
    return removed
