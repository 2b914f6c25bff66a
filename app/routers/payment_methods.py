"""Saved payment method endpoints."""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.payment_method import SavedPaymentMethodCreate, SavedPaymentMethodRead
from app.services import payment_methods as payment_methods_service

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])


@router.post("", response_model=SavedPaymentMethodRead, status_code=status.HTTP_201_CREATED)
def create_payment_method(payload: SavedPaymentMethodCreate, db: Session = Depends(get_db)):
    return payment_methods_service.create_payment_method(db, payload)


@router.get("/user/{user_id}", response_model=list[SavedPaymentMethodRead])
def list_payment_methods(user_id: int, db: Session = Depends(get_db)):
    return payment_methods_service.list_payment_methods(db, user_id)


@router.get("/user/{user_id}/default", response_model=SavedPaymentMethodRead)
def get_default_payment_method(user_id: int, db: Session = Depends(get_db)):
    return payment_methods_service.get_default_payment_method(db, user_id)


@router.get("/{method_id}", response_model=SavedPaymentMethodRead)
def get_payment_method(method_id: int, db: Session = Depends(get_db)):
    return payment_methods_service.get_payment_method(db, method_id)


@router.post("/{method_id}/default", response_model=SavedPaymentMethodRead)
def set_default_payment_method(method_id: int, db: Session = Depends(get_db)):
    return payment_methods_service.set_default_payment_method(db, method_id)


@router.delete("/{method_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_method(method_id: int, db: Session = Depends(get_db)) -> Response:
    payment_methods_service.delete_payment_method(db, method_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
