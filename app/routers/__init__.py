"""API routers for the travel payments service."""
from fastapi import APIRouter

from . import health, payment_methods, payments, psp


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(payments.router)
    api_router.include_router(payment_methods.router)
    api_router.include_router(psp.router)
    return api_router
