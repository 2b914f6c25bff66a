"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()


class Settings(BaseSettings):
    """Environment configuration for the travel payments service."""

    app_env: str = ENV
    database_url: str = "sqlite:///travel_payments.db"
    ALLOW_DB_CREATE_ALL: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:4200",
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True

    # --- Card gateway (Stripe) -------------------------------------------
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_SUCCESS_URL: str = "http://localhost:4200/payment/success"
    STRIPE_CANCEL_URL: str = "http://localhost:4200/payment/cancel"

    # --- Wallet gateway (PayPal) -----------------------------------------
    PAYPAL_ENABLED: bool = False
    PAYPAL_CLIENT_ID: str | None = None
    PAYPAL_CLIENT_SECRET: str | None = None
    PAYPAL_MODE: str = "sandbox"
    PAYPAL_RETURN_URL: str = "http://localhost:4200/payment/paypal/return"
    PAYPAL_CANCEL_URL: str = "http://localhost:4200/payment/cancel"
    PAYPAL_WEBHOOK_ID: str | None = None
    PAYPAL_TIMEOUT_SECONDS: float = 15.0

    # --- Booking subsystem -----------------------------------------------
    BOOKING_SERVICE_URL: str = "http://travel-service"
    BOOKING_SERVICE_TOKEN: str | None = None
    BOOKING_TIMEOUT_SECONDS: float = 10.0
    # a booking attempt younger than this is treated as still in flight
    BOOKING_CLAIM_TTL_SECONDS: int = 120
    # same for a refund handed to the provider but not yet recorded
    REFUND_CLAIM_TTL_SECONDS: int = 120

    # --- Message bus -----------------------------------------------------
    KAFKA_ENABLED: bool = False
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_TOPIC_PAYMENT_COMPLETED: str = "payment-completed"
    KAFKA_TOPIC_PAYMENT_REFUNDED: str = "payment-refunded"
    KAFKA_TOPIC_USER_DELETED: str = "user-deleted"
    KAFKA_CONSUMER_GROUP: str = "payment-service"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator(
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "PAYPAL_CLIENT_ID",
        "PAYPAL_CLIENT_SECRET",
        "PAYPAL_WEBHOOK_ID",
        "BOOKING_SERVICE_TOKEN",
    )
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @property
    def paypal_base_url(self) -> str:
        if self.PAYPAL_MODE.lower() == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


class AppInfo(BaseModel):
    name: str = "travel-payments-service"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
