"""Domain event emission for the payment saga."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Protocol

from confluent_kafka import KafkaException, Producer
from pydantic import BaseModel

from app.config import Settings, get_settings
from app.models.payment import Payment
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class PaymentCompletedEvent(BaseModel):
    payment_id: int
    transaction_id: str
    payer_id: int
    trip_id: int | None
    booking_id: int | None
    amount: Decimal
    currency: str
    method: str
    timestamp: datetime


class PaymentRefundedEvent(BaseModel):
    payment_id: int
    transaction_id: str
    payer_id: int
    trip_id: int | None
    booking_id: int | None
    amount: Decimal
    refund_amount: Decimal
    currency: str
    timestamp: datetime


def completed_event(payment: Payment) -> PaymentCompletedEvent:
    return PaymentCompletedEvent(
        payment_id=payment.id,
        transaction_id=payment.transaction_id,
        payer_id=payment.payer_id,
        trip_id=payment.trip_id,
        booking_id=payment.booking_id,
        amount=payment.amount,
        currency=payment.currency,
        method=payment.method.value,
        timestamp=utcnow(),
    )


def refunded_event(payment: Payment) -> PaymentRefundedEvent:
    return PaymentRefundedEvent(
        payment_id=payment.id,
        transaction_id=payment.transaction_id,
        payer_id=payment.payer_id,
        trip_id=payment.trip_id,
        booking_id=payment.booking_id,
        amount=payment.amount,
        refund_amount=payment.refund_amount if payment.refund_amount is not None else payment.amount,
        currency=payment.currency,
        timestamp=utcnow(),
    )


class EventPublisher(Protocol):
    def publish(self, topic: str, key: str, event: BaseModel) -> None:
        ...

    def flush(self, timeout: float = 10.0) -> int:
        ...


class LoggingEventPublisher:
    """Publisher used when the message bus is disabled."""

    def publish(self, topic: str, key: str, event: BaseModel) -> None:
        logger.info(
            "Event not sent; message bus disabled",
            extra={"topic": topic, "key": key, "event_type": type(event).__name__},
        )

    def flush(self, timeout: float = 10.0) -> int:
        return 0


class KafkaEventPublisher:
    """Fire-and-forget Kafka producer.

    ``publish`` never raises: a full local queue or a broken client is logged
    and the event is dropped.
    """

    def __init__(self, bootstrap_servers: str, producer: Producer | None = None) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.producer = producer or Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "linger.ms": 10,
                "acks": "all",
                "retries": 3,
            }
        )

    def publish(self, topic: str, key: str, event: BaseModel) -> None:
        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8"),
                value=event.model_dump_json().encode("utf-8"),
                callback=self._delivery_callback,
            )
            self.producer.poll(0)
        except (BufferError, KafkaException) as exc:
            logger.error(
                "Event publish failed",
                extra={"topic": topic, "key": key, "error": str(exc)},
            )

    def _delivery_callback(self, err, msg) -> None:
        if err:
            logger.error("Event delivery failed", extra={"error": str(err)})
        else:
            logger.debug(
                "Event delivered",
                extra={"topic": msg.topic(), "partition": msg.partition(), "offset": msg.offset()},
            )

    def flush(self, timeout: float = 10.0) -> int:
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning("Events left undelivered at flush", extra={"remaining": remaining})
        return remaining


def build_event_publisher(settings: Settings) -> EventPublisher:
    if settings.KAFKA_ENABLED:
        return KafkaEventPublisher(settings.KAFKA_BOOTSTRAP_SERVERS)
    return LoggingEventPublisher()


@lru_cache
def get_event_publisher() -> EventPublisher:
    """Process-wide publisher built from the cached settings."""

    return build_event_publisher(get_settings())


__all__ = [
    "EventPublisher",
    "KafkaEventPublisher",
    "LoggingEventPublisher",
    "PaymentCompletedEvent",
    "PaymentRefundedEvent",
    "build_event_publisher",
    "completed_event",
    "get_event_publisher",
    "refunded_event",
]
