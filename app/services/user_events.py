"""Consumer for account deletion events (erasure cascade)."""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from confluent_kafka import Consumer, KafkaError, KafkaException
from sqlalchemy.orm import Session

from app.config import Settings
from app.db import session_scope
from app.services.checkout import PaymentOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def parse_user_deleted(raw: bytes | str) -> int | None:
    """Extract the user id from a ``user-deleted`` message."""

    try:
        payload: Any = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unreadable user-deleted message")
        return None
    if isinstance(payload, int):
        return payload
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("userId", payload.get("user_id"))
    try:
        return int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        return None


def handle_user_deleted(orchestrator: PaymentOrchestrator, user_id: int) -> int:
    cancelled = orchestrator.cancel_user_payments(user_id)
    logger.info("Erasure cascade applied", extra={"user_id": user_id, "cancelled": cancelled})
    return cancelled


class UserDeletedConsumer:
    """Polls the ``user-deleted`` topic and commits offsets after each message."""

    def __init__(
        self,
        settings: Settings,
        consumer: Consumer | None = None,
        orchestrator_factory: Callable[[Session], PaymentOrchestrator] = build_orchestrator,
    ) -> None:
        self.settings = settings
        self.topic = settings.KAFKA_TOPIC_USER_DELETED
        self.consumer = consumer or Consumer(
            {
                "bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS,
                "group.id": settings.KAFKA_CONSUMER_GROUP,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        self.orchestrator_factory = orchestrator_factory
        self._running = False

    def process(self, msg) -> None:
        user_id = parse_user_deleted(msg.value())
        if user_id is None:
            logger.warning("Skipping user-deleted message without user id", extra={"offset": msg.offset()})
            return
        with session_scope() as db:
            handle_user_deleted(self.orchestrator_factory(db), user_id)

    def poll_once(self, timeout: float = 1.0) -> bool:
        """Handle at most one message; False when nothing was consumed."""

        msg = self.consumer.poll(timeout)
        if msg is None:
            return False
        error = msg.error()
        if error:
            if error.code() == KafkaError._PARTITION_EOF:
                return False
            raise KafkaException(error)
        self.process(msg)
        self.consumer.commit(message=msg, asynchronous=False)
        return True

    def run(self) -> None:
        self.consumer.subscribe([self.topic])
        self._running = True
        logger.info("User-deleted consumer started", extra={"topic": self.topic})
        try:
            while self._running:
                self.poll_once()
        finally:
            self.consumer.close()
            logger.info("User-deleted consumer stopped")

    def stop(self) -> None:
        self._running = False


__all__ = ["UserDeletedConsumer", "handle_user_deleted", "parse_user_deleted"]
