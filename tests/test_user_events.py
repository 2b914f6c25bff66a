"""Tests for the user-deleted consumer driving the erasure cascade."""
from __future__ import annotations

from contextlib import contextmanager

import pytest
from confluent_kafka import KafkaError, KafkaException

from app.config import get_settings
from app.models import PaymentStatus
from app.services import user_events
from app.services.user_events import UserDeletedConsumer, parse_user_deleted


class FakeMessage:
    def __init__(self, value, error=None, offset: int = 0) -> None:
        self._value = value
        self._error = error
        self._offset = offset

    def value(self):
        return self._value

    def error(self):
        return self._error

    def offset(self) -> int:
        return self._offset


class FakeConsumer:
    def __init__(self, messages) -> None:
        self.messages = list(messages)
        self.committed: list[FakeMessage] = []
        self.subscribed: list[str] = []
        self.closed = False

    def poll(self, timeout):
        return self.messages.pop(0) if self.messages else None

    def commit(self, message=None, asynchronous=True) -> None:
        self.committed.append(message)

    def subscribe(self, topics) -> None:
        self.subscribed.extend(topics)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def consumer_factory(db_session, orchestrator_factory, monkeypatch):
    @contextmanager
    def _scope():
        yield db_session

    monkeypatch.setattr(user_events, "session_scope", _scope)

    def _build(messages) -> tuple[UserDeletedConsumer, FakeConsumer]:
        fake = FakeConsumer(messages)
        consumer = UserDeletedConsumer(get_settings(), consumer=fake, orchestrator_factory=orchestrator_factory)
        return consumer, fake

    return _build


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (b'{"userId": 42}', 42),
        (b'{"user_id": "43"}', 43),
        (b"44", 44),
        (b'{"email": "x@example.com"}', None),
        (b"not json", None),
        (None, None),
    ],
)
def test_parse_user_deleted(raw, expected):
    assert parse_user_deleted(raw) == expected


def test_poll_once_cancels_open_payments(consumer_factory, make_payment):
    open_payment = make_payment(payer_id=42, status=PaymentStatus.PROCESSING)
    settled = make_payment(payer_id=42, status=PaymentStatus.COMPLETED, psp_ref="pi_user_42")
    message = FakeMessage(b'{"userId": 42}')
    consumer, fake = consumer_factory([message])

    assert consumer.poll_once() is True

    assert open_payment.status == PaymentStatus.CANCELLED
    assert settled.status == PaymentStatus.COMPLETED
    assert fake.committed == [message]


def test_poll_once_skips_message_without_user(consumer_factory):
    message = FakeMessage(b'{"event": "deleted"}', offset=3)
    consumer, fake = consumer_factory([message])

    assert consumer.poll_once() is True
    assert fake.committed == [message]


def test_poll_once_idle(consumer_factory):
    consumer, fake = consumer_factory([])
    assert consumer.poll_once() is False
    assert fake.committed == []


def test_partition_eof_is_not_an_error(consumer_factory):
    consumer, fake = consumer_factory([FakeMessage(None, error=KafkaError(KafkaError._PARTITION_EOF))])
    assert consumer.poll_once() is False
    assert fake.committed == []


def test_broker_error_raises(consumer_factory):
    consumer, _ = consumer_factory([FakeMessage(None, error=KafkaError(KafkaError._TRANSPORT))])
    with pytest.raises(KafkaException):
        consumer.poll_once()


def test_run_subscribes_and_closes(consumer_factory):
    consumer, fake = consumer_factory([])

    def stop_after_first_poll(timeout):
        consumer.stop()
        return None

    fake.poll = stop_after_first_poll
    consumer.run()

    assert fake.subscribed == ["user-deleted"]
    assert fake.closed is True
