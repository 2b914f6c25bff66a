"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

# --- default env for the test run
os.environ.setdefault("DATABASE_URL", "sqlite:///./travel_payments_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ.setdefault("KAFKA_ENABLED", "false")

from app.main import app  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import Payment, PaymentMethod, PaymentStatus  # noqa: E402
from app.routers.payments import get_orchestrator  # noqa: E402
from app.schemas.payment import CheckoutRequest  # noqa: E402
from app.services.booking import BookingError  # noqa: E402
from app.services.checkout import PaymentOrchestrator, new_transaction_id  # noqa: E402
from app.services.fees import compute_fees  # noqa: E402
from app.services.psp_gateway import (  # noqa: E402
    GatewayMode,
    GatewayRefund,
    GatewayResult,
    GatewayStatus,
    GatewayStatusResult,
    SavedCardDetails,
)

DB_PATH = Path("./travel_payments_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) fresh DB file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) schema comes from Alembic only
_run_migrations()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------
class FakeGateway:
    """In-memory gateway recording every call."""

    refund_reference_field = "psp_ref"

    def __init__(self, *, mode: GatewayMode = GatewayMode.REDIRECT, prefix: str = "cs") -> None:
        self.mode = mode
        self.prefix = prefix
        self.create_result: GatewayResult | None = None
        self.create_error: Exception | None = None
        self.refund_error: Exception | None = None
        self.status = GatewayStatusResult(status=GatewayStatus.PENDING)
        self.saved_card: SavedCardDetails | None = None
        self.create_calls: list[dict[str, Any]] = []
        self.status_calls: list[str] = []
        self.execute_calls: list[tuple[str, str]] = []
        self.refund_calls: list[tuple[str, Decimal, str]] = []
        self._counter = 0

    def create(self, amount, currency, metadata, method_token=None, *, description=None, **options):
        self.create_calls.append(
            {"amount": amount, "currency": currency, "metadata": metadata, "method_token": method_token, **options}
        )
        if self.create_error is not None:
            raise self.create_error
        callback = options.get("on_method_saved")
        if callback is not None and self.saved_card is not None:
            callback(self.saved_card)
        if self.create_result is not None:
            return self.create_result
        self._counter += 1
        reference = f"{self.prefix}_{self._counter}"
        return GatewayResult(
            mode=GatewayMode.REDIRECT,
            reference=reference,
            continuation=f"https://provider.test/{reference}",
            settled=False,
            session_ref=reference,
        )

    def retrieve_status(self, reference: str) -> GatewayStatusResult:
        self.status_calls.append(reference)
        return self.status

    def execute(self, reference: str, payer_token: str) -> GatewayStatusResult:
        self.execute_calls.append((reference, payer_token))
        return self.status

    def refund(self, reference: str, amount: Decimal, currency: str) -> GatewayRefund:
        self.refund_calls.append((reference, amount, currency))
        if self.refund_error is not None:
            raise self.refund_error
        return GatewayRefund(refund_ref=f"re_{len(self.refund_calls)}", status="succeeded", amount=amount)


class FakeBookingDelegate:
    def __init__(self, booking_id: int = 501) -> None:
        self.booking_id = booking_id
        self.error: BookingError | None = None
        self.calls: list[dict[str, Any]] = []
        self.during_call: Callable[[], None] | None = None

    def create_booking(self, **kwargs) -> int:
        self.calls.append(kwargs)
        if self.during_call is not None:
            self.during_call()
        if self.error is not None:
            raise self.error
        return self.booking_id


class FakeEventPublisher:
    def __init__(self) -> None:
        self.published: list[tuple[str, str, Any]] = []

    def publish(self, topic, key, event) -> None:
        self.published.append((topic, key, event))

    def flush(self, timeout: float = 10.0) -> int:
        return 0

    def topics(self) -> list[str]:
        return [topic for topic, _, _ in self.published]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def committing_session_factory() -> Iterator[Callable[[], Session]]:
    """Sessions that really commit; tables are emptied afterwards."""

    sessions: list[Session] = []

    def _factory() -> Session:
        session = TestingSessionLocal()
        sessions.append(session)
        return session

    yield _factory
    for session in sessions:
        session.close()
    with engine.begin() as conn:
        for table in ("audit_logs", "psp_webhook_events", "saved_payment_methods", "payments"):
            conn.execute(text(f"DELETE FROM {table}"))


@pytest.fixture
def card_gateway() -> FakeGateway:
    return FakeGateway(prefix="cs")


@pytest.fixture
def wallet_gateway() -> FakeGateway:
    return FakeGateway(prefix="PAYID")


@pytest.fixture
def booking_delegate() -> FakeBookingDelegate:
    return FakeBookingDelegate()


@pytest.fixture
def event_publisher() -> FakeEventPublisher:
    return FakeEventPublisher()


@pytest.fixture
def orchestrator_factory(
    card_gateway: FakeGateway,
    wallet_gateway: FakeGateway,
    booking_delegate: FakeBookingDelegate,
    event_publisher: FakeEventPublisher,
) -> Callable[[Session], PaymentOrchestrator]:
    def _factory(session: Session) -> PaymentOrchestrator:
        return PaymentOrchestrator(
            session,
            gateways={
                PaymentMethod.CARD: lambda: card_gateway,
                PaymentMethod.WALLET: lambda: wallet_gateway,
            },
            booking=booking_delegate,
            events=event_publisher,
            settings=get_settings(),
        )

    return _factory


@pytest.fixture
def orchestrator(db_session: Session, orchestrator_factory) -> PaymentOrchestrator:
    return orchestrator_factory(db_session)


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session, orchestrator: PaymentOrchestrator) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_orchestrator, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer user-token"}


@pytest.fixture
def checkout_request() -> Callable[..., CheckoutRequest]:
    """Payment-first card checkout for trip 10 unless overridden."""

    def _factory(**overrides: Any) -> CheckoutRequest:
        data: dict[str, Any] = {
            "payer_id": 7,
            "payer_name": "Ada Lovelace",
            "trip_id": 10,
            "participant_count": 2,
            "participant_details": [
                {"first_name": "Ada", "last_name": "Lovelace", "passport_number": "X1234567"},
                {"first_name": "Charles", "last_name": "Babbage"},
            ],
            "amount": "100.00",
            "currency": "usd",
            "method": "CARD",
        }
        data.update(overrides)
        return CheckoutRequest.model_validate(data)

    return _factory


@pytest.fixture
def make_payment(db_session: Session) -> Callable[..., Payment]:
    """Insert a payment directly, bypassing the saga."""

    def _factory(session: Session | None = None, commit: bool = False, **overrides: Any) -> Payment:
        session = session or db_session
        method = overrides.pop("method", PaymentMethod.CARD)
        amount = Decimal(overrides.pop("amount", "100.00"))
        breakdown = compute_fees(method, amount)
        fields: dict[str, Any] = {
            "transaction_id": new_transaction_id(),
            "payer_id": 7,
            "trip_id": 10,
            "amount": amount,
            "currency": "USD",
            "fee": breakdown.fee,
            "net_amount": breakdown.net_amount,
            "method": method,
            "status": PaymentStatus.PROCESSING,
        }
        fields.update(overrides)
        payment = Payment(**fields)
        session.add(payment)
        if commit:
            session.commit()
        else:
            session.flush()
        return payment

    return _factory


@pytest.fixture
def pending_details() -> dict[str, Any]:
    return {
        "version": 1,
        "trip_id": 10,
        "participant_count": 1,
        "payer_name": "Ada Lovelace",
        "participants": [{"first_name": "Ada", "last_name": "Lovelace"}],
    }
