"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./marketplace_escrow_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from marketplace_escrow.main import app  # noqa: E402
from marketplace_escrow.db import get_db  # noqa: E402
from marketplace_escrow.models import (  # noqa: E402
    DeliveryMethod,
    DeliveryStatus,
    EscrowStatus,
    Listing,
    ListingStatus,
    PaymentStatus,
    Purchase,
    User,
)
from marketplace_escrow.services.fees import split_amount  # noqa: E402
from marketplace_escrow.services.payouts import RefundResult, TransferResult  # noqa: E402
from marketplace_escrow.services.providers import get_notifier, get_transfer_gateway  # noqa: E402
from marketplace_escrow.utils.time import utcnow  # noqa: E402

DB_PATH = Path("./marketplace_escrow_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite defers BEGIN on its own; take it over so SAVEPOINTs nest inside the test transaction.
@event.listens_for(engine, "connect")
def _disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    join_transaction_mode="create_savepoint",
)

_run_migrations()

CRON_HEADERS = {"Authorization": f"Bearer {os.environ['CRON_SECRET']}"}


class FakeTransferGateway:
    """In-memory gateway honouring idempotency keys the way the real PSP does."""

    def __init__(self) -> None:
        self.transfers: dict[str, TransferResult] = {}
        self.refunds: dict[str, RefundResult] = {}
        self.transfer_calls: list[tuple[str, int, str]] = []
        self.refund_calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.on_transfer: Callable[[str], None] | None = None

    def transfer(
        self,
        idempotency_key: str,
        amount_cents: int,
        payee_account_id: str,
        *,
        source_reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        self.transfer_calls.append((idempotency_key, amount_cents, payee_account_id))
        if self.fail_with is not None:
            raise self.fail_with
        if self.on_transfer is not None:
            hook, self.on_transfer = self.on_transfer, None
            hook(idempotency_key)
        if idempotency_key not in self.transfers:
            self.transfers[idempotency_key] = TransferResult(transfer_id=f"tr_{uuid4().hex[:12]}")
        return self.transfers[idempotency_key]

    def refund(
        self,
        idempotency_key: str,
        payment_reference: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> RefundResult:
        self.refund_calls.append((idempotency_key, payment_reference))
        if self.fail_with is not None:
            raise self.fail_with
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = RefundResult(refund_id=f"re_{uuid4().hex[:12]}")
        return self.refunds[idempotency_key]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, recipient: str, template: str, context: dict[str, Any]) -> None:
        self.sent.append((recipient, template, context))

    def templates(self) -> list[str]:
        return [template for _, template, _ in self.sent]


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
def gateway() -> FakeTransferGateway:
    return FakeTransferGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def override_dependencies(
    db_session: Session, gateway: FakeTransferGateway, notifier: RecordingNotifier
) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_transfer_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return dict(CRON_HEADERS)


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(
        name: str = "user",
        *,
        stripe_account_id: str | None = None,
        is_admin: bool = False,
        **fields: Any,
    ) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            username=f"{name}-{suffix}",
            email=f"{name}-{suffix}@example.com",
            stripe_account_id=stripe_account_id,
            is_admin=is_admin,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_listing(db_session: Session) -> Callable[..., Listing]:
    def _factory(
        seller: User,
        *,
        price_cents: int = 5_000,
        delivery_method: DeliveryMethod = DeliveryMethod.MANUAL_TRANSFER,
        status: ListingStatus = ListingStatus.ACTIVE,
        **fields: Any,
    ) -> Listing:
        listing = Listing(
            seller_id=seller.id,
            title=f"listing-{uuid4().hex[:6]}",
            price_cents=price_cents,
            delivery_method=delivery_method,
            status=status,
            **fields,
        )
        db_session.add(listing)
        db_session.commit()
        return listing

    return _factory


@pytest.fixture
def make_purchase(db_session: Session) -> Callable[..., Purchase]:
    """Insert a purchase row directly in the requested state."""

    def _factory(
        listing: Listing,
        *,
        buyer: User | None = None,
        guest_email: str | None = None,
        amount_cents: int | None = None,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        escrow_status: EscrowStatus | None = EscrowStatus.HOLDING,
        escrow_expires_at: datetime | None = None,
        payment_reference: str | None = "pi_test",
        created_at: datetime | None = None,
        **fields: Any,
    ) -> Purchase:
        split = split_amount(listing.price_cents if amount_cents is None else amount_cents)
        if buyer is None and guest_email is None:
            guest_email = f"guest-{uuid4().hex[:6]}@example.com"
        if escrow_status is not None and escrow_expires_at is None:
            escrow_expires_at = utcnow() - timedelta(minutes=1)
        purchase = Purchase(
            buyer_id=buyer.id if buyer is not None else None,
            guest_email=guest_email,
            seller_id=listing.seller_id,
            listing_id=listing.id,
            amount_paid_cents=split.amount_cents,
            platform_fee_cents=split.platform_fee_cents,
            seller_amount_cents=split.seller_amount_cents,
            status=status,
            delivery_status=DeliveryStatus.PENDING,
            escrow_status=escrow_status,
            escrow_expires_at=escrow_expires_at,
            payment_reference=payment_reference if status != PaymentStatus.PENDING else None,
            **fields,
        )
        if created_at is not None:
            purchase.created_at = created_at
        db_session.add(purchase)
        db_session.commit()
        return purchase

    return _factory
