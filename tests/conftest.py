"""Test configuration."""
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env for the test run
os.environ.setdefault("DATABASE_URL", "sqlite:///./settlement_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("SETTLEMENT_ENV", "test")
os.environ.setdefault(
    "API_KEYS",
    json.dumps(
        {
            "party-key": "party",
            "resolver-key": "resolver",
            "buyer-key": "party",
            "seller-key": "party",
            "outsider-key": "party",
        }
    ),
)
os.environ.setdefault(
    "API_KEY_PARTIES",
    json.dumps({"buyer-key": "buyer-1", "seller-key": "seller-1", "outsider-key": "buyer-9"}),
)

from settlement.main import app  # noqa: E402
from settlement.db import get_db  # noqa: E402
from settlement.models import Base, Escrow, PathKind, Tier, Transaction, UserAccount, Wallet  # noqa: E402
from settlement.repositories import (  # noqa: E402
    EscrowRepository,
    TransactionRepository,
    TransferRepository,
)
from settlement.schemas.milestone import MilestoneSpec  # noqa: E402
from settlement.schemas.transaction import TransactionCreate  # noqa: E402
from settlement.services import escrow as escrow_service  # noqa: E402
from settlement.services import routing  # noqa: E402
from settlement.services.fees import compute_fees  # noqa: E402
from settlement.services.ledger import DatabaseTierProvider, DatabaseWalletLedger  # noqa: E402

DB_PATH = Path("./settlement_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parents[1] / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        # services commit, so clean up table by table
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture
def other_session(db_session: Session) -> Iterator[Session]:
    """A second session on the same database, standing in for a concurrent writer."""

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


@pytest.fixture
def party_headers() -> dict[str, str]:
    return {"X-API-Key": "party-key"}


@pytest.fixture
def resolver_headers() -> dict[str, str]:
    return {"X-API-Key": "resolver-key"}


@pytest.fixture
def buyer_headers() -> dict[str, str]:
    """Party key bound to buyer-1."""
    return {"X-API-Key": "buyer-key"}


@pytest.fixture
def seller_headers() -> dict[str, str]:
    """Party key bound to seller-1."""
    return {"X-API-Key": "seller-key"}


@pytest.fixture
def outsider_headers() -> dict[str, str]:
    """Party key bound to a company outside the tested deals."""
    return {"X-API-Key": "outsider-key"}


@pytest.fixture
def ledger(db_session: Session) -> DatabaseWalletLedger:
    return DatabaseWalletLedger(db_session)


@pytest.fixture
def escrow_repo(db_session: Session) -> EscrowRepository:
    return EscrowRepository(db_session)


@pytest.fixture
def transfer_repo(db_session: Session) -> TransferRepository:
    return TransferRepository(db_session)


@pytest.fixture
def make_wallet(db_session: Session) -> Callable[..., Wallet]:
    def _factory(ref: str | None = None, available: str = "0.00", currency: str = "INR") -> Wallet:
        wallet = Wallet(
            ref=ref or f"wallet-{uuid4().hex[:8]}",
            currency=currency,
            available=Decimal(available),
            pending=Decimal("0.00"),
        )
        db_session.add(wallet)
        db_session.commit()
        return wallet

    return _factory


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., UserAccount]:
    def _factory(ref: str, tier: Tier = Tier.FREE) -> UserAccount:
        user = UserAccount(ref=ref, email=f"{ref}@example.com", tier=tier)
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def submit(db_session: Session, ledger: DatabaseWalletLedger) -> Callable[..., Transaction]:
    """Route and persist a transaction through the service layer."""

    def _factory(
        amount: str,
        *,
        buyer_ref: str = "buyer-1",
        seller_ref: str = "seller-1",
        milestones: list[dict] | None = None,
        key: str | None = None,
        currency: str | None = None,
    ) -> Transaction:
        payload = TransactionCreate(
            amount=Decimal(amount),
            currency=currency,
            buyer_ref=buyer_ref,
            seller_ref=seller_ref,
            milestones=milestones,
        )
        transaction, _ = routing.submit_transaction(
            TransactionRepository(db_session),
            payload,
            balance_provider=ledger,
            tier_provider=DatabaseTierProvider(db_session),
            idempotency_key=key or f"tx-{uuid4().hex}",
            actor="test",
        )
        return transaction

    return _factory


@pytest.fixture
def make_escrow(db_session: Session) -> Callable[..., Escrow]:
    """Stage an escrow directly, bypassing the router's threshold."""

    def _factory(
        total: str,
        *,
        milestones: list[dict] | None = None,
        tier: Tier = Tier.FREE,
        buyer_ref: str = "buyer-1",
        seller_ref: str = "seller-1",
    ) -> Escrow:
        transaction = Transaction(
            amount=Decimal(total),
            currency="INR",
            buyer_ref=buyer_ref,
            seller_ref=seller_ref,
            path_kind=PathKind.ESCROW,
            idempotency_key=f"tx-{uuid4().hex}",
        )
        db_session.add(transaction)
        db_session.flush()
        escrow = escrow_service.create_escrow(
            db_session,
            transaction,
            tier=tier,
            fees=compute_fees(transaction.amount, tier, PathKind.ESCROW),
            milestone_specs=[MilestoneSpec(**spec) for spec in milestones or []],
        )
        db_session.commit()
        return escrow

    return _factory
