"""
Test Configuration
==================

Pytest fixtures for ProofPay tests.
"""

import os
import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["LEDGER_MODE"] = "mock"
os.environ["PAYMENT_MODE"] = "mock"
os.environ["POLLER_ENABLED"] = "false"

from proofpay.database.postgres import Base  # noqa: E402
from proofpay.ledger import MockLedgerClient  # noqa: E402
from proofpay.models import ProofSubmission, SubmissionStatus, utcnow  # noqa: E402
from proofpay.payments import MockPaymentProvider, WalletRegistry  # noqa: E402
from proofpay.pipeline import (  # noqa: E402
    ConfirmationPoller,
    SettlementTrigger,
    SubmissionGateway,
    new_proof_id,
)
from proofpay.zk.models import PublicOutputs, ZKProof  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def ledger() -> MockLedgerClient:
    """Fresh mock ledger per test."""
    return MockLedgerClient()


@pytest.fixture
def provider() -> MockPaymentProvider:
    """Fresh mock payment provider per test."""
    return MockPaymentProvider()


@pytest.fixture
def wallets(session_factory: async_sessionmaker[AsyncSession]) -> WalletRegistry:
    return WalletRegistry(session_factory)


@pytest.fixture
def settlement(
    provider: MockPaymentProvider,
    session_factory: async_sessionmaker[AsyncSession],
    wallets: WalletRegistry,
) -> SettlementTrigger:
    return SettlementTrigger(
        provider=provider,
        session_factory=session_factory,
        wallets=wallets,
        base_amount=Decimal("100"),
        rate_multiplier=Decimal("0.01"),
        max_payment=Decimal("10000"),
    )


@pytest.fixture
def gateway(
    ledger: MockLedgerClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> SubmissionGateway:
    return SubmissionGateway(ledger=ledger, session_factory=session_factory)


@pytest.fixture
def poller(
    ledger: MockLedgerClient,
    settlement: SettlementTrigger,
    session_factory: async_sessionmaker[AsyncSession],
) -> ConfirmationPoller:
    return ConfirmationPoller(
        ledger=ledger,
        settlement=settlement,
        session_factory=session_factory,
        interval_seconds=0.01,
        batch_size=50,
    )


@pytest.fixture
def make_proof() -> Callable[..., ZKProof]:
    """Factory for proofs with a fresh nullifier unless one is given."""

    def _make(
        threshold: int | str | None = 50000,
        nullifier: str | None = None,
        expires_in: float = 30 * 24 * 3600,
    ) -> ZKProof:
        now = time.time()
        return ZKProof(
            proof="cHJvb2YtYmxvYg==",
            public_inputs=[] if threshold is None else [str(threshold)],
            public_outputs=PublicOutputs(
                nullifier=nullifier or f"nullifier-{uuid.uuid4().hex}",
                timestamp=now,
                expires_at=now + expires_in,
            ),
        )

    return _make


@pytest_asyncio.fixture
async def funded_user(wallets: WalletRegistry) -> str:
    """A user with a payout wallet and a linked funding account."""
    user_id = "user-funded"
    await wallets.register(user_id, "wallet-dest-funded")
    await wallets.link_funding_account(user_id)
    return user_id


@pytest.fixture
def seed_submission(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[ProofSubmission]]:
    """Insert a submission row directly, bypassing the gateway."""

    async def _seed(
        user_id: str = "user-funded",
        threshold: int = 50000,
        status: SubmissionStatus = SubmissionStatus.CONFIRMED,
        tx_hash: str | None = None,
        expires_at: datetime | None = None,
        submitted_at: datetime | None = None,
    ) -> ProofSubmission:
        now = utcnow()
        submission = ProofSubmission(
            proof_id=new_proof_id(),
            nullifier=f"nullifier-{uuid.uuid4().hex}",
            user_id=user_id,
            tx_hash=tx_hash or uuid.uuid4().hex.upper(),
            threshold=threshold,
            status=status,
            submitted_at=submitted_at or now,
            confirmed_at=now if status == SubmissionStatus.CONFIRMED else None,
            expires_at=expires_at or now + timedelta(days=30),
        )
        async with session_factory() as session:
            session.add(submission)
            await session.commit()
        return submission

    return _seed
