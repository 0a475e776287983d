"""
Unit tests for the submission gateway and replay guard.
"""

from collections.abc import Callable
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.exceptions import DuplicateNullifier, InvalidProof, LedgerError, LedgerUnavailable
from proofpay.ledger import MockLedgerClient
from proofpay.models import ProofSubmission, SubmissionStatus
from proofpay.models.submission import as_utc
from proofpay.pipeline import ReplayGuard, SubmissionGateway
from proofpay.zk.models import CircuitType, ZKProof


async def count_submissions(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(ProofSubmission))
        return result.scalar_one()


async def load_submission(
    session_factory: async_sessionmaker[AsyncSession],
    proof_id: str,
) -> ProofSubmission | None:
    async with session_factory() as session:
        result = await session.execute(
            select(ProofSubmission).where(ProofSubmission.proof_id == proof_id)
        )
        return result.scalar_one_or_none()


class TestSubmissionGateway:
    """Tests for SubmissionGateway.submit."""

    @pytest.mark.asyncio
    async def test_submit_persists_pending(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test a successful submission."""
        proof = make_proof(threshold=50000)

        result = await gateway.submit(
            proof,
            "signed-tx",
            user_id="user-1",
            circuit=CircuitType.VERIFY_INCOME,
        )

        assert result.status == "pending"
        assert result.proof_id.startswith("proof_")
        assert ledger.broadcasts[result.tx_hash] == ("signed-tx", proof.to_wire())

        stored = await load_submission(session_factory, result.proof_id)
        assert stored is not None
        assert stored.status == SubmissionStatus.PENDING
        assert stored.nullifier == proof.nullifier
        assert stored.tx_hash == result.tx_hash
        assert stored.threshold == 50000
        assert stored.circuit == "verifyIncome"
        assert stored.confirmed_at is None
        assert as_utc(stored.expires_at) == proof.public_outputs.expires_at_datetime

    @pytest.mark.asyncio
    async def test_duplicate_nullifier_rejected_before_ledger(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Scenario: the same proof submitted twice reaches the ledger once."""
        proof = make_proof(nullifier="nf-dup")

        await gateway.submit(proof, "signed-tx", user_id="user-1")

        with pytest.raises(DuplicateNullifier) as exc_info:
            await gateway.submit(proof, "signed-tx", user_id="user-1")

        assert exc_info.value.http_status == 409
        assert exc_info.value.code == "NULLIFIER_ALREADY_USED"
        assert len(ledger.broadcasts) == 1
        assert await count_submissions(session_factory) == 1

    @pytest.mark.asyncio
    async def test_unique_constraint_is_authoritative(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test the path where a racing submitter passed the lookup."""
        proof = make_proof(nullifier="nf-race")
        await gateway.submit(proof, "signed-tx", user_id="user-1")

        # Second submitter read before the first one committed
        with patch.object(ReplayGuard, "ensure_unused", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateNullifier):
                await gateway.submit(proof, "signed-tx", user_id="user-2")

        assert len(ledger.broadcasts) == 1
        assert await count_submissions(session_factory) == 1

    @pytest.mark.asyncio
    async def test_ledger_unavailable_leaves_no_row(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test that a failed relay rolls the claim back."""
        proof = make_proof(nullifier="nf-retry")
        ledger.available = False

        with pytest.raises(LedgerUnavailable):
            await gateway.submit(proof, "signed-tx", user_id="user-1")

        assert await count_submissions(session_factory) == 0

        # The nullifier is not burned; a later resubmission succeeds
        ledger.available = True
        result = await gateway.submit(proof, "signed-tx", user_id="user-1")

        assert result.status == "pending"
        assert await count_submissions(session_factory) == 1

    @pytest.mark.asyncio
    async def test_ledger_error_propagates(
        self,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test that a ledger rejection propagates without a record."""
        ledger.broadcast_tx_async = AsyncMock(side_effect=LedgerError("mempool is full"))
        gateway = SubmissionGateway(ledger=ledger, session_factory=session_factory)

        with pytest.raises(LedgerError):
            await gateway.submit(make_proof(), "signed-tx", user_id="user-1")

        assert await count_submissions(session_factory) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [None, "not-a-number", "-50000", "1.5", "NaN", "Infinity"])
    async def test_unusable_threshold_is_invalid(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
        threshold: str | None,
    ) -> None:
        """Test that a missing, negative or fractional threshold is rejected."""
        with pytest.raises(InvalidProof):
            await gateway.submit(make_proof(threshold=threshold), "signed-tx", user_id="user-1")

        assert ledger.broadcasts == {}
        assert await count_submissions(session_factory) == 0

    @pytest.mark.asyncio
    async def test_integral_decimal_threshold_is_accepted(
        self,
        gateway: SubmissionGateway,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test that a threshold written with a zero fraction is kept whole."""
        result = await gateway.submit(make_proof(threshold="50000.0"), "signed-tx", user_id="user-1")

        stored = await load_submission(session_factory, result.proof_id)
        assert stored is not None
        assert stored.threshold == 50000

    @pytest.mark.asyncio
    async def test_missing_signature_is_invalid(
        self,
        gateway: SubmissionGateway,
        ledger: MockLedgerClient,
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test that an empty wallet signature is rejected."""
        with pytest.raises(InvalidProof):
            await gateway.submit(make_proof(), "", user_id="user-1")

        assert ledger.broadcasts == {}


class TestReplayGuard:
    """Tests for ReplayGuard lookups."""

    @pytest.mark.asyncio
    async def test_is_used(
        self,
        gateway: SubmissionGateway,
        session_factory: async_sessionmaker[AsyncSession],
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test nullifier lookup before and after submission."""
        guard = ReplayGuard()
        proof = make_proof(nullifier="nf-lookup")

        async with session_factory() as session:
            assert await guard.is_used(session, "nf-lookup") is False

        await gateway.submit(proof, "signed-tx", user_id="user-1")

        async with session_factory() as session:
            assert await guard.is_used(session, "nf-lookup") is True
            with pytest.raises(DuplicateNullifier):
                await guard.ensure_unused(session, "nf-lookup")
