"""
Unit tests for the client-facing proof service.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.exceptions import ProofNotFound
from proofpay.ledger import MockLedgerClient
from proofpay.models import PaymentStatus, ProofSubmission, SubmissionStatus, utcnow
from proofpay.payments import MockPaymentProvider, WalletRegistry
from proofpay.pipeline import ProofService, build_pipeline
from proofpay.zk import CircuitType, ProofGenerationClient, ZKProof

Seed = Callable[..., Awaitable[ProofSubmission]]

PROVE_OK = {
    "proof": "cHJvb2YtYmxvYg==",
    "publicOutputs": {
        "nullifier": "nf-service",
        "timestamp": 1700000000,
        "expiresAt": 4102444800,
    },
}


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: MockLedgerClient,
    provider: MockPaymentProvider,
) -> ProofService:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=PROVE_OK)),
        base_url="http://prover.test",
    )
    prover = ProofGenerationClient(base_url="http://prover.test", client=http)
    return build_pipeline(
        session_factory=session_factory,
        prover=prover,
        ledger=ledger,
        provider=provider,
    )


class TestProofLifecycle:
    """Tests for generate, submit and status."""

    @pytest.mark.asyncio
    async def test_generate_and_submit(
        self,
        service: ProofService,
        ledger: MockLedgerClient,
        funded_user: str,
    ) -> None:
        """Test the full path from proof generation to confirmed payment."""
        proof = await service.generate_proof(CircuitType.VERIFY_INCOME, {"income": 1}, 50000)
        result = await service.submit_proof(proof, "signed-tx", funded_user)

        status = await service.get_proof_status(result.proof_id, user_id=funded_user)
        assert status.status == "pending"
        assert status.nullifier == "nf-service"

        ledger.confirm(result.tx_hash)
        status = await service.get_proof_status(result.proof_id)

        assert status.status == "confirmed"
        assert status.confirmed_at is not None

        payment = await service.get_payment_by_proof_id(result.proof_id)
        assert payment is not None
        assert payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_unknown_proof(self, service: ProofService) -> None:
        """Test that unknown proofs raise ProofNotFound."""
        with pytest.raises(ProofNotFound):
            await service.get_proof_status("proof_unknown")

    @pytest.mark.asyncio
    async def test_status_hidden_from_other_users(
        self,
        service: ProofService,
        seed_submission: Seed,
    ) -> None:
        """Test that a user cannot read another user's submission."""
        submission = await seed_submission(user_id="owner")

        with pytest.raises(ProofNotFound):
            await service.get_proof_status(submission.proof_id, user_id="intruder")

    @pytest.mark.asyncio
    async def test_status_falls_back_when_ledger_down(
        self,
        service: ProofService,
        ledger: MockLedgerClient,
        funded_user: str,
        make_proof: Callable[..., ZKProof],
    ) -> None:
        """Test that a failed on-demand poll returns the stored status."""
        result = await service.submit_proof(make_proof(), "signed-tx", funded_user)
        ledger.available = False

        status = await service.get_proof_status(result.proof_id)

        assert status.status == "pending"
        assert status.tx_hash == result.tx_hash


class TestVerifyProof:
    """Tests for third-party nullifier verification."""

    @pytest.mark.asyncio
    async def test_unknown_nullifier(self, service: ProofService) -> None:
        """Test that unknown nullifiers are invalid."""
        validation = await service.verify_proof("nf-nobody")

        assert validation.is_valid is False
        assert validation.status is None
        assert validation.reason == "Proof not found"

    @pytest.mark.asyncio
    async def test_confirmed_is_valid(self, service: ProofService, seed_submission: Seed) -> None:
        """Test that a confirmed, unexpired proof is valid."""
        submission = await seed_submission(threshold=75000)

        validation = await service.verify_proof(submission.nullifier)

        assert validation.is_valid is True
        assert validation.status == "confirmed"
        assert validation.threshold == 75000
        assert validation.is_expired is False
        assert validation.reason is None

    @pytest.mark.asyncio
    async def test_pending_is_invalid(self, service: ProofService, seed_submission: Seed) -> None:
        """Test that an unconfirmed proof is not valid yet."""
        submission = await seed_submission(status=SubmissionStatus.PENDING)

        validation = await service.verify_proof(submission.nullifier)

        assert validation.is_valid is False
        assert validation.status == "pending"

    @pytest.mark.asyncio
    async def test_expired_is_invalid(self, service: ProofService, seed_submission: Seed) -> None:
        """Test that an expired confirmed proof is invalid."""
        submission = await seed_submission(expires_at=utcnow() - timedelta(days=1))

        validation = await service.verify_proof(submission.nullifier)

        assert validation.is_valid is False
        assert validation.is_expired is True
        assert validation.reason == "Proof has expired"


class TestPayments:
    """Tests for payment queries and retry through the service."""

    @pytest.mark.asyncio
    async def test_history_and_retry(
        self,
        service: ProofService,
        provider: MockPaymentProvider,
        wallets: WalletRegistry,
        seed_submission: Seed,
    ) -> None:
        """Test that a failed payment shows in history and can be retried."""
        submission = await seed_submission(user_id="user-late")

        await service.poller.run_once()
        history = await service.get_payment_history("user-late")

        assert len(history) == 1
        assert history[0].status == PaymentStatus.FAILED

        await wallets.register("user-late", "dest-late")
        await wallets.link_funding_account("user-late")
        payment = await service.retry_payment(str(history[0].id))

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.proof_id == submission.proof_id
        assert provider.call_count == 1
