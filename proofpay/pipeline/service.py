"""
Proof Service
=============

Client-facing contract over the proof lifecycle, consumed by the HTTP layer:

- generate_proof: obtain a proof from the prover
- submit_proof: relay it to the ledger exactly once
- get_proof_status: stored status, refreshed by an on-demand poll
- get_payment_history / get_payment_by_proof_id / retry_payment
- verify_proof: third-party check of a nullifier

Version: 0.1.0
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.database.postgres import PostgresClient
from proofpay.exceptions import LedgerError, LedgerUnavailable, ProofNotFound
from proofpay.ledger import LedgerClient, get_ledger_client
from proofpay.logging import get_logger
from proofpay.models import PaymentRecord, ProofSubmission, SubmissionStatus, utcnow
from proofpay.models.submission import as_utc
from proofpay.payments import PaymentProvider, WalletRegistry, get_payment_provider
from proofpay.pipeline.gateway import SubmissionGateway
from proofpay.pipeline.poller import ConfirmationPoller
from proofpay.pipeline.settlement import SettlementTrigger
from proofpay.zk.models import (
    CircuitType,
    ProofStatusView,
    ProofValidation,
    PublicInputs,
    SubmissionResult,
    Witness,
    ZKProof,
)
from proofpay.zk.prover import ProofGenerationClient


logger = get_logger(__name__)


class ProofService:
    """
    Facade over prover, gateway, poller and settlement.

    Build one with `build_pipeline()`; the host application owns the
    poller's lifecycle through `service.poller`.
    """

    def __init__(
        self,
        prover: ProofGenerationClient,
        gateway: SubmissionGateway,
        poller: ConfirmationPoller,
        settlement: SettlementTrigger,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.prover = prover
        self.gateway = gateway
        self.poller = poller
        self.settlement = settlement
        self._session_factory = session_factory

    # =========================================================================
    # Proofs
    # =========================================================================

    async def generate_proof(
        self,
        circuit: CircuitType | str,
        witness: Witness | dict[str, Any],
        threshold: int,
    ) -> ZKProof:
        """Generate a proof that the witness satisfies `threshold`."""
        return await self.prover.generate(circuit, witness, PublicInputs(threshold=threshold))

    async def submit_proof(
        self,
        proof: ZKProof,
        wallet_signature: str,
        user_id: str,
        circuit: CircuitType | None = None,
    ) -> SubmissionResult:
        return await self.gateway.submit(proof, wallet_signature, user_id, circuit=circuit)

    async def get_proof_status(self, proof_id: str, user_id: str | None = None) -> ProofStatusView:
        """
        Current status of a submission, polling the ledger if still pending.

        Raises:
            ProofNotFound: Unknown proof id, or owned by another user
        """
        submission = await self._load_submission(proof_id)
        if submission is None or (user_id is not None and submission.user_id != user_id):
            raise ProofNotFound("Proof not found", proof_id=proof_id)

        if submission.status == SubmissionStatus.PENDING:
            try:
                await self.poller.poll_one(proof_id)
            except (LedgerUnavailable, LedgerError) as e:
                # Stored status is still correct, just not refreshed
                logger.warning("proof_status_poll_failed", proof_id=proof_id, error=e.message)
            else:
                submission = await self._load_submission(proof_id)

        return _status_view(submission)

    async def verify_proof(self, nullifier: str) -> ProofValidation:
        """
        Tell a third party whether a nullifier backs a live, confirmed proof.

        Valid iff the submission exists, is confirmed and has not expired.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProofSubmission).where(ProofSubmission.nullifier == nullifier)
            )
            submission = result.scalar_one_or_none()

        if submission is None:
            return ProofValidation(nullifier=nullifier, is_valid=False, reason="Proof not found")

        expired = submission.is_expired(utcnow())
        reason = None
        if submission.status != SubmissionStatus.CONFIRMED:
            reason = f"Proof is {submission.status.value}"
        elif expired:
            reason = "Proof has expired"

        logger.info(
            "proof_verification_requested",
            nullifier=nullifier,
            status=submission.status.value,
            is_valid=reason is None,
        )

        return ProofValidation(
            nullifier=nullifier,
            is_valid=reason is None,
            status=submission.status.value,
            threshold=submission.threshold,
            expires_at=as_utc(submission.expires_at),
            is_expired=expired,
            reason=reason,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    async def get_payment_history(self, user_id: str) -> list[PaymentRecord]:
        return await self.settlement.history(user_id)

    async def get_payment_by_proof_id(self, proof_id: str) -> PaymentRecord | None:
        return await self.settlement.get_by_proof_id(proof_id)

    async def retry_payment(self, payment_id: str) -> PaymentRecord:
        return await self.settlement.retry(payment_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_submission(self, proof_id: str) -> ProofSubmission | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProofSubmission).where(ProofSubmission.proof_id == proof_id)
            )
            return result.scalar_one_or_none()

    async def close(self) -> None:
        await self.prover.close()


def _status_view(submission: ProofSubmission) -> ProofStatusView:
    return ProofStatusView(
        proof_id=submission.proof_id,
        nullifier=submission.nullifier,
        tx_hash=submission.tx_hash,
        threshold=submission.threshold,
        status=submission.status.value,
        submitted_at=as_utc(submission.submitted_at),
        confirmed_at=as_utc(submission.confirmed_at),
        expires_at=as_utc(submission.expires_at),
        failure_reason=submission.failure_reason,
    )


def build_pipeline(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    prover: ProofGenerationClient | None = None,
    ledger: LedgerClient | None = None,
    provider: PaymentProvider | None = None,
) -> ProofService:
    """
    Wire the pipeline from settings, with optional overrides.

    Ledger and payment provider default to the configured global clients.
    """
    session_factory = session_factory or PostgresClient.get_session_factory()
    ledger = ledger or get_ledger_client()
    provider = provider or get_payment_provider()

    settlement = SettlementTrigger(
        provider=provider,
        session_factory=session_factory,
        wallets=WalletRegistry(session_factory),
    )
    service = ProofService(
        prover=prover or ProofGenerationClient(),
        gateway=SubmissionGateway(ledger=ledger, session_factory=session_factory),
        poller=ConfirmationPoller(
            ledger=ledger,
            settlement=settlement,
            session_factory=session_factory,
        ),
        settlement=settlement,
        session_factory=session_factory,
    )

    logger.info("pipeline_built", ledger_mode=ledger.mode.value, payment_provider=provider.name)
    return service
