"""
Submission Gateway
==================

Relays a proof to the ledger exactly once and records it as pending.

The row is claimed (inserted and flushed) before the ledger broadcast and
committed after it, all in one database transaction. In PostgreSQL a second
insert with the same nullifier blocks on the first transaction, so claim and
relay form a critical section per nullifier. A failed broadcast rolls the
claim back and leaves no trace.

Version: 0.1.0
"""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.database.postgres import PostgresClient
from proofpay.exceptions import InvalidProof, LedgerError, LedgerUnavailable
from proofpay.ledger import LedgerClient
from proofpay.logging import get_logger
from proofpay.models import ProofSubmission, SubmissionStatus, utcnow
from proofpay.pipeline.replay import ReplayGuard
from proofpay.zk.models import CircuitType, SubmissionResult, ZKProof


logger = get_logger(__name__)


def new_proof_id() -> str:
    """Generate a unique public proof identifier."""
    return f"proof_{uuid.uuid4().hex}"


class SubmissionGateway:
    """
    Persists submissions and relays them to the ledger.

    Usage:
        gateway = SubmissionGateway(ledger=get_ledger_client())
        result = await gateway.submit(proof, wallet_signature, user_id="user-1")
    """

    def __init__(
        self,
        ledger: LedgerClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        replay_guard: ReplayGuard | None = None,
    ) -> None:
        self._ledger = ledger
        self._session_factory = session_factory or PostgresClient.get_session_factory()
        self._replay_guard = replay_guard or ReplayGuard()

    async def submit(
        self,
        proof: ZKProof,
        wallet_signature: str,
        user_id: str,
        circuit: CircuitType | None = None,
    ) -> SubmissionResult:
        """
        Submit a proof to the ledger.

        Args:
            proof: Generated proof
            wallet_signature: User-signed ledger transaction
            user_id: Submitting user
            circuit: Circuit the proof was generated with, if known

        Returns:
            SubmissionResult with the ledger tx hash and status pending

        Raises:
            InvalidProof: Missing signature or nullifier, unusable threshold
            DuplicateNullifier: Nullifier already submitted
            LedgerUnavailable: Node unreachable; caller must resubmit
            LedgerError: Node rejected the broadcast; caller must resubmit
        """
        threshold = proof.threshold
        if threshold is None:
            raise InvalidProof(
                "Proof threshold must be a non-negative integer",
                public_inputs=proof.public_inputs[:1],
            )
        if not wallet_signature:
            raise InvalidProof("Missing wallet signature")

        nullifier = proof.nullifier
        logger.info("proof_submission_started", user_id=user_id, nullifier=nullifier)

        async with self._session_factory() as session:
            await self._replay_guard.ensure_unused(session, nullifier)

            submission = ProofSubmission(
                proof_id=new_proof_id(),
                nullifier=nullifier,
                user_id=user_id,
                threshold=threshold,
                circuit=circuit.value if circuit else None,
                status=SubmissionStatus.PENDING,
                submitted_at=utcnow(),
                expires_at=proof.public_outputs.expires_at_datetime,
            )
            await self._replay_guard.claim(session, submission)

            try:
                tx_hash = await self._ledger.broadcast_tx_async(wallet_signature, proof.to_wire())
            except (LedgerUnavailable, LedgerError) as e:
                await session.rollback()
                logger.error(
                    "proof_submission_relay_failed",
                    user_id=user_id,
                    nullifier=nullifier,
                    error=e.message,
                )
                raise

            submission.tx_hash = tx_hash
            await session.commit()

        logger.info(
            "proof_submitted",
            user_id=user_id,
            proof_id=submission.proof_id,
            tx_hash=tx_hash,
            threshold=threshold,
        )

        return SubmissionResult(
            tx_hash=tx_hash,
            proof_id=submission.proof_id,
            status=SubmissionStatus.PENDING.value,
        )
