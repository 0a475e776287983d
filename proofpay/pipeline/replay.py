"""
Replay Guard
============

A nullifier may be submitted at most once.

`ensure_unused` is the fast path: a lookup that rejects known nullifiers
before any ledger traffic. `claim` is authoritative: it inserts the
submission row and relies on the unique constraint on `nullifier`, so two
concurrent submitters cannot both pass it.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proofpay.exceptions import DuplicateNullifier
from proofpay.logging import get_logger
from proofpay.models import ProofSubmission

logger = get_logger(__name__)


class ReplayGuard:
    async def is_used(self, session: AsyncSession, nullifier: str) -> bool:
        result = await session.execute(
            select(ProofSubmission.id).where(ProofSubmission.nullifier == nullifier)
        )
        return result.first() is not None

    async def ensure_unused(self, session: AsyncSession, nullifier: str) -> None:
        """
        Raises:
            DuplicateNullifier: A submission with this nullifier exists
        """
        if await self.is_used(session, nullifier):
            logger.warning("replay_rejected", nullifier=nullifier, stage="lookup")
            raise DuplicateNullifier(nullifier)

    async def claim(self, session: AsyncSession, submission: ProofSubmission) -> None:
        """
        Insert the submission inside the caller's open transaction.

        The row stays uncommitted; the caller commits once the ledger
        accepted the transaction, or lets the session roll back.

        Raises:
            DuplicateNullifier: The unique constraint rejected the row
        """
        session.add(submission)
        try:
            await session.flush()
        except IntegrityError as e:
            await session.rollback()
            logger.warning(
                "replay_rejected",
                nullifier=submission.nullifier,
                stage="constraint",
            )
            raise DuplicateNullifier(submission.nullifier) from e
