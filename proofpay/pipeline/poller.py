"""
Confirmation Poller
===================

Background scheduler that advances pending submissions to a terminal state.

State machine per submission (driven by ledger queries only):

    pending --(tx found, code 0)-----> confirmed --> settlement
    pending --(tx found, code != 0)--> failed
    pending --(tx not found)---------> pending

Every transition is a single conditional UPDATE on `status = 'pending'`, so
the scheduled loop and on-demand polls can race on the same row: exactly one
of them transitions it and only that one triggers settlement.

Ticks never overlap. `stop()` lets an in-flight tick finish.

Version: 0.1.0
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.config import settings
from proofpay.database.postgres import PostgresClient
from proofpay.ledger import LedgerClient
from proofpay.logging import get_logger
from proofpay.models import PaymentRecord, ProofSubmission, SubmissionStatus, utcnow
from proofpay.models.submission import as_utc
from proofpay.pipeline.settlement import SettlementTrigger


logger = get_logger(__name__)


class PollOutcome(str, Enum):
    """Result of checking one submission against the ledger."""

    STILL_PENDING = "still_pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    # Another poller transitioned the row first
    ALREADY_DONE = "already_done"


@dataclass
class PollSummary:
    """Counters for one tick."""

    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0
    settled: int = 0
    stale_payments: int = 0

    def record(self, outcome: PollOutcome) -> None:
        self.checked += 1
        if outcome is PollOutcome.CONFIRMED:
            self.confirmed += 1
        elif outcome is PollOutcome.FAILED:
            self.failed += 1
        elif outcome is PollOutcome.STILL_PENDING:
            self.still_pending += 1


class ConfirmationPoller:
    """
    Recurring ledger confirmation check with a re-entrancy guard.

    Usage:
        poller = ConfirmationPoller(ledger, settlement)
        poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settlement: SettlementTrigger,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._ledger = ledger
        self._settlement = settlement
        self._session_factory = session_factory or PostgresClient.get_session_factory()
        self._interval = interval_seconds or settings.poller.interval_seconds
        self._batch_size = batch_size or settings.poller.batch_size

        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the background loop; the first tick runs immediately."""
        if self.is_running:
            logger.info("confirmation_poller_already_running")
            return

        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="confirmation-poller")
        logger.info(
            "confirmation_poller_started",
            interval_seconds=self._interval,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        """Stop the loop after the in-flight tick, if any, completes."""
        if self._task is None:
            return

        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("confirmation_poller_stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # A broken tick (e.g. database down) must not kill the loop
                logger.exception("confirmation_poll_tick_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    # =========================================================================
    # Polling
    # =========================================================================

    async def run_once(self) -> PollSummary:
        """
        Run one tick: check the oldest pending submissions, settle any
        confirmed submission still missing its payment, and fail payments
        left pending by a crash so they become retriable.
        """
        async with self._tick_lock:
            summary = PollSummary()
            pending = await self._load_pending()

            if pending:
                logger.debug("confirmation_poll_batch", size=len(pending))

            for submission in pending:
                try:
                    outcome = await self._check(submission)
                except Exception as e:
                    summary.errors += 1
                    logger.error(
                        "confirmation_check_failed",
                        proof_id=submission.proof_id,
                        tx_hash=submission.tx_hash,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue
                summary.record(outcome)

            summary.settled = await self._sweep_unsettled()
            summary.stale_payments = await self._fail_stale_payments()

            if summary.checked or summary.errors or summary.settled or summary.stale_payments:
                logger.info(
                    "confirmation_poll_completed",
                    checked=summary.checked,
                    confirmed=summary.confirmed,
                    failed=summary.failed,
                    still_pending=summary.still_pending,
                    errors=summary.errors,
                    settled=summary.settled,
                    stale_payments=summary.stale_payments,
                )
            return summary

    async def poll_one(self, proof_id: str) -> SubmissionStatus | None:
        """
        Check one submission now, if it is still pending.

        Returns:
            The submission's status after the check, None if unknown

        Raises:
            LedgerUnavailable, LedgerError: Ledger query failed
        """
        submission = await self._load(proof_id)
        if submission is None:
            return None
        if submission.status.is_terminal:
            return submission.status

        await self._check(submission)

        refreshed = await self._load(proof_id)
        return refreshed.status if refreshed else None

    async def _check(self, submission: ProofSubmission) -> PollOutcome:
        if not submission.tx_hash:
            return PollOutcome.STILL_PENDING

        tx_status = await self._ledger.get_transaction_status(submission.tx_hash)

        if tx_status is None:
            return PollOutcome.STILL_PENDING

        if tx_status.confirmed:
            won = await self._transition(
                submission.proof_id,
                SubmissionStatus.CONFIRMED,
                confirmed_at=utcnow(),
            )
            if not won:
                return PollOutcome.ALREADY_DONE

            logger.info(
                "submission_confirmed",
                proof_id=submission.proof_id,
                tx_hash=submission.tx_hash,
                height=tx_status.height,
                confirmation_seconds=_seconds_since(submission.submitted_at),
            )
            await self._trigger_settlement(submission)
            return PollOutcome.CONFIRMED

        if tx_status.failed:
            reason = tx_status.tx_result.log
            won = await self._transition(
                submission.proof_id,
                SubmissionStatus.FAILED,
                failure_reason=reason or f"Ledger result code {tx_status.tx_result.code}",
            )
            if not won:
                return PollOutcome.ALREADY_DONE

            logger.error(
                "submission_failed",
                proof_id=submission.proof_id,
                tx_hash=submission.tx_hash,
                code=tx_status.tx_result.code,
                log=reason,
            )
            return PollOutcome.FAILED

        # Seen by the node but not executed yet
        return PollOutcome.STILL_PENDING

    async def _transition(
        self,
        proof_id: str,
        new_status: SubmissionStatus,
        **values: Any,
    ) -> bool:
        """Conditional pending -> terminal update. True if this caller won."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(ProofSubmission)
                .where(
                    ProofSubmission.proof_id == proof_id,
                    ProofSubmission.status == SubmissionStatus.PENDING,
                )
                .values(status=new_status, **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def _trigger_settlement(self, submission: ProofSubmission) -> bool:
        """Settle a confirmed submission; failures never touch its status."""
        try:
            await self._settlement.settle(
                submission.proof_id,
                submission.user_id,
                submission.threshold,
            )
        except Exception as e:
            # Left for the next sweep: a confirmed submission without payment
            logger.error(
                "settlement_trigger_failed",
                proof_id=submission.proof_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def _sweep_unsettled(self) -> int:
        """Settle confirmed submissions that have no payment record."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProofSubmission)
                .outerjoin(PaymentRecord, PaymentRecord.proof_id == ProofSubmission.proof_id)
                .where(
                    ProofSubmission.status == SubmissionStatus.CONFIRMED,
                    PaymentRecord.id.is_(None),
                )
                .order_by(ProofSubmission.confirmed_at.asc())
                .limit(self._batch_size)
            )
            unsettled = list(result.scalars().all())

        settled = 0
        for submission in unsettled:
            logger.warning("settlement_sweep", proof_id=submission.proof_id)
            if await self._trigger_settlement(submission):
                settled += 1
        return settled

    async def _fail_stale_payments(self) -> int:
        try:
            return await self._settlement.fail_stale_pending()
        except Exception as e:
            logger.error(
                "stale_payment_check_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

    # =========================================================================
    # Queries
    # =========================================================================

    async def _load_pending(self) -> list[ProofSubmission]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProofSubmission)
                .where(ProofSubmission.status == SubmissionStatus.PENDING)
                .order_by(ProofSubmission.submitted_at.asc())
                .limit(self._batch_size)
            )
            return list(result.scalars().all())

    async def _load(self, proof_id: str) -> ProofSubmission | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProofSubmission).where(ProofSubmission.proof_id == proof_id)
            )
            return result.scalar_one_or_none()


def _seconds_since(moment: datetime | None) -> float | None:
    if moment is None:
        return None
    return round((utcnow() - as_utc(moment)).total_seconds(), 3)
