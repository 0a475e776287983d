"""
Settlement Trigger
==================

Issues the reward payment for a confirmed proof, at most once per proof.

The poller may call `settle` more than once for the same proof (scheduled
loop racing an on-demand poll, or the sweep after a crash). The unique
constraint on `payment_history.proof_id` decides who settles: the pending
record is committed before the provider is contacted, and whoever fails to
insert it returns the existing record untouched.

A crash between that commit and the provider outcome leaves the record
pending. `fail_stale_pending` (run by the poller every tick) moves records
pending longer than `SETTLEMENT_STALE_PENDING_SECONDS` to failed, with
STALE_PENDING_MESSAGE, so they can be retried. The provider may have issued
funds before the crash; check its ledger before retrying such a payment.

Amount rule:
    amount = max(0, min(max_payment, base_amount + threshold * rate_multiplier))

Version: 0.1.0
"""

import uuid
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.config import settings
from proofpay.database.postgres import PostgresClient
from proofpay.exceptions import (
    PaymentNotFound,
    PaymentNotRetryable,
    PaymentProviderError,
    ProofNotFound,
)
from proofpay.logging import get_logger
from proofpay.models import PaymentRecord, PaymentStatus, utcnow
from proofpay.payments import PaymentProvider, WalletRegistry


logger = get_logger(__name__)

CENT = Decimal("0.01")

NO_WALLET_MESSAGE = "User has not configured a payout wallet"
NO_FUNDING_ACCOUNT_MESSAGE = "User has not linked a funding account"
STALE_PENDING_MESSAGE = "Settlement interrupted before the provider outcome was recorded"


def calculate_payment_amount(
    threshold: int,
    base_amount: Decimal,
    rate_multiplier: Decimal,
    max_payment: Decimal,
) -> Decimal:
    """Bounded, deterministic reward for a claimed threshold."""
    amount = base_amount + Decimal(threshold) * rate_multiplier
    return max(Decimal(0), min(amount, max_payment)).quantize(CENT, rounding=ROUND_HALF_UP)


class SettlementTrigger:
    """
    Computes and issues reward payments for confirmed proofs.

    Usage:
        trigger = SettlementTrigger(provider=get_payment_provider())
        payment = await trigger.settle(proof_id, user_id, threshold=50000)
    """

    def __init__(
        self,
        provider: PaymentProvider,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        wallets: WalletRegistry | None = None,
        base_amount: Decimal | None = None,
        rate_multiplier: Decimal | None = None,
        max_payment: Decimal | None = None,
        stale_pending_seconds: float | None = None,
    ) -> None:
        cfg = settings.settlement
        self._provider = provider
        self._session_factory = session_factory or PostgresClient.get_session_factory()
        self._wallets = wallets or WalletRegistry(self._session_factory)
        self._base_amount = base_amount if base_amount is not None else cfg.base_amount
        self._rate_multiplier = (
            rate_multiplier if rate_multiplier is not None else cfg.rate_multiplier
        )
        self._max_payment = max_payment if max_payment is not None else cfg.max_payment
        self._stale_pending_seconds = (
            stale_pending_seconds
            if stale_pending_seconds is not None
            else cfg.stale_pending_seconds
        )

    def amount_for(self, threshold: int) -> Decimal:
        return calculate_payment_amount(
            threshold,
            self._base_amount,
            self._rate_multiplier,
            self._max_payment,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(self, proof_id: str, user_id: str, threshold: int) -> PaymentRecord:
        """
        Settle a confirmed proof.

        Returns the existing record unchanged if the proof was already
        settled (in any status).
        """
        existing = await self.get_by_proof_id(proof_id)
        if existing is not None:
            logger.info(
                "settlement_already_exists",
                proof_id=proof_id,
                payment_id=str(existing.id),
                status=existing.status.value,
            )
            return existing

        amount = self.amount_for(threshold)
        payment = await self._claim(proof_id, user_id, amount)
        if payment is None:
            winner = await self.get_by_proof_id(proof_id)
            if winner is None:
                # Constraint violation without a payment row: unknown proof_id
                raise ProofNotFound(f"No submission {proof_id} to settle", proof_id=proof_id)
            return winner

        logger.info(
            "settlement_triggered",
            proof_id=proof_id,
            user_id=user_id,
            payment_id=str(payment.id),
            amount=str(amount),
        )
        return await self._execute(payment)

    async def _claim(self, proof_id: str, user_id: str, amount: Decimal) -> PaymentRecord | None:
        """Commit a pending record; None if another trigger got there first."""
        async with self._session_factory() as session:
            payment = PaymentRecord(
                user_id=user_id,
                proof_id=proof_id,
                amount=amount,
                status=PaymentStatus.PENDING,
                triggered_at=utcnow(),
            )
            session.add(payment)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("settlement_claim_lost", proof_id=proof_id)
                return None
        return payment

    async def _execute(self, payment: PaymentRecord) -> PaymentRecord:
        """Check preconditions, issue funds, record the outcome."""
        wallet = await self._wallets.get(payment.user_id)

        if wallet is None or not wallet.destination:
            logger.warning(
                "settlement_precondition_failed",
                user_id=payment.user_id,
                reason="no_wallet",
            )
            return await self._finish(
                payment.id,
                PaymentStatus.FAILED,
                error_message=NO_WALLET_MESSAGE,
            )

        if not wallet.funding_account_linked:
            logger.warning(
                "settlement_precondition_failed",
                user_id=payment.user_id,
                reason="no_funding_account",
            )
            return await self._finish(
                payment.id,
                PaymentStatus.FAILED,
                error_message=NO_FUNDING_ACCOUNT_MESSAGE,
            )

        amount = Decimal(payment.amount)
        try:
            transaction_id = await self._provider.issue(wallet.destination, amount)
        except PaymentProviderError as e:
            logger.error("settlement_failed", payment_id=str(payment.id), error=e.message)
            return await self._finish(payment.id, PaymentStatus.FAILED, error_message=e.message)
        except Exception as e:
            # The record must not stay pending: only failed payments are retriable
            logger.exception("settlement_failed", payment_id=str(payment.id), error=str(e))
            return await self._finish(
                payment.id,
                PaymentStatus.FAILED,
                error_message=str(e) or type(e).__name__,
            )

        logger.info(
            "settlement_completed",
            payment_id=str(payment.id),
            proof_id=payment.proof_id,
            amount=str(amount),
            transaction_id=transaction_id,
        )
        return await self._finish(
            payment.id,
            PaymentStatus.COMPLETED,
            transaction_id=transaction_id,
            completed_at=utcnow(),
        )

    async def _finish(
        self,
        payment_id: uuid.UUID,
        status: PaymentStatus,
        **values: Any,
    ) -> PaymentRecord:
        """Move a pending record to its outcome and return the stored row."""
        async with self._session_factory() as session:
            await session.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.id == payment_id,
                    PaymentRecord.status == PaymentStatus.PENDING,
                )
                .values(status=status, **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return await session.get(PaymentRecord, payment_id, populate_existing=True)

    # =========================================================================
    # Retry
    # =========================================================================

    async def retry(self, payment_id: uuid.UUID | str) -> PaymentRecord:
        """
        Re-run settlement for a failed payment.

        Raises:
            PaymentNotFound: Unknown payment id
            PaymentNotRetryable: Payment is not in failed status
        """
        payment_uuid = _parse_payment_id(payment_id)

        async with self._session_factory() as session:
            payment = await session.get(PaymentRecord, payment_uuid)
            if payment is None:
                raise PaymentNotFound("Payment not found", payment_id=str(payment_id))
            if payment.status != PaymentStatus.FAILED:
                raise PaymentNotRetryable(
                    "Can only retry failed payments",
                    payment_id=str(payment_id),
                    status=payment.status.value,
                )

            result = await session.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.id == payment_uuid,
                    PaymentRecord.status == PaymentStatus.FAILED,
                )
                .values(
                    status=PaymentStatus.PENDING,
                    error_message=None,
                    triggered_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            updated = result.rowcount

        if updated != 1:
            raise PaymentNotRetryable(
                "Payment is already being retried",
                payment_id=str(payment_id),
            )

        logger.info("settlement_retry", payment_id=str(payment_uuid), proof_id=payment.proof_id)
        return await self._execute(payment)

    async def fail_stale_pending(self) -> int:
        """
        Mark pending payments older than the stale timeout as failed.

        Returns:
            Number of records moved to failed
        """
        cutoff = utcnow() - timedelta(seconds=self._stale_pending_seconds)

        async with self._session_factory() as session:
            result = await session.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.status == PaymentStatus.PENDING,
                    PaymentRecord.triggered_at < cutoff,
                )
                .values(status=PaymentStatus.FAILED, error_message=STALE_PENDING_MESSAGE)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            failed = result.rowcount

        if failed:
            logger.warning("settlement_stale_pending_failed", count=failed)
        return failed

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_by_proof_id(self, proof_id: str) -> PaymentRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRecord).where(PaymentRecord.proof_id == proof_id)
            )
            return result.scalar_one_or_none()

    async def history(self, user_id: str) -> list[PaymentRecord]:
        """Payments for a user, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(PaymentRecord.user_id == user_id)
                .order_by(PaymentRecord.triggered_at.desc())
            )
            return list(result.scalars().all())


def _parse_payment_id(payment_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(payment_id, uuid.UUID):
        return payment_id
    try:
        return uuid.UUID(str(payment_id))
    except ValueError as e:
        raise PaymentNotFound("Payment not found", payment_id=str(payment_id)) from e
