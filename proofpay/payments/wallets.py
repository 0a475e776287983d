"""
Payout Wallet Registry
======================

Issuance destinations and funding-account approval per user. Settlement
reads these as preconditions before contacting the payment provider.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.database.postgres import PostgresClient
from proofpay.logging import get_logger
from proofpay.models import PayoutWallet

logger = get_logger(__name__)


class WalletRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or PostgresClient.get_session_factory()

    async def get(self, user_id: str) -> PayoutWallet | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PayoutWallet).where(PayoutWallet.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def register(self, user_id: str, destination: str) -> PayoutWallet:
        """Create or update the user's issuance destination."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PayoutWallet).where(PayoutWallet.user_id == user_id)
            )
            wallet = result.scalar_one_or_none()
            if wallet is None:
                wallet = PayoutWallet(
                    user_id=user_id,
                    destination=destination,
                    funding_account_linked=False,
                )
                session.add(wallet)
            else:
                wallet.destination = destination
            await session.commit()

        logger.info("payout_wallet_registered", user_id=user_id)
        return wallet

    async def link_funding_account(self, user_id: str) -> PayoutWallet:
        """
        Mark the user's funding account as linked and approved.

        Raises:
            LookupError: The user has no payout wallet
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(PayoutWallet).where(PayoutWallet.user_id == user_id)
            )
            wallet = result.scalar_one_or_none()
            if wallet is None:
                raise LookupError(f"User {user_id} has no payout wallet. Register one first.")
            wallet.funding_account_linked = True
            await session.commit()

        logger.info("funding_account_linked", user_id=user_id)
        return wallet
