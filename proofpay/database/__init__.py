"""
Database Module
===============

Async relational store for submissions, payments and payout wallets.

Usage:
    from proofpay.database import PostgresClient

    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        result = await session.execute(select(ProofSubmission))
"""

from proofpay.database.postgres import Base, PostgresClient


__all__ = [
    "Base",
    "PostgresClient",
]
