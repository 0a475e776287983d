"""
Mock Payment Provider
=====================

In-memory payment provider for development and testing.

Version: 0.1.0
"""

import uuid
from decimal import Decimal

from proofpay.exceptions import PaymentProviderError
from proofpay.logging import get_logger
from proofpay.payments.provider import PaymentProvider

logger = get_logger(__name__)


class MockPaymentProvider(PaymentProvider):
    """Records every issuance; can be told to fail the next calls."""

    def __init__(self) -> None:
        self.issued: list[tuple[str, Decimal, str]] = []
        self.failure_message: str | None = None

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_count(self) -> int:
        return len(self.issued)

    async def issue(self, destination: str, amount: Decimal) -> str:
        if self.failure_message is not None:
            raise PaymentProviderError(self.failure_message)

        transaction_id = f"mock_tx_{uuid.uuid4().hex[:16]}"
        self.issued.append((destination, amount, transaction_id))
        logger.debug(
            "mock_payment_issued",
            destination=destination,
            amount=str(amount),
            transaction_id=transaction_id,
        )
        return transaction_id
