"""
Mock Ledger Client
==================

In-memory ledger for development and testing.

Broadcast transactions start unconfirmed; tests (or a dev script) decide
their fate with `confirm()` / `fail()`, or enable `auto_confirm`.

Version: 0.1.0
"""

import hashlib
import uuid
from typing import Any

from proofpay.config import LedgerMode
from proofpay.exceptions import LedgerError, LedgerUnavailable
from proofpay.ledger.client import LedgerClient, TxResult, TxStatus
from proofpay.logging import get_logger

logger = get_logger(__name__)


class MockLedgerClient(LedgerClient):
    """
    In-memory mock ledger client.

    Data is stored in memory and lost on restart.
    """

    def __init__(self, auto_confirm: bool = False) -> None:
        """
        Initialize mock ledger.

        Args:
            auto_confirm: Confirm every broadcast transaction immediately
        """
        self.auto_confirm = auto_confirm
        self.available = True
        self._block_height = 1000

        # tx_hash -> (tx, proof)
        self.broadcasts: dict[str, tuple[str, dict[str, Any]]] = {}
        # tx_hash -> status once included in a block
        self._included: dict[str, TxStatus] = {}
        # tx_hash -> error raised on query
        self._query_errors: dict[str, Exception] = {}

        self.status_queries: list[str] = []

        logger.debug("mock_ledger_initialized")

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.MOCK

    async def close(self) -> None:
        """Nothing to release."""

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self.available else "unhealthy",
            "mode": self.mode.value,
            "latest_block_height": self._block_height,
            "transactions": len(self.broadcasts),
        }

    def _generate_tx_hash(self) -> str:
        return hashlib.sha256(uuid.uuid4().bytes).hexdigest().upper()

    def _next_block(self) -> int:
        self._block_height += 1
        return self._block_height

    async def broadcast_tx_async(self, tx: str, proof: dict[str, Any]) -> str:
        if not self.available:
            raise LedgerUnavailable("Ledger node is unavailable. Ensure the node is running.")

        tx_hash = self._generate_tx_hash()
        self.broadcasts[tx_hash] = (tx, proof)
        if self.auto_confirm:
            self.confirm(tx_hash)

        logger.debug("mock_tx_broadcast", tx_hash=tx_hash)
        return tx_hash

    async def get_transaction_status(self, tx_hash: str) -> TxStatus | None:
        self.status_queries.append(tx_hash)
        if not self.available:
            raise LedgerUnavailable("Ledger node is unavailable. Ensure the node is running.")
        if tx_hash in self._query_errors:
            raise self._query_errors[tx_hash]
        return self._included.get(tx_hash)

    # =========================================================================
    # Test controls
    # =========================================================================

    def confirm(self, tx_hash: str) -> TxStatus:
        """Include a transaction with a success code."""
        status = TxStatus(
            hash=tx_hash,
            height=self._next_block(),
            tx_result=TxResult(code=0),
            confirmed=True,
        )
        self._included[tx_hash] = status
        return status

    def fail(self, tx_hash: str, code: int = 1, log: str = "proof verification failed") -> TxStatus:
        """Include a transaction with a failure code."""
        status = TxStatus(
            hash=tx_hash,
            height=self._next_block(),
            tx_result=TxResult(code=code, log=log),
            confirmed=False,
        )
        self._included[tx_hash] = status
        return status

    def break_queries(self, tx_hash: str, error: Exception | None = None) -> None:
        """Make status queries for one transaction raise."""
        self._query_errors[tx_hash] = error or LedgerError("Failed to fetch transaction status")

    def clear_all(self) -> None:
        """Forget every transaction."""
        self.broadcasts.clear()
        self._included.clear()
        self._query_errors.clear()
        self.status_queries.clear()
        self.available = True
