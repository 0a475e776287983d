"""
Ledger Client Interface
=======================

Abstract base class, models and JSON-RPC implementation for the ledger node.

Version: 0.1.0
"""

import itertools
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

from proofpay.config import LedgerMode, settings
from proofpay.exceptions import LedgerError, LedgerUnavailable
from proofpay.logging import get_logger

logger = get_logger(__name__)


class TxResult(BaseModel):
    """Execution result of a ledger transaction. Code 0 means success."""

    code: int = 0
    log: str | None = None
    data: str | None = None


class TxStatus(BaseModel):
    """Ledger view of a submitted transaction."""

    hash: str
    height: int | None = None
    tx_result: TxResult | None = None
    confirmed: bool = False

    @property
    def failed(self) -> bool:
        """Included on chain with a non-zero result code."""
        return self.tx_result is not None and self.tx_result.code != 0

    @classmethod
    def from_rpc(cls, result: dict[str, Any], fallback_hash: str) -> "TxStatus":
        tx_result = result.get("tx_result")
        parsed = TxResult.model_validate(tx_result) if tx_result else None
        height = result.get("height")
        return cls(
            hash=result.get("hash") or fallback_hash,
            height=int(height) if height is not None else None,
            tx_result=parsed,
            confirmed=parsed is not None and parsed.code == 0,
        )


class LedgerClient(ABC):
    """
    Abstract base class for ledger clients.

    Implements the Strategy pattern for different ledger modes.
    """

    @property
    @abstractmethod
    def mode(self) -> LedgerMode:
        """Get the ledger mode."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger node health."""
        ...

    @abstractmethod
    async def broadcast_tx_async(self, tx: str, proof: dict[str, Any]) -> str:
        """
        Relay a signed transaction carrying a proof.

        Returns immediately with the transaction hash; confirmation is
        observed separately through `get_transaction_status`.

        Args:
            tx: Wallet-signed transaction
            proof: Proof payload in wire format

        Returns:
            Transaction hash

        Raises:
            LedgerUnavailable: Node unreachable
            LedgerError: Node rejected the broadcast or returned no hash
        """
        ...

    @abstractmethod
    async def get_transaction_status(self, tx_hash: str) -> TxStatus | None:
        """
        Query a transaction by hash.

        Returns:
            TxStatus, or None when the transaction is not on chain yet

        Raises:
            LedgerUnavailable: Node unreachable
            LedgerError: Query failed
        """
        ...


class JsonRpcLedgerClient(LedgerClient):
    """
    Ledger client speaking JSON-RPC 2.0 over HTTP.

    Methods used: `broadcast_tx_async`, `tx`, `status`.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        timeout: float | None = None,
        query_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url or settings.ledger.rpc_url
        self._timeout = timeout or settings.ledger.timeout_seconds
        self._query_timeout = query_timeout or settings.ledger.query_timeout_seconds
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

        logger.debug("ledger_rpc_client_initialized", rpc_url=self._rpc_url)

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.RPC

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> tuple[Any, dict[str, Any] | None]:
        """
        Perform one JSON-RPC call.

        Returns:
            Tuple of (result, error); exactly one of them is set.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        start = time.perf_counter()
        try:
            response = await self._client.post(
                self._rpc_url,
                json=payload,
                timeout=timeout or self._timeout,
            )
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error("ledger_unreachable", method=method, error=str(e))
            raise LedgerUnavailable(
                "Ledger node is unavailable. Ensure the node is running.",
                rpc_url=self._rpc_url,
            ) from e
        except httpx.RequestError as e:
            logger.error("ledger_request_failed", method=method, error=str(e))
            raise LedgerUnavailable(f"Ledger request failed: {e}") from e

        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerError(
                f"Ledger returned a non-JSON body (status {response.status_code})"
            ) from e

        if not isinstance(body, dict):
            raise LedgerError("Ledger returned an unexpected JSON-RPC envelope")

        logger.debug(
            "ledger_rpc_call",
            method=method,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        error = body.get("error")
        if error:
            return None, error if isinstance(error, dict) else {"message": str(error)}
        if response.status_code >= 400:
            raise LedgerError(f"Ledger returned error status: {response.status_code}")
        return body.get("result"), None

    async def broadcast_tx_async(self, tx: str, proof: dict[str, Any]) -> str:
        result, error = await self._call("broadcast_tx_async", {"tx": tx, "proof": proof})
        if error:
            raise LedgerError(
                f"Transaction submission failed: {error.get('message', 'unknown error')}",
                rpc_error=error,
            )
        if not isinstance(result, dict) or not result.get("hash"):
            raise LedgerError("Transaction submission failed: no hash returned")
        return str(result["hash"])

    async def get_transaction_status(self, tx_hash: str) -> TxStatus | None:
        result, error = await self._call(
            "tx",
            {"hash": tx_hash, "prove": False},
            timeout=self._query_timeout,
        )
        if error:
            text = f"{error.get('message', '')} {error.get('data', '')}".lower()
            if "not found" in text:
                return None
            raise LedgerError(
                f"Failed to fetch transaction status: {error.get('message', 'unknown error')}",
                tx_hash=tx_hash,
            )
        if not result:
            return None
        if not isinstance(result, dict):
            raise LedgerError("Unexpected transaction status payload", tx_hash=tx_hash)
        return TxStatus.from_rpc(result, tx_hash)

    async def health_check(self) -> dict[str, Any]:
        try:
            result, error = await self._call("status", {}, timeout=5.0)
        except (LedgerUnavailable, LedgerError) as e:
            return {"status": "unhealthy", "mode": self.mode.value, "error": e.message}
        if error:
            return {"status": "unhealthy", "mode": self.mode.value, "error": error.get("message")}
        sync_info = (result or {}).get("sync_info", {}) if isinstance(result, dict) else {}
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "latest_block_height": sync_info.get("latest_block_height"),
        }


# Global client instance
_client: LedgerClient | None = None


def get_ledger_client() -> LedgerClient:
    """
    Get the configured ledger client instance.

    Returns:
        LedgerClient instance based on settings
    """
    global _client

    if _client is None:
        mode = settings.ledger.mode

        if mode == LedgerMode.MOCK:
            from proofpay.ledger.mock import MockLedgerClient

            _client = MockLedgerClient()
        elif mode == LedgerMode.RPC:
            _client = JsonRpcLedgerClient()
        else:
            raise ValueError(f"Unknown ledger mode: {mode}")

        logger.info("ledger_client_initialized", mode=mode.value)

    return _client


def set_ledger_client(client: LedgerClient) -> None:
    """
    Set a custom ledger client.

    Args:
        client: LedgerClient instance
    """
    global _client
    _client = client
    logger.info("ledger_client_set", mode=client.mode.value)


def reset_ledger_client() -> None:
    """Reset the client to be re-initialized."""
    global _client
    _client = None
