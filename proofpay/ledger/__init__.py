"""
Ledger Module
=============

Abstraction layer for the ledger node the proofs are relayed to.

Supports:
- Mock (development/testing)
- RPC (JSON-RPC 2.0 node)

Usage:
    from proofpay.ledger import get_ledger_client

    client = get_ledger_client()

    tx_hash = await client.broadcast_tx_async(signed_tx, proof.to_wire())
    status = await client.get_transaction_status(tx_hash)
"""

from proofpay.ledger.client import (
    JsonRpcLedgerClient,
    LedgerClient,
    TxResult,
    TxStatus,
    get_ledger_client,
    reset_ledger_client,
    set_ledger_client,
)
from proofpay.ledger.mock import MockLedgerClient

__all__ = [
    # Client
    "LedgerClient",
    "get_ledger_client",
    "set_ledger_client",
    "reset_ledger_client",
    # Models
    "TxResult",
    "TxStatus",
    # Implementations
    "JsonRpcLedgerClient",
    "MockLedgerClient",
]
