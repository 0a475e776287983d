"""
ProofPay
========

Proof lifecycle and settlement pipeline.

Takes a prepared witness, obtains a zero-knowledge proof from an external
prover, submits it to the ledger exactly once, tracks its confirmation in the
background and triggers exactly-once reward settlement.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async SQLAlchemy engine and session management
    - models: ORM models for submissions, payments and payout wallets
    - zk: Proof models and the prover client
    - ledger: Ledger JSON-RPC client (mock/rpc)
    - payments: Payment provider interface and payout wallets
    - pipeline: Replay guard, submission gateway, poller, settlement

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "ProofPay Team"

from proofpay.config import settings
from proofpay.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
