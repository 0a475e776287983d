"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from proofpay.logging import get_logger, setup_logging

    # Setup at application start
    setup_logging()

    # Get logger for a module
    logger = get_logger(__name__)

    # Log with context
    logger.info("proof_submitted", proof_id="proof_abc", tx_hash="0x...")
    logger.error("ledger_query_failed", error=str(e), tx_hash=tx_hash)
"""

from proofpay.logging.logger import bind_context, clear_context, get_logger, setup_logging


__all__ = [
    "get_logger",
    "setup_logging",
    "bind_context",
    "clear_context",
]
