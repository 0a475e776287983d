#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the ProofPay schema and optionally register payout wallets for
development users.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --wallet user-1=wallet-dest-1
    python scripts/init_database.py --wallet user-1=wallet-dest-1 --link

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from proofpay.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_schema() -> bool:
    """Create all tables."""
    from proofpay.database.postgres import PostgresClient

    try:
        await PostgresClient.create_schema()
        health = await PostgresClient.health_check()
        logger.info("database_initialized", **health)
        return health.get("status") == "healthy"
    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        return False


async def register_wallets(wallets: list[str], link: bool) -> bool:
    """Register `user=destination` pairs, optionally linking funding accounts."""
    from proofpay.payments import WalletRegistry

    registry = WalletRegistry()
    for entry in wallets:
        user_id, sep, destination = entry.partition("=")
        if not sep or not user_id or not destination:
            logger.error("invalid_wallet_argument", value=entry)
            return False
        await registry.register(user_id, destination)
        if link:
            await registry.link_funding_account(user_id)
    return True


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    from proofpay.database.postgres import PostgresClient

    try:
        if not await init_schema():
            return 1
        if args.wallet and not await register_wallets(args.wallet, args.link):
            return 1
    finally:
        await PostgresClient.close()

    logger.info("initialization_complete", wallets=len(args.wallet or []))
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize the ProofPay database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--wallet",
        action="append",
        metavar="USER=DESTINATION",
        help="Register a payout wallet (repeatable)",
    )
    parser.add_argument(
        "--link",
        action="store_true",
        help="Mark registered wallets' funding accounts as linked",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
