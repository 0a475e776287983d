"""
Payments Module
===============

Payment provider abstraction and payout wallets used by settlement.

Usage:
    from proofpay.payments import get_payment_provider

    provider = get_payment_provider()
    transaction_id = await provider.issue(destination, Decimal("150.00"))
"""

from proofpay.payments.mock import MockPaymentProvider
from proofpay.payments.provider import (
    HttpPaymentProvider,
    PaymentProvider,
    get_payment_provider,
    reset_payment_provider,
    set_payment_provider,
)
from proofpay.payments.wallets import WalletRegistry

__all__ = [
    "PaymentProvider",
    "get_payment_provider",
    "set_payment_provider",
    "reset_payment_provider",
    "HttpPaymentProvider",
    "MockPaymentProvider",
    "WalletRegistry",
]
