"""
Pipeline Module
===============

Proof lifecycle from submission to settlement.

Usage:
    from proofpay.pipeline import build_pipeline

    service = build_pipeline()
    service.poller.start()

    result = await service.submit_proof(proof, wallet_signature, user_id)
    status = await service.get_proof_status(result.proof_id)
"""

from proofpay.pipeline.gateway import SubmissionGateway, new_proof_id
from proofpay.pipeline.poller import ConfirmationPoller, PollOutcome, PollSummary
from proofpay.pipeline.replay import ReplayGuard
from proofpay.pipeline.service import ProofService, build_pipeline
from proofpay.pipeline.settlement import (
    NO_FUNDING_ACCOUNT_MESSAGE,
    NO_WALLET_MESSAGE,
    STALE_PENDING_MESSAGE,
    SettlementTrigger,
    calculate_payment_amount,
)


__all__ = [
    # Facade
    "ProofService",
    "build_pipeline",
    # Components
    "ReplayGuard",
    "SubmissionGateway",
    "ConfirmationPoller",
    "SettlementTrigger",
    # Helpers
    "PollOutcome",
    "PollSummary",
    "calculate_payment_amount",
    "new_proof_id",
    "NO_WALLET_MESSAGE",
    "NO_FUNDING_ACCOUNT_MESSAGE",
    "STALE_PENDING_MESSAGE",
]
