"""
ZK Proof Module
===============

Proof models and the client for the external proof server.

Usage:
    from proofpay.zk import CircuitType, ProofGenerationClient, PublicInputs

    async with ProofGenerationClient() as prover:
        proof = await prover.generate(
            CircuitType.VERIFY_INCOME,
            witness,
            PublicInputs(threshold=50000),
        )

Version: 0.1.0
"""

from proofpay.zk.models import (
    CircuitType,
    ProofStatusView,
    ProofValidation,
    PublicInputs,
    PublicOutputs,
    SubmissionResult,
    Witness,
    ZKProof,
)
from proofpay.zk.prover import ProofGenerationClient


__all__ = [
    # Client
    "ProofGenerationClient",
    # Models
    "CircuitType",
    "Witness",
    "PublicInputs",
    "PublicOutputs",
    "ZKProof",
    "SubmissionResult",
    "ProofStatusView",
    "ProofValidation",
]
