"""
ORM Models
==========

Persisted pipeline state:
- ProofSubmission: one row per proof relayed to the ledger
- PaymentRecord: one row per settled proof
- PayoutWallet: a user's issuance destination and funding-account link
"""

from proofpay.models.common import ErrorResponse, HealthResponse
from proofpay.models.payment import PaymentRecord, PaymentStatus, PayoutWallet
from proofpay.models.submission import ProofSubmission, SubmissionStatus, utcnow


__all__ = [
    "ProofSubmission",
    "SubmissionStatus",
    "PaymentRecord",
    "PaymentStatus",
    "PayoutWallet",
    "HealthResponse",
    "ErrorResponse",
    "utcnow",
]
