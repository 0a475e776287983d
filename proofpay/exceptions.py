"""
Pipeline Exceptions
===================

Error taxonomy for the proof lifecycle and settlement pipeline.

Every error carries a stable `code` and an `http_status` hint so the HTTP
layer can map it without knowing pipeline internals.

- Transient: ProverTimeout, retryable ProverUnavailable, LedgerUnavailable,
  PaymentProviderError
- Rejection: ProverRejected, DuplicateNullifier, InvalidProof,
  PaymentNotRetryable
- Inconsistent state: ProverProtocolError, LedgerError
- Not found: ProofNotFound, PaymentNotFound

Version: 0.1.0
"""

from typing import Any


class ProofPayError(Exception):
    """Base class for all pipeline errors."""

    code: str = "PROOFPAY_ERROR"
    http_status: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an error response body."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details or None,
        }


# =============================================================================
# Prover
# =============================================================================


class ProverError(ProofPayError):
    """Base class for proof server failures."""

    code = "PROVER_ERROR"
    http_status = 502
    retryable: bool = False


class ProverUnavailable(ProverError):
    """Proof server unreachable or answering with a server error."""

    code = "PROVER_UNAVAILABLE"
    http_status = 503

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retryable = retryable
        self.status_code = status_code


class ProverTimeout(ProverError):
    """Proof server did not answer in time."""

    code = "PROVER_TIMEOUT"
    http_status = 504
    retryable = True


class ProverRejected(ProverError):
    """Proof server refused the request (4xx)."""

    code = "PROVER_REJECTED"
    http_status = 422

    def __init__(self, message: str, reason_code: str, status_code: int) -> None:
        super().__init__(message, reason_code=reason_code, status_code=status_code)
        self.reason_code = reason_code
        self.status_code = status_code


class ProverProtocolError(ProverError):
    """Proof server answered with a structurally invalid response."""

    code = "PROVER_PROTOCOL_ERROR"


# =============================================================================
# Ledger
# =============================================================================


class LedgerUnavailable(ProofPayError):
    """Ledger node unreachable."""

    code = "LEDGER_UNAVAILABLE"
    http_status = 503


class LedgerError(ProofPayError):
    """Ledger node answered with an error or an unusable response."""

    code = "LEDGER_ERROR"
    http_status = 502


# =============================================================================
# Submission
# =============================================================================


class InvalidProof(ProofPayError):
    """Proof payload is missing required public fields or carries invalid ones."""

    code = "INVALID_PROOF"
    http_status = 400


class DuplicateNullifier(ProofPayError):
    """A proof with this nullifier was already submitted."""

    code = "NULLIFIER_ALREADY_USED"
    http_status = 409

    def __init__(self, nullifier: str) -> None:
        super().__init__("Proof with this nullifier already exists", nullifier=nullifier)
        self.nullifier = nullifier


class ProofNotFound(ProofPayError):
    """No submission with this proof id."""

    code = "PROOF_NOT_FOUND"
    http_status = 404


# =============================================================================
# Settlement
# =============================================================================


class PaymentProviderError(ProofPayError):
    """Payment provider failed to issue funds."""

    code = "PAYMENT_PROVIDER_ERROR"
    http_status = 502


class PaymentNotFound(ProofPayError):
    """No payment record with this id."""

    code = "PAYMENT_NOT_FOUND"
    http_status = 404


class PaymentNotRetryable(ProofPayError):
    """Only failed payments can be retried."""

    code = "PAYMENT_NOT_RETRYABLE"
    http_status = 409
