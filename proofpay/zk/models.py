"""
ZK Proof Data Models
====================

Pydantic models for proofs moving between the prover, the ledger and the
submission pipeline.

Version: 0.1.0
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CircuitType(str, Enum):
    """Circuits exposed by the proof server."""

    VERIFY_INCOME = "verifyIncome"
    VERIFY_ASSETS = "verifyAssets"
    VERIFY_CREDITWORTHINESS = "verifyCreditworthiness"


class Witness(BaseModel):
    """
    Private witness data for proof generation.

    Never persisted and never logged.
    """

    model_config = ConfigDict(populate_by_name=True)

    income: float
    employment_months: int = Field(..., alias="employmentMonths")
    employer_hash: str = Field(..., alias="employerHash")
    assets: float
    liabilities: float
    credit_score: int = Field(..., alias="creditScore")
    ssn_verified: bool = Field(..., alias="ssnVerified")
    selfie_verified: bool = Field(..., alias="selfieVerified")
    document_verified: bool = Field(..., alias="documentVerified")
    timestamp: int


class PublicInputs(BaseModel):
    """Public inputs bound into the proof."""

    threshold: int = Field(..., ge=0, description="Claimed lower bound")


class PublicOutputs(BaseModel):
    """Public outputs returned by the prover."""

    model_config = ConfigDict(populate_by_name=True)

    nullifier: str = Field(..., min_length=1)
    timestamp: float
    expires_at: float = Field(..., alias="expiresAt", description="Unix seconds")

    @property
    def expires_at_datetime(self) -> datetime:
        """Expiry as an aware datetime."""
        return datetime.fromtimestamp(self.expires_at, UTC)


class ZKProof(BaseModel):
    """
    A generated proof ready for submission.

    `proof` is the base64 encoded proof blob; `public_inputs[0]` is the
    threshold the proof attests to.
    """

    model_config = ConfigDict(populate_by_name=True)

    proof: str = Field(..., min_length=1)
    public_inputs: list[str] = Field(default_factory=list, alias="publicInputs")
    public_outputs: PublicOutputs = Field(..., alias="publicOutputs")

    @property
    def nullifier(self) -> str:
        return self.public_outputs.nullifier

    @property
    def threshold(self) -> int | None:
        """
        Threshold from the first public input.

        None when absent, malformed, fractional or negative.
        """
        if not self.public_inputs:
            return None
        try:
            value = Decimal(self.public_inputs[0])
        except (ArithmeticError, ValueError):
            return None
        if not value.is_finite() or value != value.to_integral_value() or value < 0:
            return None
        return int(value)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the prover/ledger field names."""
        return self.model_dump(by_alias=True)


class SubmissionResult(BaseModel):
    """Result of relaying a proof to the ledger."""

    tx_hash: str
    proof_id: str
    status: str = "pending"


class ProofStatusView(BaseModel):
    """Client-facing view of a submission."""

    proof_id: str
    nullifier: str
    tx_hash: str | None
    threshold: int
    status: str
    submitted_at: datetime
    confirmed_at: datetime | None = None
    expires_at: datetime
    failure_reason: str | None = None


class ProofValidation(BaseModel):
    """Answer to a third-party verifier asking about a nullifier."""

    nullifier: str
    is_valid: bool
    status: str | None = None
    threshold: int | None = None
    expires_at: datetime | None = None
    is_expired: bool = False
    reason: str | None = None
