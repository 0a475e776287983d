"""
Proof Submission Model
======================

SQLAlchemy ORM model for proofs relayed to the ledger.

Version: 0.1.0
"""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)

from proofpay.database.postgres import Base


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SubmissionStatus(str, Enum):
    """
    Ledger confirmation state of a submission.

    pending -> confirmed | failed, never reversed.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING


class ProofSubmission(Base):
    """
    A proof relayed to the ledger.

    Unique on both `proof_id` and `nullifier`. Rows are never deleted; they
    back status queries, third-party verification and expiry checks.
    """

    __tablename__ = "proof_submissions"
    __table_args__ = (
        Index("ix_proof_submissions_user", "user_id"),
        Index("ix_proof_submissions_status_submitted", "status", "submitted_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    proof_id = Column(String(255), unique=True, nullable=False)
    nullifier = Column(String(255), unique=True, nullable=False)
    user_id = Column(String(255), nullable=False)

    # Filled inside the claiming transaction once the ledger accepted the tx
    tx_hash = Column(String(255))

    threshold = Column(Integer, nullable=False)
    circuit = Column(String(64))
    status = Column(
        SQLEnum(
            SubmissionStatus,
            name="submission_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=SubmissionStatus.PENDING,
    )

    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    confirmed_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Ledger log for failed transactions
    failure_reason = Column(Text)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the proof's public expiry has passed."""
        now = now or utcnow()
        return as_utc(self.expires_at) <= now

    def __repr__(self) -> str:
        return (
            f"<ProofSubmission proof_id={self.proof_id!r} "
            f"status={self.status!r} tx_hash={self.tx_hash!r}>"
        )
