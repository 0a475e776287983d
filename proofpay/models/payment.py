"""
Payment Models
==============

SQLAlchemy ORM models for reward settlement.

Version: 0.1.0
"""

import uuid
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)

from proofpay.database.postgres import Base
from proofpay.models.submission import utcnow


class PaymentStatus(str, Enum):
    """Settlement state. Only FAILED can be retried; COMPLETED is terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRecord(Base):
    """
    Reward payment for a confirmed proof.

    The unique constraint on `proof_id` is what makes settlement at-most-once
    across concurrent triggers and service instances.
    """

    __tablename__ = "payment_history"
    __table_args__ = (Index("ix_payment_history_user", "user_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False)
    proof_id = Column(
        String(255),
        ForeignKey("proof_submissions.proof_id"),
        unique=True,
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_id = Column(String(255))
    status = Column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    triggered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True))
    error_message = Column(Text)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord id={self.id} proof_id={self.proof_id!r} "
            f"status={self.status!r} amount={self.amount}>"
        )


class PayoutWallet(Base):
    """Where a user's rewards are issued, and whether funding is approved."""

    __tablename__ = "payout_wallets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), unique=True, nullable=False)
    destination = Column(String(255), nullable=False)
    funding_account_linked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
