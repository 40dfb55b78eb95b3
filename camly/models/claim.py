"""
Claim records: the persisted state of every claim attempt
"""

from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Text, Index
import enum

from .base import Base, TimestampedModel, UUIDModel, SerializableModel
from .reward import enum_column


class ClaimKind(str, enum.Enum):
    INTERNAL = "internal"
    ONCHAIN = "onchain"


class ClaimStatus(str, enum.Enum):
    VALIDATING = "validating"
    REJECTED = "rejected"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SETTLED = "settled"


# Statuses whose amount is reserved against the pending balance
IN_FLIGHT_STATUSES = (ClaimStatus.SUBMITTING, ClaimStatus.CONFIRMED)


class ClaimRecord(Base, UUIDModel, TimestampedModel, SerializableModel):
    """One claim attempt moving value out of the pending balance"""

    __tablename__ = "claim_records"

    user_id = Column(String(64), nullable=False, index=True)
    kind = enum_column(ClaimKind, nullable=False)
    status = enum_column(ClaimStatus, nullable=False, default=ClaimStatus.VALIDATING)

    requested_amount = Column(BigInteger, nullable=False)
    amount = Column(BigInteger, nullable=False)
    wallet_address = Column(String(64), nullable=True)

    tx_hash = Column(String(80), nullable=True, unique=True)
    retryable = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_claim_records_user_status", "user_id", "status"),
    )

    @property
    def settlement_key(self) -> str:
        """Idempotency key for the ledger mutation"""
        return self.tx_hash or f"claim:{self.id}"
