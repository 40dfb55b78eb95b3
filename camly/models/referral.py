"""Referral system models"""

from sqlalchemy import Column, String, BigInteger, DateTime, UniqueConstraint

from .base import Base, TimestampedModel, UUIDModel, SerializableModel
from .reward import enum_column
import enum


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class Referral(Base, UUIDModel, TimestampedModel, SerializableModel):
    """Track referrals between users; one record per referred user"""

    __tablename__ = "referrals"

    referrer_id = Column(String(64), nullable=False, index=True)
    referred_id = Column(String(64), nullable=False, unique=True)
    referral_code = Column(String(20), nullable=False)
    status = enum_column(ReferralStatus, nullable=False, default=ReferralStatus.PENDING)
    reward_amount = Column(BigInteger, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True))


class ClaimedReferralTier(Base, UUIDModel, TimestampedModel):
    """Referral tier bonus paid to a user"""

    __tablename__ = "claimed_referral_tiers"

    user_id = Column(String(64), nullable=False)
    tier_id = Column(String(20), nullable=False)
    reward_amount = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "tier_id", name="uq_claimed_referral_tier"),
    )
