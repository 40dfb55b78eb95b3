"""
Reward ledger models: per-user balances and the append-only transaction log
"""

from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, Date, DateTime, Enum, Index, CheckConstraint
)
import enum

from .base import Base, TimestampedModel, UUIDModel, SerializableModel


class RewardType(str, enum.Enum):
    DAILY_CHECKIN = "daily_checkin"
    GAME_PLAY = "game_play"
    FIRST_PLAY_BONUS = "first_play_bonus"
    REFERRAL_BONUS = "referral_bonus"
    REFERRAL_TIER = "referral_tier"
    UPLOAD_REWARD = "upload_reward"
    CREATOR_FIRST_PLAY = "creator_first_play"
    CREATOR_MILESTONE = "creator_milestone"
    COMBO_PRIZE = "combo_prize"
    AIRDROP_CLAIM = "airdrop_claim"
    WALLET_WITHDRAWAL = "wallet_withdrawal"
    CHARITY_DONATION = "charity_donation"
    ADMIN_RESET = "admin_reset"

    @property
    def is_credit(self) -> bool:
        """Credits land in pending; everything else moves value out"""
        return self not in (
            RewardType.AIRDROP_CLAIM,
            RewardType.WALLET_WITHDRAWAL,
            RewardType.CHARITY_DONATION,
            RewardType.ADMIN_RESET,
        )

    @property
    def is_settlement(self) -> bool:
        return self in (RewardType.AIRDROP_CLAIM, RewardType.WALLET_WITHDRAWAL)


def enum_column(enum_cls, **kwargs):
    """String-backed enum column storing member values"""
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=40,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs
    )


class UserReward(Base, UUIDModel, TimestampedModel, SerializableModel):
    """One reward account per user, created lazily on first reward activity"""

    __tablename__ = "user_rewards"

    user_id = Column(String(64), unique=True, nullable=False, index=True)

    # Balances
    pending_amount = Column(BigInteger, nullable=False, default=0)
    claimed_amount = Column(BigInteger, nullable=False, default=0)
    total_earned = Column(BigInteger, nullable=False, default=0)
    wallet_balance = Column(BigInteger, nullable=False, default=0)

    # Daily claim window
    daily_claimed_amount = Column(BigInteger, nullable=False, default=0)
    last_claim_date = Column(Date, nullable=True)
    last_claim_at = Column(DateTime(timezone=True), nullable=True)

    # Check-in streak
    last_checkin_date = Column(Date, nullable=True)
    streak_days = Column(Integer, nullable=False, default=0)

    # Wallet binding
    wallet_address = Column(String(64), nullable=True, index=True)
    wallet_linked_at = Column(DateTime(timezone=True), nullable=True)

    # Referral
    referral_code = Column(String(20), unique=True, index=True)

    # Admin reset audit flag
    reset_count = Column(Integer, nullable=False, default=0)
    last_reset_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("pending_amount >= 0", name="check_non_negative_pending"),
        CheckConstraint("claimed_amount >= 0", name="check_non_negative_claimed"),
        CheckConstraint("wallet_balance >= 0", name="check_non_negative_wallet"),
        CheckConstraint("daily_claimed_amount >= 0", name="check_non_negative_daily"),
    )

    def daily_claimed_on(self, day) -> int:
        """Claimed amount inside the UTC day window, 0 once the day has rolled"""
        if self.last_claim_date != day:
            return 0
        return self.daily_claimed_amount or 0


class RewardTransaction(Base, UUIDModel, TimestampedModel, SerializableModel):
    """Append-only ledger entry; positive amounts credit, negative debit"""

    __tablename__ = "reward_transactions"

    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    reward_type = enum_column(RewardType, nullable=False)
    description = Column(String(500), nullable=False, default="")

    transaction_hash = Column(String(80), nullable=True, index=True)
    claimed_to_wallet = Column(Boolean, nullable=False, default=False)

    # Idempotency key for settlement entries
    settlement_key = Column(String(80), nullable=True, unique=True)

    __table_args__ = (
        Index("idx_reward_transactions_user_type", "user_id", "reward_type"),
    )
