"""
Idempotency records for reward-earning rules

Each rule persists a small record distinct from the balance row so that
re-running the same event never credits twice.
"""

from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, Date, DateTime, UniqueConstraint, Index
)
import enum

from .base import Base, TimestampedModel, UUIDModel, SerializableModel
from .reward import enum_column


class DailyCheckin(Base, UUIDModel, TimestampedModel):
    """Daily check-in for user X on date Y"""

    __tablename__ = "daily_checkins"

    user_id = Column(String(64), nullable=False)
    checkin_date = Column(Date, nullable=False)
    amount = Column(BigInteger, nullable=False)
    streak_days = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("user_id", "checkin_date", name="uq_daily_checkin_user_date"),
    )


class GamePlay(Base, UUIDModel, TimestampedModel):
    """First play of a game by a user; backs the new-game bonus"""

    __tablename__ = "user_game_plays"

    user_id = Column(String(64), nullable=False)
    game_id = Column(String(64), nullable=False)
    new_game_reward_amount = Column(BigInteger, nullable=False, default=0)
    total_sessions = Column(Integer, nullable=False, default=0)
    total_seconds = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "game_id", name="uq_game_play_user_game"),
    )


class DailyPlayReward(Base, UUIDModel, TimestampedModel):
    """Per-user play reward totals for one UTC day"""

    __tablename__ = "daily_play_rewards"

    user_id = Column(String(64), nullable=False)
    reward_date = Column(Date, nullable=False)
    daily_cap = Column(BigInteger, nullable=False)
    new_game_count = Column(Integer, nullable=False, default=0)
    new_game_rewards_earned = Column(BigInteger, nullable=False, default=0)
    time_rewards_earned = Column(BigInteger, nullable=False, default=0)
    total_play_minutes = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "reward_date", name="uq_daily_play_user_date"),
    )

    @property
    def earned(self) -> int:
        return (self.new_game_rewards_earned or 0) + (self.time_rewards_earned or 0)

    @property
    def remaining_cap(self) -> int:
        return max(0, self.daily_cap - self.earned)


class CreatorDailyEarning(Base, UUIDModel, TimestampedModel):
    """Creator royalty totals for one UTC day"""

    __tablename__ = "creator_daily_earnings"

    creator_id = Column(String(64), nullable=False)
    earning_date = Column(Date, nullable=False)
    amount_earned = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("creator_id", "earning_date", name="uq_creator_daily_earning"),
    )


class GameStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UploadedGame(Base, TimestampedModel, SerializableModel):
    """Creator-uploaded game; approval and play counts drive creator rewards"""

    __tablename__ = "uploaded_games"

    id = Column(String(64), primary_key=True)
    creator_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False, default="")
    category = Column(String(50), nullable=False, default="default")
    status = enum_column(GameStatus, nullable=False, default=GameStatus.PENDING)
    total_plays = Column(Integer, nullable=False, default=0)

    upload_reward_paid = Column(Boolean, nullable=False, default=False)
    upload_reward_date = Column(Date, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_uploaded_games_creator_reward_date", "creator_id", "upload_reward_date"),
    )


class GameMilestone(Base, UUIDModel, TimestampedModel):
    """Play-count milestone for one uploaded game, claimable exactly once"""

    __tablename__ = "game_milestones"

    game_id = Column(String(64), nullable=False)
    creator_id = Column(String(64), nullable=False)
    milestone = Column(Integer, nullable=False)
    reward_amount = Column(BigInteger, nullable=False)
    claimed = Column(Boolean, nullable=False, default=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("game_id", "milestone", name="uq_game_milestone"),
    )


class PeriodType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class ComboChallenge(Base, UUIDModel, TimestampedModel, SerializableModel):
    """Combo target with a prize, scoped to a daily or weekly period"""

    __tablename__ = "combo_challenges"

    title = Column(String(200), nullable=False)
    target_combo = Column(Integer, nullable=False)
    prize_amount = Column(BigInteger, nullable=False)
    period_type = enum_column(PeriodType, nullable=False, default=PeriodType.DAILY)
    is_active = Column(Boolean, nullable=False, default=True)


class ComboPrize(Base, UUIDModel, TimestampedModel, SerializableModel):
    """Prize won by a user in one period; at most one per (user, period)"""

    __tablename__ = "combo_period_winners"

    user_id = Column(String(64), nullable=False)
    challenge_id = Column(String(64), nullable=False)
    period_type = enum_column(PeriodType, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    highest_combo = Column(Integer, nullable=False)
    prize_amount = Column(BigInteger, nullable=False)
    claimed = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "period_type", "period_start", name="uq_combo_prize_user_period"),
    )
