"""
Reward schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
import uuid

from camly.models import PeriodType, RewardType


class AccountResponse(BaseModel):
    """Reward balances of one user"""
    user_id: str
    pending_amount: int
    claimed_amount: int
    total_earned: int
    wallet_balance: int
    daily_claimed_amount: int
    daily_remaining: int
    last_claim_date: Optional[date] = None
    last_checkin_date: Optional[date] = None
    streak_days: int
    wallet_address: Optional[str] = None
    referral_code: Optional[str] = None


class TransactionResponse(BaseModel):
    """Ledger entry"""
    id: uuid.UUID
    amount: int
    reward_type: RewardType
    description: str
    transaction_hash: Optional[str] = None
    claimed_to_wallet: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    limit: int
    offset: int


class CheckinResponse(BaseModel):
    success: bool
    amount: int
    streak_days: int
    new_pending: int
    total_earned: int
    referral_completed: bool


class PlaySessionRequest(BaseModel):
    """Finished play session"""
    game_id: str = Field(..., min_length=1, max_length=64)
    duration_seconds: int = Field(..., ge=0, le=24 * 60 * 60)
    category: Optional[str] = Field(None, max_length=50)


class PlaySessionResponse(BaseModel):
    success: bool
    amount: int
    capped: bool
    daily_cap: int
    remaining_cap: int
    new_pending: int


class FirstPlayRequest(BaseModel):
    game_id: str = Field(..., min_length=1, max_length=64)


class FirstPlayResponse(BaseModel):
    success: bool
    amount: int
    capped: bool
    remaining_cap: int
    new_pending: int
    creator_bonus: int


class GameUploadRequest(BaseModel):
    """Uploaded game awaiting moderation"""
    game_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field("", max_length=200)
    category: str = Field("default", max_length=50)


class MilestoneClaimRequest(BaseModel):
    game_id: str = Field(..., min_length=1, max_length=64)
    milestone: int = Field(..., gt=0)


class MilestoneClaimResponse(BaseModel):
    success: bool
    milestone: int
    amount: int
    new_pending: int


class ComboRequest(BaseModel):
    challenge_id: uuid.UUID
    combo: int = Field(..., ge=0)


class ComboResponse(BaseModel):
    success: bool
    awarded: bool
    amount: int
    highest_combo: int
    period_start: date
    new_pending: int


class ComboChallengeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    target_combo: int = Field(..., gt=0)
    prize_amount: int = Field(..., gt=0)
    period_type: PeriodType = PeriodType.DAILY


class ReferralRegisterRequest(BaseModel):
    referral_code: str = Field(..., min_length=4, max_length=20)


class ReferralStatsResponse(BaseModel):
    referral_code: Optional[str]
    pending: int
    completed: int
    claimed_tiers: List[str]


class ClaimedTier(BaseModel):
    tier_id: str
    amount: int


class ReferralTierClaimResponse(BaseModel):
    success: bool
    completed_referrals: int
    claimed: List[ClaimedTier]
    amount: int
    new_pending: int
