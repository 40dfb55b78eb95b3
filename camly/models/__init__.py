"""Models package initialization"""

from .base import Base
from .reward import UserReward, RewardTransaction, RewardType
from .claim import ClaimRecord, ClaimKind, ClaimStatus, IN_FLIGHT_STATUSES
from .donation import DonationRecord, DonationType
from .accrual import (
    DailyCheckin,
    GamePlay,
    DailyPlayReward,
    CreatorDailyEarning,
    UploadedGame,
    GameStatus,
    GameMilestone,
    ComboChallenge,
    ComboPrize,
    PeriodType,
)
from .referral import Referral, ReferralStatus, ClaimedReferralTier
from .eligibility import WalletBlacklist, IpBlacklist, IpRegistration
from .admin_log import AdminLog

__all__ = [
    "Base",
    "UserReward",
    "RewardTransaction",
    "RewardType",
    "ClaimRecord",
    "ClaimKind",
    "ClaimStatus",
    "IN_FLIGHT_STATUSES",
    "DonationRecord",
    "DonationType",
    "DailyCheckin",
    "GamePlay",
    "DailyPlayReward",
    "CreatorDailyEarning",
    "UploadedGame",
    "GameStatus",
    "GameMilestone",
    "ComboChallenge",
    "ComboPrize",
    "PeriodType",
    "Referral",
    "ReferralStatus",
    "ClaimedReferralTier",
    "WalletBlacklist",
    "IpBlacklist",
    "IpRegistration",
    "AdminLog",
]
