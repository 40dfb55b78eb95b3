"""
Accrual engine

Turns platform events into ledger credits. Every rule runs as one unit of
work: lock the user's account row, check the rule's idempotency record,
write the record, then the credit, commit. The unique constraint on each
record backstops the check, so a duplicate that slips past it surfaces as
an IntegrityError when the record is flushed and is reported as the rule's
"already granted" error.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
import logging
import uuid

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import (
    AlreadyClaimedTodayException,
    DailyLimitReachedException,
    DuplicateReferralException,
    DuplicateRewardException,
    ForbiddenException,
    InvalidEventDataException,
    InvalidReferralCodeException,
    IpNotEligibleException,
    MilestoneAlreadyClaimedException,
    MilestoneNotReachedException,
    NotFoundException,
    SelfReferralException,
)
from camly.models import (
    UserReward,
    RewardType,
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
    Referral,
    ReferralStatus,
    ClaimedReferralTier,
)
from camly.services.eligibility import EligibilityService
from camly.services.ledger import LedgerService
from camly.utils.helpers import period_bounds, utc_now, utc_today

logger = logging.getLogger(__name__)


class AccrualService:
    """Reward-earning rules"""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = LedgerService(db, self.settings)
        self.eligibility = EligibilityService(db, self.settings)

    async def _commit(self, on_duplicate: Callable[[], Exception]) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise on_duplicate()

    async def _record(self, record, on_duplicate: Callable[[], Exception]) -> None:
        """Write an idempotency record before the credit that depends on it"""
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise on_duplicate()

    async def _check_first_grant(self, account: UserReward, ip_address: Optional[str]) -> None:
        """IP gate consulted before an account's first reward"""
        if not ip_address or account.total_earned > 0 or account.reset_count > 0:
            return

        result = await self.eligibility.check_ip_eligibility(ip_address, account.user_id)
        if not result["is_eligible"]:
            raise IpNotEligibleException(result["reason"])
        await self.eligibility.register_ip(ip_address, account.user_id)

    async def _daily_play_record(self, user_id: str, age: Optional[int]) -> DailyPlayReward:
        today = utc_today()
        result = await self.db.execute(
            select(DailyPlayReward).where(
                DailyPlayReward.user_id == user_id,
                DailyPlayReward.reward_date == today,
            )
        )
        record = result.scalar_one_or_none()
        if record:
            return record

        record = DailyPlayReward(
            user_id=user_id,
            reward_date=today,
            daily_cap=self.settings.daily_play_cap(age),
            new_game_count=0,
            new_game_rewards_earned=0,
            time_rewards_earned=0,
            total_play_minutes=0,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    # Daily check-in

    async def daily_checkin(self, user_id: str, ip_address: Optional[str] = None) -> Dict[str, Any]:
        """
        Grant the once-per-UTC-day check-in reward

        The first check-in is also the referral qualifying action and
        completes a pending referral for this user.
        """
        result = await self.db.execute(
            select(Referral.referrer_id).where(
                Referral.referred_id == user_id,
                Referral.status == ReferralStatus.PENDING,
            )
        )
        accounts = await self.ledger.lock_accounts([user_id, result.scalar_one_or_none()])
        account = accounts[user_id]
        today = utc_today()

        if account.last_checkin_date == today:
            raise AlreadyClaimedTodayException("Daily check-in already claimed today")

        await self._check_first_grant(account, ip_address)

        if account.last_checkin_date == today - timedelta(days=1):
            streak = (account.streak_days or 0) + 1
        else:
            streak = 1

        amount = self.settings.DAILY_CHECKIN_REWARD
        await self._record(
            DailyCheckin(user_id=user_id, checkin_date=today, amount=amount, streak_days=streak),
            lambda: AlreadyClaimedTodayException("Daily check-in already claimed today"),
        )
        account.last_checkin_date = today
        account.streak_days = streak

        await self.ledger.apply_credit(
            user_id,
            amount,
            RewardType.DAILY_CHECKIN,
            f"Daily check-in (day {streak})",
            account=account,
        )
        referrer_id = await self._complete_referral(user_id, accounts)

        await self._commit(lambda: AlreadyClaimedTodayException("Daily check-in already claimed today"))

        logger.info(f"Daily check-in for {user_id}: {amount} CAMLY, streak {streak}")
        return {
            "success": True,
            "amount": amount,
            "streak_days": streak,
            "new_pending": account.pending_amount,
            "total_earned": account.total_earned,
            "referral_completed": referrer_id is not None,
        }

    # Play rewards

    async def record_play_session(
        self,
        user_id: str,
        game_id: str,
        duration_seconds: int,
        category: Optional[str] = None,
        age: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Credit play time, truncated to the user's daily age-group cap

        Sessions shorter than MIN_SESSION_SECONDS are recorded but earn
        nothing. Partial minutes are dropped.
        """
        if not game_id:
            raise InvalidEventDataException("game_id is required")
        if duration_seconds is None or duration_seconds < 0:
            raise InvalidEventDataException("Session duration must be a non-negative number of seconds")

        account = await self.ledger.lock_account(user_id)
        await self._check_first_grant(account, ip_address)

        day = await self._daily_play_record(user_id, age)
        minutes = duration_seconds // 60

        if duration_seconds < self.settings.MIN_SESSION_SECONDS:
            earned = 0
        else:
            earned = int(minutes * self.settings.PLAY_REWARD_PER_MINUTE * self.settings.category_multiplier(category))

        awarded = min(earned, day.remaining_cap)
        capped = awarded < earned

        day.time_rewards_earned += awarded
        day.total_play_minutes += minutes

        result = await self.db.execute(
            select(GamePlay).where(GamePlay.user_id == user_id, GamePlay.game_id == game_id)
        )
        play = result.scalar_one_or_none()
        if play:
            play.total_sessions += 1
            play.total_seconds += duration_seconds

        if awarded > 0:
            await self.ledger.apply_credit(
                user_id,
                awarded,
                RewardType.GAME_PLAY,
                f"Played {game_id} for {minutes} min",
                account=account,
            )

        await self._commit(lambda: DuplicateRewardException("Play session was recorded concurrently, retry"))

        if capped:
            logger.info(f"Play reward for {user_id} truncated from {earned} to {awarded} by daily cap")
        return {
            "success": True,
            "amount": awarded,
            "capped": capped,
            "daily_cap": day.daily_cap,
            "remaining_cap": day.remaining_cap,
            "new_pending": account.pending_amount,
        }

    async def claim_first_play(
        self,
        user_id: str,
        game_id: str,
        age: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Grant the new-game bonus exactly once per (user, game)"""
        if not game_id:
            raise InvalidEventDataException("game_id is required")

        game = await self.db.get(UploadedGame, game_id)
        accounts = await self.ledger.lock_accounts([user_id, game.creator_id if game else None])
        account = accounts[user_id]

        result = await self.db.execute(
            select(GamePlay.id).where(GamePlay.user_id == user_id, GamePlay.game_id == game_id)
        )
        if result.first():
            raise DuplicateRewardException("First-play bonus already granted for this game")

        await self._check_first_grant(account, ip_address)

        day = await self._daily_play_record(user_id, age)
        bonus = min(self.settings.NEW_GAME_BONUS, day.remaining_cap)
        capped = bonus < self.settings.NEW_GAME_BONUS

        await self._record(
            GamePlay(
                user_id=user_id,
                game_id=game_id,
                new_game_reward_amount=bonus,
                total_sessions=0,
                total_seconds=0,
            ),
            lambda: DuplicateRewardException("First-play bonus already granted for this game"),
        )
        day.new_game_count += 1
        day.new_game_rewards_earned += bonus

        if bonus > 0:
            await self.ledger.apply_credit(
                user_id,
                bonus,
                RewardType.FIRST_PLAY_BONUS,
                f"First play of {game_id}",
                account=account,
            )

        creator_bonus = await self._reward_creator_play(game_id, user_id, accounts)

        await self._commit(lambda: DuplicateRewardException("First-play bonus already granted for this game"))

        return {
            "success": True,
            "amount": bonus,
            "capped": capped,
            "remaining_cap": day.remaining_cap,
            "new_pending": account.pending_amount,
            "creator_bonus": creator_bonus,
        }

    async def _reward_creator_play(self, game_id: str, player_id: str, accounts: Dict[str, UserReward]) -> int:
        """
        Pay the uploader for a new player, bounded by the creator daily cap

        The creator's account is already locked in accounts; the game row is
        locked after it.
        """
        result = await self.db.execute(
            select(UploadedGame)
            .where(UploadedGame.id == game_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        game = result.scalar_one_or_none()
        if not game or game.status != GameStatus.APPROVED:
            return 0

        game.total_plays += 1
        if game.creator_id == player_id:
            return 0

        creator = accounts.get(game.creator_id)
        if creator is None:
            return 0
        today = utc_today()
        result = await self.db.execute(
            select(CreatorDailyEarning).where(
                CreatorDailyEarning.creator_id == game.creator_id,
                CreatorDailyEarning.earning_date == today,
            )
        )
        earning = result.scalar_one_or_none()
        if not earning:
            earning = CreatorDailyEarning(creator_id=game.creator_id, earning_date=today, amount_earned=0)
            self.db.add(earning)

        remaining = max(0, self.settings.CREATOR_DAILY_CAP - earning.amount_earned)
        bonus = min(self.settings.CREATOR_FIRST_PLAY_BONUS, remaining)
        if bonus <= 0:
            return 0

        earning.amount_earned += bonus
        await self.ledger.apply_credit(
            game.creator_id,
            bonus,
            RewardType.CREATOR_FIRST_PLAY,
            f"New player on {game.title or game.id}",
            account=creator,
        )
        return bonus

    # Uploads and milestones

    async def register_game(
        self,
        game_id: str,
        creator_id: str,
        title: str = "",
        category: str = "default",
    ) -> UploadedGame:
        """Record an uploaded game awaiting approval"""
        if not game_id or not creator_id:
            raise InvalidEventDataException("game_id and creator_id are required")
        if await self.db.get(UploadedGame, game_id):
            raise DuplicateRewardException(f"Game {game_id} is already registered")

        game = UploadedGame(
            id=game_id,
            creator_id=creator_id,
            title=title,
            category=category,
            status=GameStatus.PENDING,
            total_plays=0,
            upload_reward_paid=False,
        )
        self.db.add(game)
        await self._commit(lambda: DuplicateRewardException(f"Game {game_id} is already registered"))
        return game

    async def _get_game(self, game_id: str, lock: bool = False) -> UploadedGame:
        stmt = select(UploadedGame).where(UploadedGame.id == game_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        game = result.scalar_one_or_none()
        if not game:
            raise NotFoundException("Game not found")
        return game

    async def approve_upload(self, game_id: str) -> Dict[str, Any]:
        """
        Approve a pending upload and pay the upload reward once

        At most MAX_DAILY_UPLOAD_REWARDS approvals pay out per creator per
        UTC day; beyond that the approval is refused with nothing changed.
        """
        creator_id = (await self._get_game(game_id)).creator_id
        account = await self.ledger.lock_account(creator_id)
        game = await self._get_game(game_id, lock=True)

        if game.upload_reward_paid:
            raise DuplicateRewardException("Upload reward already paid for this game")
        if game.status != GameStatus.PENDING:
            raise InvalidEventDataException(f"Cannot approve a game in status {game.status.value}")

        today = utc_today()
        result = await self.db.execute(
            select(func.count(UploadedGame.id)).where(
                UploadedGame.creator_id == creator_id,
                UploadedGame.upload_reward_paid.is_(True),
                UploadedGame.upload_reward_date == today,
            )
        )
        if result.scalar_one() >= self.settings.MAX_DAILY_UPLOAD_REWARDS:
            raise DailyLimitReachedException(
                f"Upload reward limit of {self.settings.MAX_DAILY_UPLOAD_REWARDS} per day reached"
            )

        amount = self.settings.UPLOAD_REWARD
        game.status = GameStatus.APPROVED
        game.approved_at = utc_now()
        game.upload_reward_paid = True
        game.upload_reward_date = today

        await self.ledger.apply_credit(
            creator_id,
            amount,
            RewardType.UPLOAD_REWARD,
            f"Game approved: {game.title or game.id}",
            account=account,
        )
        await self._commit(lambda: DuplicateRewardException("Upload reward already paid for this game"))

        logger.info(f"Upload reward of {amount} CAMLY paid to {creator_id} for {game_id}")
        return {
            "success": True,
            "game_id": game_id,
            "creator_id": creator_id,
            "amount": amount,
            "new_pending": account.pending_amount,
        }

    async def reject_upload(self, game_id: str) -> Dict[str, Any]:
        game = await self._get_game(game_id, lock=True)
        if game.status != GameStatus.PENDING:
            raise InvalidEventDataException(f"Cannot reject a game in status {game.status.value}")
        game.status = GameStatus.REJECTED
        await self.db.commit()
        return {"success": True, "game_id": game_id, "status": game.status.value}

    async def claim_milestone(self, creator_id: str, game_id: str, milestone: int) -> Dict[str, Any]:
        """Pay a play-count milestone of an uploaded game exactly once"""
        reward = self.settings.CREATOR_MILESTONES.get(milestone)
        if reward is None:
            raise InvalidEventDataException(f"Unknown milestone {milestone}")

        account = await self.ledger.lock_account(creator_id)
        game = await self._get_game(game_id)
        if game.creator_id != creator_id:
            raise ForbiddenException("Only the creator can claim game milestones")
        if game.total_plays < milestone:
            raise MilestoneNotReachedException(milestone, game.total_plays)

        result = await self.db.execute(
            select(GameMilestone).where(
                GameMilestone.game_id == game_id,
                GameMilestone.milestone == milestone,
            )
        )
        record = result.scalar_one_or_none()
        if record and record.claimed:
            raise MilestoneAlreadyClaimedException(milestone)

        if record:
            record.claimed = True
            record.claimed_at = utc_now()
        else:
            await self._record(
                GameMilestone(
                    game_id=game_id,
                    creator_id=creator_id,
                    milestone=milestone,
                    reward_amount=reward,
                    claimed=True,
                    claimed_at=utc_now(),
                ),
                lambda: MilestoneAlreadyClaimedException(milestone),
            )

        await self.ledger.apply_credit(
            creator_id,
            reward,
            RewardType.CREATOR_MILESTONE,
            f"{milestone} plays on {game.title or game.id}",
            account=account,
        )
        await self._commit(lambda: MilestoneAlreadyClaimedException(milestone))

        return {
            "success": True,
            "milestone": milestone,
            "amount": reward,
            "new_pending": account.pending_amount,
        }

    # Referrals

    async def register_referral(self, referred_id: str, referral_code: str) -> Dict[str, Any]:
        """Attach a new user to the referrer owning the code"""
        code = (referral_code or "").strip().upper()
        if not code:
            raise InvalidReferralCodeException()

        await self.ledger.lock_account(referred_id)

        result = await self.db.execute(
            select(UserReward.user_id).where(UserReward.referral_code == code)
        )
        referrer_id = result.scalar_one_or_none()
        if not referrer_id:
            raise InvalidReferralCodeException()
        if referrer_id == referred_id:
            raise SelfReferralException()

        result = await self.db.execute(
            select(Referral.id).where(Referral.referred_id == referred_id)
        )
        if result.first():
            raise DuplicateReferralException()

        await self._record(
            Referral(
                referrer_id=referrer_id,
                referred_id=referred_id,
                referral_code=code,
                status=ReferralStatus.PENDING,
                reward_amount=0,
            ),
            DuplicateReferralException,
        )
        await self._commit(DuplicateReferralException)

        logger.info(f"Referral registered: {referrer_id} -> {referred_id}")
        return {"success": True, "referrer_id": referrer_id, "status": ReferralStatus.PENDING.value}

    async def _complete_referral(self, referred_id: str, accounts: Dict[str, UserReward]) -> Optional[str]:
        """Complete a pending referral and pay the referrer; None if there is none"""
        result = await self.db.execute(
            select(Referral).where(
                Referral.referred_id == referred_id,
                Referral.status == ReferralStatus.PENDING,
            ).with_for_update()
        )
        referral = result.scalar_one_or_none()
        if not referral:
            return None

        amount = self.settings.REFERRAL_REWARD
        referral.status = ReferralStatus.COMPLETED
        referral.reward_amount = amount
        referral.completed_at = utc_now()

        # Referral registered between the lookup and the account locks
        referrer = accounts.get(referral.referrer_id) or await self.ledger.lock_account(referral.referrer_id)
        await self.ledger.apply_credit(
            referral.referrer_id,
            amount,
            RewardType.REFERRAL_BONUS,
            "Referred friend completed their first check-in",
            account=referrer,
        )
        return referral.referrer_id

    async def claim_referral_tiers(self, user_id: str) -> Dict[str, Any]:
        """Pay every reached tier the user has not been paid for yet"""
        account = await self.ledger.lock_account(user_id)

        result = await self.db.execute(
            select(func.count(Referral.id)).where(
                Referral.referrer_id == user_id,
                Referral.status == ReferralStatus.COMPLETED,
            )
        )
        completed = result.scalar_one()

        result = await self.db.execute(
            select(ClaimedReferralTier.tier_id).where(ClaimedReferralTier.user_id == user_id)
        )
        already = {row[0] for row in result.all()}

        claimed: List[Dict[str, Any]] = []
        tiers = sorted(self.settings.REFERRAL_TIERS.items(), key=lambda item: item[1][0])
        for tier_id, (required, reward) in tiers:
            if completed < required or tier_id in already:
                continue
            await self._record(
                ClaimedReferralTier(user_id=user_id, tier_id=tier_id, reward_amount=reward),
                lambda: DuplicateRewardException("Referral tier already claimed"),
            )
            await self.ledger.apply_credit(
                user_id,
                reward,
                RewardType.REFERRAL_TIER,
                f"Referral tier {tier_id} ({required} friends)",
                account=account,
            )
            claimed.append({"tier_id": tier_id, "amount": reward})

        if claimed:
            await self._commit(lambda: DuplicateRewardException("Referral tier already claimed"))

        return {
            "success": True,
            "completed_referrals": completed,
            "claimed": claimed,
            "amount": sum(t["amount"] for t in claimed),
            "new_pending": account.pending_amount,
        }

    async def get_referral_stats(self, user_id: str) -> Dict[str, Any]:
        account = await self.ledger.get_or_create_account(user_id)
        await self.db.commit()

        result = await self.db.execute(
            select(Referral.status, func.count(Referral.id))
            .where(Referral.referrer_id == user_id)
            .group_by(Referral.status)
        )
        counts = {status: count for status, count in result.all()}

        result = await self.db.execute(
            select(ClaimedReferralTier.tier_id).where(ClaimedReferralTier.user_id == user_id)
        )
        claimed_tiers = sorted(row[0] for row in result.all())

        return {
            "referral_code": account.referral_code,
            "pending": counts.get(ReferralStatus.PENDING, 0),
            "completed": counts.get(ReferralStatus.COMPLETED, 0),
            "claimed_tiers": claimed_tiers,
        }

    # Combo challenges

    async def create_combo_challenge(
        self,
        title: str,
        target_combo: int,
        prize_amount: int,
        period_type: PeriodType = PeriodType.DAILY,
    ) -> ComboChallenge:
        if target_combo <= 0 or prize_amount <= 0:
            raise InvalidEventDataException("Target combo and prize must be positive")

        challenge = ComboChallenge(
            title=title,
            target_combo=target_combo,
            prize_amount=prize_amount,
            period_type=period_type,
            is_active=True,
        )
        self.db.add(challenge)
        await self.db.commit()
        return challenge

    async def record_combo(self, user_id: str, challenge_id: str, combo: int) -> Dict[str, Any]:
        """
        Record a combo against a challenge

        Reaching the target pays the prize once per (user, period); later
        combos in the same period only raise the recorded high score.
        """
        if combo is None or combo < 0:
            raise InvalidEventDataException("Combo must be a non-negative integer")

        try:
            challenge = await self.db.get(ComboChallenge, uuid.UUID(str(challenge_id)))
        except ValueError:
            challenge = None
        if not challenge or not challenge.is_active:
            raise NotFoundException("Combo challenge not found")

        account = await self.ledger.lock_account(user_id)
        period_start, period_end = period_bounds(challenge.period_type.value, utc_today())

        result = await self.db.execute(
            select(ComboPrize).where(
                ComboPrize.user_id == user_id,
                ComboPrize.period_type == challenge.period_type,
                ComboPrize.period_start == period_start,
            )
        )
        prize = result.scalar_one_or_none()

        if prize:
            if combo > prize.highest_combo:
                prize.highest_combo = combo
                await self.db.commit()
            return {
                "success": True,
                "awarded": False,
                "amount": 0,
                "highest_combo": prize.highest_combo,
                "period_start": period_start.isoformat(),
                "new_pending": account.pending_amount,
            }

        if combo < challenge.target_combo:
            await self.db.commit()
            return {
                "success": True,
                "awarded": False,
                "amount": 0,
                "highest_combo": combo,
                "period_start": period_start.isoformat(),
                "new_pending": account.pending_amount,
            }

        await self._record(
            ComboPrize(
                user_id=user_id,
                challenge_id=str(challenge.id),
                period_type=challenge.period_type,
                period_start=period_start,
                period_end=period_end,
                highest_combo=combo,
                prize_amount=challenge.prize_amount,
                claimed=True,
            ),
            lambda: DuplicateRewardException("Combo prize already awarded for this period"),
        )
        await self.ledger.apply_credit(
            user_id,
            challenge.prize_amount,
            RewardType.COMBO_PRIZE,
            f"{challenge.title}: combo x{combo}",
            account=account,
        )
        await self._commit(lambda: DuplicateRewardException("Combo prize already awarded for this period"))

        return {
            "success": True,
            "awarded": True,
            "amount": challenge.prize_amount,
            "highest_combo": combo,
            "period_start": period_start.isoformat(),
            "new_pending": account.pending_amount,
        }
