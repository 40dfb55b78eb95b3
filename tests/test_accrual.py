"""
Unit tests for AccrualService.

Coverage targets:
- Check-in once per UTC day with streak tracking
- Play-time rewards truncated by the age-group cap
- First-play bonus once per (user, game) plus creator royalties
- Upload approval limits and milestone payouts
- Referral registration guards and tier claims
- Combo prizes once per period
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, insert, select

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
    DailyCheckin,
    GameMilestone,
    GameStatus,
    PeriodType,
    Referral,
    ReferralStatus,
    RewardTransaction,
    UploadedGame,
)
from camly.services.accrual import AccrualService
from camly.services.ledger import LedgerService
from camly.utils.helpers import utc_today


async def _approved_game(service, game_id="game-1", creator_id="creator-1"):
    await service.register_game(game_id, creator_id, title="Space Kids", category="puzzle")
    await service.approve_upload(game_id)


def _record_row_locks(db, monkeypatch):
    """Collect (table, first bound value) for every SELECT ... FOR UPDATE"""
    locks = []
    execute = db.execute

    async def recording(statement, *args, **kwargs):
        if getattr(statement, "_for_update_arg", None) is not None:
            table = statement.get_final_froms()[0].name
            locks.append((table, next(iter(statement.compile().params.values()))))
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", recording)
    return locks


async def _transaction_count(db, user_id):
    result = await db.execute(
        select(func.count(RewardTransaction.id)).where(RewardTransaction.user_id == user_id)
    )
    return result.scalar_one()


class TestDailyCheckin:

    @pytest.mark.asyncio
    async def test_checkin_credits_reward(self, db, policy):
        service = AccrualService(db, policy)
        result = await service.daily_checkin("kid-1")

        assert result["amount"] == 100
        assert result["streak_days"] == 1
        assert result["new_pending"] == 100
        assert result["referral_completed"] is False

    @pytest.mark.asyncio
    async def test_second_checkin_same_day_fails(self, db, policy):
        service = AccrualService(db, policy)
        await service.daily_checkin("kid-1")

        with pytest.raises(AlreadyClaimedTodayException):
            await service.daily_checkin("kid-1")
        await db.rollback()

        account = await LedgerService(db, policy).get_account("kid-1")
        assert account.pending_amount == 100

    @pytest.mark.asyncio
    async def test_consecutive_days_extend_streak(self, db, policy):
        service = AccrualService(db, policy)
        account = await LedgerService(db, policy).get_or_create_account("kid-1")
        account.last_checkin_date = utc_today() - timedelta(days=1)
        account.streak_days = 4
        await db.commit()

        result = await service.daily_checkin("kid-1")
        assert result["streak_days"] == 5

    @pytest.mark.asyncio
    async def test_missed_day_resets_streak(self, db, policy):
        service = AccrualService(db, policy)
        account = await LedgerService(db, policy).get_or_create_account("kid-1")
        account.last_checkin_date = utc_today() - timedelta(days=3)
        account.streak_days = 9
        await db.commit()

        result = await service.daily_checkin("kid-1")
        assert result["streak_days"] == 1

    @pytest.mark.asyncio
    async def test_ip_gate_blocks_extra_accounts(self, db, policy):
        service = AccrualService(db, policy)
        await service.daily_checkin("kid-1", ip_address="10.0.0.1")
        await service.daily_checkin("kid-2", ip_address="10.0.0.1")

        with pytest.raises(IpNotEligibleException):
            await service.daily_checkin("kid-3", ip_address="10.0.0.1")
        await db.rollback()

        result = await service.daily_checkin("kid-3", ip_address="10.0.0.2")
        assert result["amount"] == 100


    @pytest.mark.asyncio
    async def test_checkin_row_written_concurrently(self, db, policy):
        """The unique check-in record rejects a duplicate the account check missed"""
        await LedgerService(db, policy).get_or_create_account("kid-1")
        db.add(DailyCheckin(user_id="kid-1", checkin_date=utc_today(), amount=100, streak_days=1))
        await db.commit()

        with pytest.raises(AlreadyClaimedTodayException):
            await AccrualService(db, policy).daily_checkin("kid-1")

        account = await LedgerService(db, policy).get_account("kid-1")
        assert account.pending_amount == 0
        assert account.total_earned == 0
        assert account.last_checkin_date is None
        assert await _transaction_count(db, "kid-1") == 0

    @pytest.mark.asyncio
    async def test_referrer_and_user_locked_in_id_order(self, db, policy, monkeypatch):
        service = AccrualService(db, policy)
        stats = await service.get_referral_stats("a-parent")
        await service.register_referral("kid-1", stats["referral_code"])

        locks = _record_row_locks(db, monkeypatch)
        result = await service.daily_checkin("kid-1")

        assert result["referral_completed"] is True
        assert locks == [
            ("user_rewards", "a-parent"),
            ("user_rewards", "kid-1"),
            ("referrals", "kid-1"),
        ]

class TestPlayRewards:

    @pytest.mark.asyncio
    async def test_play_time_truncated_by_daily_cap(self, db, policy):
        service = AccrualService(db, policy)

        first = await service.record_play_session("kid-1", "game-1", 600)
        assert first["amount"] == 1000
        assert first["capped"] is False

        second = await service.record_play_session("kid-1", "game-1", 600)
        assert second["amount"] == 500
        assert second["capped"] is True
        assert second["remaining_cap"] == 0

        third = await service.record_play_session("kid-1", "game-1", 600)
        assert third["amount"] == 0
        assert third["capped"] is True
        assert third["new_pending"] == 1500

    @pytest.mark.asyncio
    async def test_age_group_cap(self, db, policy):
        service = AccrualService(db, policy)
        result = await service.record_play_session("kid-1", "game-1", 3600, age=5)

        assert result["daily_cap"] == 300
        assert result["amount"] == 300

    @pytest.mark.asyncio
    async def test_category_multiplier(self, db, policy):
        service = AccrualService(db, policy)
        result = await service.record_play_session("kid-1", "game-1", 300, category="educational")
        assert result["amount"] == 1000

    @pytest.mark.asyncio
    async def test_short_session_earns_nothing(self, db, policy):
        service = AccrualService(db, policy)
        result = await service.record_play_session("kid-1", "game-1", 59)

        assert result["amount"] == 0
        assert result["capped"] is False
        assert result["new_pending"] == 0

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, db, policy):
        service = AccrualService(db, policy)
        with pytest.raises(InvalidEventDataException):
            await service.record_play_session("kid-1", "game-1", -5)

    @pytest.mark.asyncio
    async def test_first_play_bonus_once_per_game(self, db, policy):
        service = AccrualService(db, policy)
        result = await service.claim_first_play("kid-1", "game-1")
        assert result["amount"] == 500

        with pytest.raises(DuplicateRewardException):
            await service.claim_first_play("kid-1", "game-1")
        await db.rollback()

        other = await service.claim_first_play("kid-1", "game-2")
        assert other["new_pending"] == 1000

    @pytest.mark.asyncio
    async def test_first_play_bonus_counts_against_cap(self, db, policy):
        service = AccrualService(db, policy)
        await service.claim_first_play("kid-1", "game-1", age=5)
        result = await service.record_play_session("kid-1", "game-1", 600, age=5)

        assert result["amount"] == 0
        assert result["capped"] is True

    @pytest.mark.asyncio
    async def test_creator_royalty_capped_per_day(self, db, policy):
        service = AccrualService(db, policy)
        await _approved_game(service)

        own = await service.claim_first_play("creator-1", "game-1")
        first = await service.claim_first_play("kid-1", "game-1")
        second = await service.claim_first_play("kid-2", "game-1")
        third = await service.claim_first_play("kid-3", "game-1")

        assert own["creator_bonus"] == 0
        assert first["creator_bonus"] == 100
        assert second["creator_bonus"] == 50
        assert third["creator_bonus"] == 0

        creator = await LedgerService(db, policy).get_account("creator-1")
        # upload reward + own first play + royalties
        assert creator.pending_amount == 5000 + 500 + 150


class TestUploadsAndMilestones:

    @pytest.mark.asyncio
    async def test_upload_reward_paid_once(self, db, policy):
        service = AccrualService(db, policy)
        await service.register_game("game-1", "creator-1")
        result = await service.approve_upload("game-1")
        assert result["amount"] == 5000

        with pytest.raises(DuplicateRewardException):
            await service.approve_upload("game-1")

    @pytest.mark.asyncio
    async def test_duplicate_registration_rejected(self, db, policy):
        service = AccrualService(db, policy)
        await service.register_game("game-1", "creator-1")
        with pytest.raises(DuplicateRewardException):
            await service.register_game("game-1", "creator-2")

    @pytest.mark.asyncio
    async def test_daily_upload_reward_limit(self, db, policy):
        service = AccrualService(db, policy)
        for game_id in ("game-1", "game-2", "game-3"):
            await service.register_game(game_id, "creator-1")
        await service.approve_upload("game-1")
        await service.approve_upload("game-2")

        with pytest.raises(DailyLimitReachedException):
            await service.approve_upload("game-3")
        await db.rollback()

        game = await db.get(UploadedGame, "game-3")
        assert game.status == GameStatus.PENDING
        assert game.upload_reward_paid is False

    @pytest.mark.asyncio
    async def test_reject_upload(self, db, policy):
        service = AccrualService(db, policy)
        await service.register_game("game-1", "creator-1")
        result = await service.reject_upload("game-1")
        assert result["status"] == "rejected"

        with pytest.raises(InvalidEventDataException):
            await service.approve_upload("game-1")

    @pytest.mark.asyncio
    async def test_approve_unknown_game(self, db, policy):
        service = AccrualService(db, policy)
        with pytest.raises(NotFoundException):
            await service.approve_upload("missing")

    @pytest.mark.asyncio
    async def test_milestone_paid_once(self, db, policy):
        service = AccrualService(db, policy)
        await _approved_game(service)
        await service.claim_first_play("kid-1", "game-1")
        await service.claim_first_play("kid-2", "game-1")

        result = await service.claim_milestone("creator-1", "game-1", 2)
        assert result["amount"] == 700

        with pytest.raises(MilestoneAlreadyClaimedException):
            await service.claim_milestone("creator-1", "game-1", 2)
        await db.rollback()

        with pytest.raises(MilestoneNotReachedException):
            await service.claim_milestone("creator-1", "game-1", 3)

    @pytest.mark.asyncio
    async def test_milestone_only_for_creator(self, db, policy):
        service = AccrualService(db, policy)
        await _approved_game(service)
        with pytest.raises(ForbiddenException):
            await service.claim_milestone("kid-1", "game-1", 2)

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, db, policy):
        service = AccrualService(db, policy)
        await _approved_game(service)
        with pytest.raises(InvalidEventDataException):
            await service.claim_milestone("creator-1", "game-1", 42)


    @pytest.mark.asyncio
    async def test_milestone_row_written_concurrently(self, db, policy, monkeypatch):
        """A milestone record inserted after the check maps to already-claimed"""
        service = AccrualService(db, policy)
        await _approved_game(service)
        await service.claim_first_play("kid-1", "game-1")
        await service.claim_first_play("kid-2", "game-1")
        before = (await LedgerService(db, policy).get_account("creator-1")).pending_amount
        await db.commit()

        execute = db.execute

        async def execute_then_insert(statement, *args, **kwargs):
            result = await execute(statement, *args, **kwargs)
            if getattr(statement, "is_select", False) and GameMilestone.__tablename__ in str(statement):
                monkeypatch.setattr(db, "execute", execute)
                await execute(insert(GameMilestone).values(
                    game_id="game-1",
                    creator_id="creator-1",
                    milestone=2,
                    reward_amount=700,
                    claimed=True,
                ))
            return result

        monkeypatch.setattr(db, "execute", execute_then_insert)

        with pytest.raises(MilestoneAlreadyClaimedException):
            await service.claim_milestone("creator-1", "game-1", 2)

        creator = await LedgerService(db, policy).get_account("creator-1")
        assert creator.pending_amount == before
        count = (await db.execute(select(func.count(GameMilestone.id)))).scalar_one()
        assert count == 0

    @pytest.mark.asyncio
    async def test_first_play_locks_accounts_before_game(self, db, policy, monkeypatch):
        service = AccrualService(db, policy)
        await _approved_game(service)

        locks = _record_row_locks(db, monkeypatch)
        result = await service.claim_first_play("z-player", "game-1")

        assert result["creator_bonus"] == 100
        assert locks == [
            ("user_rewards", "creator-1"),
            ("user_rewards", "z-player"),
            ("uploaded_games", "game-1"),
        ]

class TestReferrals:

    @pytest.mark.asyncio
    async def test_referral_completes_on_first_checkin(self, db, policy):
        service = AccrualService(db, policy)
        stats = await service.get_referral_stats("parent-1")

        await service.register_referral("kid-1", stats["referral_code"].lower())
        result = await service.daily_checkin("kid-1")
        assert result["referral_completed"] is True

        referrer = await LedgerService(db, policy).get_account("parent-1")
        assert referrer.pending_amount == 250

        referral = (await db.execute(select(Referral))).scalar_one()
        assert referral.status == ReferralStatus.COMPLETED

        second = await service.daily_checkin("kid-2")
        assert second["referral_completed"] is False

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, db, policy):
        service = AccrualService(db, policy)
        stats = await service.get_referral_stats("kid-1")
        with pytest.raises(SelfReferralException):
            await service.register_referral("kid-1", stats["referral_code"])

    @pytest.mark.asyncio
    async def test_unknown_code_rejected(self, db, policy):
        service = AccrualService(db, policy)
        with pytest.raises(InvalidReferralCodeException):
            await service.register_referral("kid-1", "NOPE1234")

    @pytest.mark.asyncio
    async def test_user_referred_only_once(self, db, policy):
        service = AccrualService(db, policy)
        first = await service.get_referral_stats("parent-1")
        second = await service.get_referral_stats("parent-2")

        await service.register_referral("kid-1", first["referral_code"])
        with pytest.raises(DuplicateReferralException):
            await service.register_referral("kid-1", second["referral_code"])

    @pytest.mark.asyncio
    async def test_tiers_claimed_once(self, db, policy):
        service = AccrualService(db, policy)
        stats = await service.get_referral_stats("parent-1")
        await service.register_referral("kid-1", stats["referral_code"])
        await service.daily_checkin("kid-1")

        result = await service.claim_referral_tiers("parent-1")
        assert result["completed_referrals"] == 1
        assert result["claimed"] == [{"tier_id": "bronze", "amount": 1000}]
        assert result["new_pending"] == 250 + 1000

        again = await service.claim_referral_tiers("parent-1")
        assert again["claimed"] == []
        assert again["amount"] == 0

        stats = await service.get_referral_stats("parent-1")
        assert stats["completed"] == 1
        assert stats["claimed_tiers"] == ["bronze"]


class TestComboChallenges:

    @pytest.mark.asyncio
    async def test_prize_awarded_once_per_period(self, db, policy):
        service = AccrualService(db, policy)
        challenge = await service.create_combo_challenge("Combo x10", 10, 300)

        below = await service.record_combo("kid-1", str(challenge.id), 5)
        assert below["awarded"] is False

        hit = await service.record_combo("kid-1", str(challenge.id), 12)
        assert hit["awarded"] is True
        assert hit["amount"] == 300
        assert hit["new_pending"] == 300

        again = await service.record_combo("kid-1", str(challenge.id), 20)
        assert again["awarded"] is False
        assert again["highest_combo"] == 20
        assert again["new_pending"] == 300

    @pytest.mark.asyncio
    async def test_weekly_period_starts_monday(self, db, policy):
        service = AccrualService(db, policy)
        challenge = await service.create_combo_challenge("Weekly", 3, 100, PeriodType.WEEKLY)
        result = await service.record_combo("kid-1", str(challenge.id), 3)

        today = utc_today()
        assert result["period_start"] == (today - timedelta(days=today.weekday())).isoformat()

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, db, policy):
        service = AccrualService(db, policy)
        with pytest.raises(NotFoundException):
            await service.record_combo("kid-1", "not-a-uuid", 5)
