"""
Reward ledger service

Single source of truth for balances and the transaction log. Every balance
mutation happens on a row loaded with SELECT ... FOR UPDATE and appends its
log entry in the same unit of work. Methods flush but never commit: the
calling service owns the transaction boundary so eligibility checks,
idempotency records and the credit land atomically.

Lock order: account rows first, in user_id order, then any other row (games,
referrals, claims). Units of work touching two accounts go through
lock_accounts.
"""

from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import (
    InsufficientBalanceException,
    InvalidEventDataException,
    DailyLimitReachedException,
    NotFoundException,
)
from camly.core.monitoring import ledger_credits
from camly.core.security import SecurityUtils
from camly.models import UserReward, RewardTransaction, RewardType
from camly.utils.helpers import utc_now, utc_today

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for reading and mutating reward balances"""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def get_account(self, user_id: str, lock: bool = False) -> Optional[UserReward]:
        """Fetch an account, optionally locking the row for the current transaction"""
        stmt = select(UserReward).where(UserReward.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_account(self, user_id: str, lock: bool = False) -> UserReward:
        """
        Return the user's account, creating it with zero balances if missing

        Must be the first statement of a unit of work: a concurrent insert of
        the same account is resolved by rolling back and re-reading.
        """
        if not user_id:
            raise InvalidEventDataException("user_id is required")

        account = await self.get_account(user_id, lock=lock)
        if account:
            return account

        for _ in range(3):
            account = UserReward(
                user_id=user_id,
                pending_amount=0,
                claimed_amount=0,
                total_earned=0,
                wallet_balance=0,
                daily_claimed_amount=0,
                streak_days=0,
                reset_count=0,
                referral_code=SecurityUtils.generate_referral_code(),
            )
            self.db.add(account)
            try:
                await self.db.flush()
                logger.info(f"Created reward account for user {user_id}")
                return account
            except IntegrityError:
                # Either another request created the account or the referral code collided
                await self.db.rollback()
                existing = await self.get_account(user_id, lock=lock)
                if existing:
                    return existing

        raise InvalidEventDataException(f"Could not create reward account for {user_id}")

    async def lock_account(self, user_id: str) -> UserReward:
        """Get-or-create the account and hold its row lock"""
        return await self.get_or_create_account(user_id, lock=True)

    async def lock_accounts(self, user_ids: List[str]) -> Dict[str, UserReward]:
        """Get-or-create several accounts and lock them in user_id order"""
        ordered = sorted({user_id for user_id in user_ids if user_id})
        for user_id in ordered:
            if not await self.get_account(user_id):
                await self.get_or_create_account(user_id)
        return {user_id: await self.lock_account(user_id) for user_id in ordered}

    async def apply_credit(
        self,
        user_id: str,
        amount: int,
        reward_type: RewardType,
        description: str,
        account: Optional[UserReward] = None,
    ) -> UserReward:
        """Increase pending and total earned, appending the matching log entry"""
        if amount <= 0:
            raise InvalidEventDataException("Credit amount must be positive")
        if not reward_type.is_credit:
            raise InvalidEventDataException(f"{reward_type.value} is not a credit reward type")

        account = account or await self.lock_account(user_id)

        account.pending_amount += amount
        account.total_earned += amount
        await self.record_transaction(
            user_id=user_id,
            amount=amount,
            reward_type=reward_type,
            description=description,
        )
        ledger_credits.labels(reward_type=reward_type.value).inc(amount)

        logger.info(f"Credited {amount} CAMLY ({reward_type.value}) to {user_id}")
        return account

    async def apply_debit(
        self,
        user_id: str,
        amount: int,
        reward_type: RewardType,
        description: str,
        transaction_hash: Optional[str] = None,
        account: Optional[UserReward] = None,
    ) -> UserReward:
        """Decrease the internal wallet balance, appending a negative log entry"""
        if amount <= 0:
            raise InvalidEventDataException("Debit amount must be positive")

        account = account or await self.lock_account(user_id)

        if amount > account.wallet_balance:
            raise InsufficientBalanceException(amount, account.wallet_balance)

        account.wallet_balance -= amount
        await self.record_transaction(
            user_id=user_id,
            amount=-amount,
            reward_type=reward_type,
            description=description,
            transaction_hash=transaction_hash,
        )

        logger.info(f"Debited {amount} CAMLY ({reward_type.value}) from {user_id}")
        return account

    async def record_transaction(
        self,
        user_id: str,
        amount: int,
        reward_type: RewardType,
        description: str,
        transaction_hash: Optional[str] = None,
        claimed_to_wallet: bool = False,
        settlement_key: Optional[str] = None,
    ) -> RewardTransaction:
        """Append a ledger entry; never touches balances"""
        entry = RewardTransaction(
            user_id=user_id,
            amount=amount,
            reward_type=reward_type,
            description=description[:500],
            transaction_hash=transaction_hash,
            claimed_to_wallet=claimed_to_wallet,
            settlement_key=settlement_key,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def find_settlement(self, settlement_key: str) -> Optional[RewardTransaction]:
        result = await self.db.execute(
            select(RewardTransaction).where(RewardTransaction.settlement_key == settlement_key)
        )
        return result.scalar_one_or_none()

    def daily_remaining(self, account: UserReward, reserved: int = 0) -> int:
        """Amount still claimable today under the daily claim cap"""
        used = account.daily_claimed_on(utc_today()) + reserved
        return max(0, self.settings.DAILY_CLAIM_LIMIT - used)

    async def settle_claim(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        to_internal_wallet: bool = True,
        transaction_hash: Optional[str] = None,
        enforce_daily_cap: bool = True,
        account: Optional[UserReward] = None,
    ) -> Dict[str, Any]:
        """
        Move value from pending to claimed exactly once per idempotency key

        Args:
            user_id: Account owner
            amount: Amount to settle; truncated to the remaining daily cap
                when enforce_daily_cap is set
            idempotency_key: Transaction hash for on-chain claims, claim id
                otherwise; a repeated key is a no-op
            to_internal_wallet: Credit the internal wallet balance (internal
                claims) instead of an external wallet
            transaction_hash: Chain reference for the log entry
            enforce_daily_cap: Off when replaying an already confirmed transfer

        Returns:
            Settlement result with the resulting balances
        """
        account = account or await self.lock_account(user_id)

        existing = await self.find_settlement(idempotency_key)
        if existing:
            logger.info(f"Settlement {idempotency_key} already applied for {user_id}, skipping")
            return self._settlement_result(account, -existing.amount, already_settled=True)

        if amount <= 0:
            raise InvalidEventDataException("Claim amount must be positive")

        today = utc_today()
        if enforce_daily_cap:
            remaining = self.daily_remaining(account)
            if remaining <= 0:
                raise DailyLimitReachedException()
            amount = min(amount, remaining)

        if amount > account.pending_amount:
            raise InsufficientBalanceException(amount, account.pending_amount)

        daily_claimed = account.daily_claimed_on(today)
        account.pending_amount -= amount
        account.claimed_amount += amount
        account.daily_claimed_amount = daily_claimed + amount
        account.last_claim_date = today
        account.last_claim_at = utc_now()
        if to_internal_wallet:
            account.wallet_balance += amount

        reward_type = RewardType.AIRDROP_CLAIM if to_internal_wallet else RewardType.WALLET_WITHDRAWAL
        await self.record_transaction(
            user_id=user_id,
            amount=-amount,
            reward_type=reward_type,
            description=f"Claimed {amount} CAMLY" + (" to internal wallet" if to_internal_wallet else " on-chain"),
            transaction_hash=transaction_hash,
            claimed_to_wallet=True,
            settlement_key=idempotency_key,
        )

        logger.info(f"Settled {amount} CAMLY for {user_id} (key={idempotency_key})")
        return self._settlement_result(account, amount)

    def _settlement_result(self, account: UserReward, amount: int, already_settled: bool = False) -> Dict[str, Any]:
        return {
            "success": True,
            "amount": amount,
            "new_pending": account.pending_amount,
            "new_claimed": account.claimed_amount,
            "daily_claimed": account.daily_claimed_on(utc_today()),
            "already_settled": already_settled,
        }

    async def get_summary(self, user_id: str) -> Dict[str, Any]:
        """Balances plus today's remaining claim allowance"""
        account = await self.get_or_create_account(user_id)
        await self.db.commit()
        return {
            "user_id": account.user_id,
            "pending_amount": account.pending_amount,
            "claimed_amount": account.claimed_amount,
            "total_earned": account.total_earned,
            "wallet_balance": account.wallet_balance,
            "daily_claimed_amount": account.daily_claimed_on(utc_today()),
            "daily_remaining": self.daily_remaining(account),
            "last_claim_date": account.last_claim_date,
            "last_checkin_date": account.last_checkin_date,
            "streak_days": account.streak_days,
            "wallet_address": account.wallet_address,
            "referral_code": account.referral_code,
        }

    async def get_history(self, user_id: str, limit: int = 50, offset: int = 0) -> List[RewardTransaction]:
        """Newest-first transaction history"""
        result = await self.db.execute(
            select(RewardTransaction)
            .where(RewardTransaction.user_id == user_id)
            .order_by(RewardTransaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def reconcile(self, user_id: str) -> Dict[str, Any]:
        """
        Compare balances against the transaction log

        Credits must sum to total earned and settlement entries to the
        claimed amount; any difference means ledger drift.
        """
        account = await self.get_account(user_id)
        if not account:
            raise NotFoundException("Reward account not found")

        result = await self.db.execute(
            select(RewardTransaction.reward_type, func.coalesce(func.sum(RewardTransaction.amount), 0))
            .where(RewardTransaction.user_id == user_id)
            .group_by(RewardTransaction.reward_type)
        )
        totals = {row[0]: int(row[1]) for row in result.all()}

        credited = sum(v for k, v in totals.items() if k.is_credit)
        settled = -sum(v for k, v in totals.items() if k.is_settlement)
        resets = -totals.get(RewardType.ADMIN_RESET, 0)

        return {
            "user_id": user_id,
            "pending_amount": account.pending_amount,
            "claimed_amount": account.claimed_amount,
            "total_earned": account.total_earned,
            "logged_credits": credited,
            "logged_settlements": settled,
            "balanced": (
                account.total_earned == account.pending_amount + account.claimed_amount
                and (account.reset_count > 0 or credited == account.total_earned)
                and (account.reset_count > 0 or settled == account.claimed_amount)
            ),
            "reset_adjustments": resets,
        }

    async def reset_account(self, user_id: str) -> Dict[str, Any]:
        """
        Zero every balance of an account (administrative)

        The only operation allowed to lower total earned; callers audit it.
        """
        account = await self.get_account(user_id, lock=True)
        if not account:
            raise NotFoundException("Reward account not found")

        old_values = {
            "pending_amount": account.pending_amount,
            "claimed_amount": account.claimed_amount,
            "total_earned": account.total_earned,
            "wallet_balance": account.wallet_balance,
            "daily_claimed_amount": account.daily_claimed_amount,
        }

        account.pending_amount = 0
        account.claimed_amount = 0
        account.total_earned = 0
        account.wallet_balance = 0
        account.daily_claimed_amount = 0
        account.reset_count += 1
        account.last_reset_at = utc_now()

        await self.record_transaction(
            user_id=user_id,
            amount=-old_values["pending_amount"],
            reward_type=RewardType.ADMIN_RESET,
            description="Balances reset by administrator",
        )

        logger.warning(f"Reward balances reset for {user_id}: {old_values}")
        return old_values
