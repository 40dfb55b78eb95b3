"""
Claim settlement coordinator

Moves value out of the pending balance. Internal claims settle in the same
transaction that validates them. On-chain claims run as a persisted saga:

    tx1  lock account, validate, persist the claim as SUBMITTING, commit
    --   submit the transfer (slow, outside any transaction)
    tx2  store the transaction hash
    --   wait for confirmation
    tx3  CONFIRMED, then settle exactly once keyed by the transaction hash

Claims in SUBMITTING or CONFIRMED reserve their amount, so concurrent claims
validate against pending minus reservations before the ledger is touched.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
import logging
import uuid

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import (
    AmountBelowMinimumException,
    BadRequestException,
    CamlyException,
    ChainUnavailableException,
    DailyLimitReachedException,
    ForbiddenException,
    InsufficientBalanceException,
    NotFoundException,
    SettlementException,
    TransferRejectedException,
    WalletAlreadyBoundException,
    WalletNotEligibleException,
)
from camly.core.monitoring import claim_attempts, settlement_failures
from camly.models import ClaimRecord, ClaimKind, ClaimStatus, IN_FLIGHT_STATUSES, UserReward
from camly.services.chain import ChainClient, ChainError, ChainRevertedError, ChainTimeoutError
from camly.services.eligibility import EligibilityService
from camly.services.ledger import LedgerService
from camly.utils.helpers import explorer_tx_url, utc_now, utc_today
from camly.utils.validators import normalize_wallet_address, validate_tx_hash

from .state_machine import ClaimStateMachine

logger = logging.getLogger(__name__)

# Errors that reject a claim during validation without touching anything
VALIDATION_ERRORS = (
    AmountBelowMinimumException,
    InsufficientBalanceException,
    DailyLimitReachedException,
    WalletNotEligibleException,
    WalletAlreadyBoundException,
)


class ClaimService:
    """Service for internal and on-chain claims"""

    def __init__(
        self,
        db: AsyncSession,
        chain: Optional[ChainClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.chain = chain
        self.settings = settings or get_settings()
        self.ledger = LedgerService(db, self.settings)
        self.eligibility = EligibilityService(db, self.settings)
        self.state_machine = ClaimStateMachine()

    def _require_chain(self) -> ChainClient:
        if self.chain is None:
            raise ChainUnavailableException("Chain client is not configured")
        return self.chain

    async def _reserved(self, user_id: str) -> int:
        """Amount held by this user's in-flight on-chain claims"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(ClaimRecord.amount), 0)).where(
                ClaimRecord.user_id == user_id,
                ClaimRecord.status.in_(IN_FLIGHT_STATUSES),
            )
        )
        return int(result.scalar_one())

    def _validate_amount(self, account: UserReward, amount: int, reserved: int) -> int:
        """
        Check a claim request and return the amount that will be claimed

        Requests above the remaining daily allowance are truncated to it.
        """
        if amount is None or amount < self.settings.MIN_CLAIM_AMOUNT or amount <= 0:
            raise AmountBelowMinimumException(amount or 0, max(1, self.settings.MIN_CLAIM_AMOUNT))

        available = account.pending_amount - reserved
        if amount > available:
            raise InsufficientBalanceException(amount, max(0, available))

        remaining = self.ledger.daily_remaining(account, reserved=reserved)
        if remaining <= 0:
            raise DailyLimitReachedException()

        return min(amount, remaining)

    async def _reject(self, user_id: str, kind: ClaimKind, amount: int, error: CamlyException) -> None:
        """Persist a rejected attempt; the ledger stays untouched"""
        await self.db.rollback()
        self.db.add(ClaimRecord(
            user_id=user_id,
            kind=kind,
            status=ClaimStatus.REJECTED,
            requested_amount=amount or 0,
            amount=0,
            retryable=False,
            error_message=error.detail,
        ))
        await self.db.commit()
        claim_attempts.labels(kind=kind.value, status=ClaimStatus.REJECTED.value).inc()
        logger.info(f"{kind.value} claim of {amount} rejected for {user_id}: {error.detail}")

    def _claim_result(self, claim: ClaimRecord, account: Optional[UserReward] = None, **extra) -> Dict[str, Any]:
        result = {
            "success": claim.status == ClaimStatus.SETTLED,
            "claim_id": str(claim.id),
            "kind": claim.kind.value,
            "status": claim.status.value,
            "requested_amount": claim.requested_amount,
            "amount": claim.amount,
            "capped": claim.amount < claim.requested_amount,
            "tx_hash": claim.tx_hash,
            "explorer_url": explorer_tx_url(self.settings.BLOCK_EXPLORER_URL, claim.tx_hash) if claim.tx_hash else None,
            "error_message": claim.error_message,
        }
        if account is not None:
            result.update({
                "new_pending": account.pending_amount,
                "new_claimed": account.claimed_amount,
                "wallet_balance": account.wallet_balance,
                "daily_remaining": self.ledger.daily_remaining(account),
            })
        result.update(extra)
        return result

    async def claim_internal(self, user_id: str, amount: int) -> Dict[str, Any]:
        """Settle pending into the internal wallet balance in one transaction"""
        account = await self.ledger.lock_account(user_id)
        reserved = await self._reserved(user_id)

        try:
            claim_amount = self._validate_amount(account, amount, reserved)
        except VALIDATION_ERRORS as e:
            await self._reject(user_id, ClaimKind.INTERNAL, amount, e)
            raise

        claim = ClaimRecord(
            user_id=user_id,
            kind=ClaimKind.INTERNAL,
            status=ClaimStatus.VALIDATING,
            requested_amount=amount,
            amount=claim_amount,
            retryable=False,
        )
        self.db.add(claim)
        await self.db.flush()

        await self.ledger.settle_claim(
            user_id,
            claim_amount,
            idempotency_key=claim.settlement_key,
            to_internal_wallet=True,
            account=account,
        )
        self.state_machine.transition(claim, ClaimStatus.SETTLED)
        claim.settled_at = utc_now()
        await self.db.commit()

        claim_attempts.labels(kind=ClaimKind.INTERNAL.value, status=ClaimStatus.SETTLED.value).inc()
        logger.info(f"Internal claim {claim.id}: {claim_amount} CAMLY settled for {user_id}")
        return self._claim_result(claim, account)

    async def claim_onchain(self, user_id: str, amount: int, wallet_address: Optional[str] = None) -> Dict[str, Any]:
        """
        Transfer pending CAMLY to the user's linked wallet

        Returns with status "submitting" when the confirmation does not
        arrive in time; the reconciliation job finishes such claims.
        """
        chain = self._require_chain()

        # tx1: validate and reserve
        account = await self.ledger.lock_account(user_id)
        try:
            address = self._resolve_wallet(account, wallet_address)
            eligibility = await self.eligibility.check_wallet_eligibility(user_id, address)
            if not eligibility["can_connect"]:
                raise WalletNotEligibleException(eligibility["reason"])
            reserved = await self._reserved(user_id)
            claim_amount = self._validate_amount(account, amount, reserved)
        except VALIDATION_ERRORS as e:
            await self._reject(user_id, ClaimKind.ONCHAIN, amount, e)
            raise

        claim = ClaimRecord(
            user_id=user_id,
            kind=ClaimKind.ONCHAIN,
            status=ClaimStatus.VALIDATING,
            requested_amount=amount,
            amount=claim_amount,
            wallet_address=address,
            retryable=False,
        )
        self.db.add(claim)
        self.state_machine.transition(claim, ClaimStatus.SUBMITTING)
        claim.submitted_at = utc_now()
        await self.db.commit()

        # Submit
        try:
            tx_hash = await chain.transfer(address, claim_amount)
        except ChainError as e:
            await self._fail(claim, e)
            if e.retryable:
                raise ChainUnavailableException(str(e))
            raise TransferRejectedException(str(e))
        except Exception as e:
            await self._fail(claim, ChainError(f"Transfer submission failed: {e}"))
            raise

        claim.tx_hash = tx_hash.lower()
        await self.db.commit()

        # Confirm
        try:
            await chain.wait_for_confirmation(claim.tx_hash, timeout=self.settings.CHAIN_CONFIRMATION_TIMEOUT)
        except ChainRevertedError as e:
            await self._fail(claim, e)
            raise TransferRejectedException(str(e))
        except (ChainTimeoutError, ChainError) as e:
            logger.warning(f"Claim {claim.id} ({claim.tx_hash}) awaiting confirmation: {e}")
            claim_attempts.labels(kind=ClaimKind.ONCHAIN.value, status=ClaimStatus.SUBMITTING.value).inc()
            return self._claim_result(claim, pending_reconciliation=True)

        self.state_machine.transition(claim, ClaimStatus.CONFIRMED)
        claim.confirmed_at = utc_now()
        await self.db.commit()

        return await self._settle_confirmed(claim.id)

    def _resolve_wallet(self, account: UserReward, wallet_address: Optional[str]) -> str:
        if wallet_address:
            try:
                address = normalize_wallet_address(wallet_address)
            except ValueError:
                raise WalletNotEligibleException("Invalid wallet address")
            if account.wallet_address and account.wallet_address != address:
                raise WalletAlreadyBoundException()
            return address
        if not account.wallet_address:
            raise WalletNotEligibleException("Link a wallet before claiming on-chain")
        return account.wallet_address

    async def _fail(self, claim: ClaimRecord, error: ChainError) -> None:
        self.state_machine.transition(claim, ClaimStatus.FAILED)
        claim.retryable = error.retryable
        claim.error_message = str(error)[:1000]
        await self.db.commit()
        claim_attempts.labels(kind=claim.kind.value, status=ClaimStatus.FAILED.value).inc()
        logger.warning(f"Claim {claim.id} failed (retryable={error.retryable}): {error}")

    async def _load_claim(self, claim_id: uuid.UUID, lock: bool = False) -> ClaimRecord:
        stmt = select(ClaimRecord).where(ClaimRecord.id == claim_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        claim = result.scalar_one_or_none()
        if not claim:
            raise NotFoundException("Claim not found")
        return claim

    async def _settle_confirmed(self, claim_id: uuid.UUID) -> Dict[str, Any]:
        """
        Apply the ledger mutation for a confirmed transfer

        A failure here leaves the claim CONFIRMED with its hash so the
        reconciliation job can replay it.
        """
        claim = await self._load_claim(claim_id)
        user_id, amount, tx_hash = claim.user_id, claim.amount, claim.tx_hash

        try:
            account = await self.ledger.lock_account(user_id)
            claim = await self._load_claim(claim_id, lock=True)
            if claim.status == ClaimStatus.SETTLED:
                await self.db.commit()
                return self._claim_result(claim, account, already_settled=True)

            result = await self.ledger.settle_claim(
                user_id,
                amount,
                idempotency_key=claim.settlement_key,
                to_internal_wallet=False,
                transaction_hash=tx_hash,
                enforce_daily_cap=False,
                account=account,
            )
            self.state_machine.transition(claim, ClaimStatus.SETTLED)
            claim.settled_at = utc_now()
            await self.db.commit()
        except (SQLAlchemyError, CamlyException) as e:
            await self.db.rollback()
            settlement_failures.inc()
            logger.error(
                f"Settlement failed for confirmed claim {claim_id}: "
                f"user_id={user_id} amount={amount} tx_hash={tx_hash} error={e}"
            )
            raise SettlementException(
                f"Transfer {tx_hash} confirmed but not yet recorded; it will be reconciled"
            )

        claim_attempts.labels(kind=ClaimKind.ONCHAIN.value, status=ClaimStatus.SETTLED.value).inc()
        logger.info(f"On-chain claim {claim_id}: {amount} CAMLY settled for {user_id} ({tx_hash})")
        return self._claim_result(claim, account, already_settled=result["already_settled"])

    async def replay_settlement(
        self,
        claim_id: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Drive a claim with a known transaction hash to its final state

        Safe to call any number of times: settlement is keyed by the hash.
        """
        if claim_id:
            try:
                claim = await self._load_claim(uuid.UUID(str(claim_id)))
            except ValueError:
                raise NotFoundException("Claim not found")
        elif tx_hash:
            try:
                tx_hash = validate_tx_hash(tx_hash)
            except ValueError as e:
                raise BadRequestException(str(e), error_code="INVALID_TX_HASH")
            result = await self.db.execute(select(ClaimRecord).where(ClaimRecord.tx_hash == tx_hash))
            claim = result.scalar_one_or_none()
            if not claim:
                raise NotFoundException("Claim not found")
        else:
            raise BadRequestException("claim_id or tx_hash is required")

        if claim.status == ClaimStatus.SETTLED:
            return self._claim_result(claim, already_settled=True)

        if claim.status == ClaimStatus.SUBMITTING:
            if not claim.tx_hash:
                return self._claim_result(claim, needs_manual_review=True)

            try:
                receipt = await self._require_chain().get_receipt(claim.tx_hash)
            except ChainError as e:
                raise ChainUnavailableException(str(e))

            if receipt is None:
                return self._claim_result(claim, pending_reconciliation=True)
            if not receipt.success:
                await self._fail(claim, ChainRevertedError(f"Transaction {claim.tx_hash} reverted"))
                return self._claim_result(claim)

            self.state_machine.transition(claim, ClaimStatus.CONFIRMED)
            claim.confirmed_at = utc_now()
            await self.db.commit()

        if claim.status == ClaimStatus.CONFIRMED:
            return await self._settle_confirmed(claim.id)

        raise BadRequestException(
            f"Claim in status {claim.status.value} cannot be settled",
            error_code="CLAIM_NOT_SETTLEABLE",
        )

    async def reconcile_pending(self, min_age_seconds: Optional[int] = None, limit: int = 100) -> Dict[str, Any]:
        """Replay every in-flight claim older than min_age_seconds"""
        if min_age_seconds is None:
            min_age_seconds = self.settings.RECONCILE_MIN_AGE_SECONDS
        cutoff = utc_now() - timedelta(seconds=min_age_seconds)

        result = await self.db.execute(
            select(ClaimRecord.id)
            .where(
                ClaimRecord.status.in_(IN_FLIGHT_STATUSES),
                ClaimRecord.tx_hash.is_not(None),
                ClaimRecord.updated_at <= cutoff,
            )
            .order_by(ClaimRecord.created_at)
            .limit(limit)
        )
        claim_ids = [row[0] for row in result.all()]

        summary = {"checked": len(claim_ids), "settled": 0, "failed": 0, "pending": 0, "errors": 0}
        for claim_id in claim_ids:
            try:
                outcome = await self.replay_settlement(claim_id=str(claim_id))
            except CamlyException as e:
                summary["errors"] += 1
                logger.error(f"Reconciliation of claim {claim_id} failed: {e.detail}")
                continue

            if outcome["status"] == ClaimStatus.SETTLED.value:
                summary["settled"] += 1
            elif outcome["status"] == ClaimStatus.FAILED.value:
                summary["failed"] += 1
            else:
                summary["pending"] += 1

        if claim_ids:
            logger.info(f"Claim reconciliation: {summary}")
        return summary

    async def expire_stale_submissions(self, older_than_seconds: Optional[int] = None) -> Dict[str, Any]:
        """
        Fail SUBMITTING claims that never recorded a transaction hash (admin)

        Such a claim was interrupted between tx1 and tx2, so nothing can
        reconcile it and its amount stays reserved. Failing it releases the
        reservation; the reward wallet should be checked for a stray transfer.
        """
        if older_than_seconds is None:
            older_than_seconds = self.settings.CLAIM_SUBMISSION_STALE_SECONDS
        cutoff = utc_now() - timedelta(seconds=older_than_seconds)

        result = await self.db.execute(
            select(ClaimRecord.id).where(
                ClaimRecord.status == ClaimStatus.SUBMITTING,
                ClaimRecord.tx_hash.is_(None),
                ClaimRecord.submitted_at <= cutoff,
            )
        )
        expired: List[str] = []
        for claim_id in [row[0] for row in result.all()]:
            claim = await self._load_claim(claim_id, lock=True)
            if claim.status != ClaimStatus.SUBMITTING or claim.tx_hash:
                await self.db.rollback()
                continue
            await self._fail(claim, ChainTimeoutError(
                f"No transaction hash recorded {older_than_seconds}s after submission"
            ))
            expired.append(str(claim_id))

        if expired:
            logger.warning(f"Expired {len(expired)} stale claim submissions: {expired}")
        return {"expired": expired, "count": len(expired)}

    async def get_claim(self, claim_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            claim = await self._load_claim(uuid.UUID(str(claim_id)))
        except ValueError:
            raise NotFoundException("Claim not found")
        if user_id is not None and claim.user_id != user_id:
            raise ForbiddenException("You don't have access to this claim")
        return self._claim_result(claim)

    async def list_claims(self, user_id: str, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(ClaimRecord)
            .where(ClaimRecord.user_id == user_id)
            .order_by(ClaimRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return [self._claim_result(claim) for claim in result.scalars().all()]

    async def get_claim_status(self, user_id: str) -> Dict[str, Any]:
        """Claimable amount and today's allowance for the claim screen"""
        account = await self.ledger.get_or_create_account(user_id)
        await self.db.commit()
        reserved = await self._reserved(user_id)
        return {
            "pending_amount": account.pending_amount,
            "reserved_amount": reserved,
            "claimable_amount": max(0, account.pending_amount - reserved),
            "daily_claimed": account.daily_claimed_on(utc_today()),
            "daily_limit": self.settings.DAILY_CLAIM_LIMIT,
            "daily_remaining": self.ledger.daily_remaining(account, reserved=reserved),
            "wallet_address": account.wallet_address,
        }
