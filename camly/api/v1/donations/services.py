"""Donation services"""

from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import (
    AmountBelowMinimumException,
    BadRequestException,
    ChainUnavailableException,
    ConflictException,
    InsufficientBalanceException,
    TransferRejectedException,
    WalletAlreadyBoundException,
)
from camly.core.monitoring import donations_total
from camly.models import DonationRecord, DonationType, RewardType
from camly.services.chain import ChainClient, ChainError, ChainRevertedError, ChainTimeoutError
from camly.services.ledger import LedgerService
from camly.utils.helpers import explorer_tx_url
from camly.utils.validators import normalize_text, normalize_wallet_address, validate_tx_hash

logger = logging.getLogger(__name__)


class DonationService:
    """Service for platform donations from the internal balance or a wallet"""

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

    def _require_chain(self) -> ChainClient:
        if self.chain is None:
            raise ChainUnavailableException("Chain client is not configured")
        return self.chain

    def _check_minimum(self, amount: int) -> None:
        if amount is None or amount < self.settings.MIN_DONATION_AMOUNT or amount <= 0:
            raise AmountBelowMinimumException(amount or 0, self.settings.MIN_DONATION_AMOUNT)

    async def _check_sender(self, user_id: str, address: str) -> None:
        """A user with a linked wallet can only donate from that wallet"""
        account = await self.ledger.get_account(user_id)
        if account and account.wallet_address and account.wallet_address != address:
            raise WalletAlreadyBoundException("Donations must come from the wallet linked to this account")

    def _to_dict(self, donation: DonationRecord) -> Dict[str, Any]:
        data = donation.to_dict()
        data["explorer_url"] = (
            explorer_tx_url(self.settings.BLOCK_EXPLORER_URL, donation.tx_hash) if donation.tx_hash else None
        )
        return data

    async def donate_internal(
        self,
        user_id: str,
        amount: int,
        message: Optional[str] = None,
        is_anonymous: bool = False,
    ) -> Dict[str, Any]:
        """Debit the internal wallet balance and record the donation"""
        self._check_minimum(amount)

        account = await self.ledger.lock_account(user_id)
        await self.ledger.apply_debit(
            user_id,
            amount,
            RewardType.CHARITY_DONATION,
            "Donation to the platform",
            account=account,
        )

        donation = DonationRecord(
            user_id=user_id,
            amount=amount,
            message=normalize_text(message) if message else None,
            is_anonymous=is_anonymous,
            is_onchain=False,
            donation_type=DonationType.INTERNAL,
        )
        self.db.add(donation)
        await self.db.commit()

        donations_total.labels(kind=DonationType.INTERNAL.value).inc()
        logger.info(f"Internal donation of {amount} CAMLY from {user_id}")

        result = self._to_dict(donation)
        result["new_wallet_balance"] = account.wallet_balance
        return result

    async def prepare_onchain_donation(self, user_id: str, wallet_address: str, amount: int) -> Dict[str, Any]:
        """Validate an on-chain donation against the fetched token balance"""
        self._check_minimum(amount)
        try:
            address = normalize_wallet_address(wallet_address)
        except ValueError as e:
            raise BadRequestException(str(e), error_code="INVALID_WALLET_ADDRESS")
        await self._check_sender(user_id, address)

        try:
            balance = await self._require_chain().get_token_balance(address)
        except ChainError as e:
            raise ChainUnavailableException(str(e))

        if amount > balance:
            raise InsufficientBalanceException(amount, balance)

        return {
            "to_address": self.settings.DONATION_WALLET_ADDRESS,
            "token_address": self.settings.CAMLY_CONTRACT_ADDRESS,
            "amount": amount,
            "wallet_balance": balance,
        }

    async def confirm_onchain_donation(
        self,
        user_id: str,
        tx_hash: str,
        wallet_address: str,
        amount: int,
        message: Optional[str] = None,
        is_anonymous: bool = False,
    ) -> Dict[str, Any]:
        """
        Record a user-submitted donation transfer once it is confirmed

        Idempotent on the transaction hash.
        """
        self._check_minimum(amount)
        try:
            tx_hash = validate_tx_hash(tx_hash)
            address = normalize_wallet_address(wallet_address)
        except ValueError as e:
            raise BadRequestException(str(e), error_code="INVALID_DONATION")
        await self._check_sender(user_id, address)

        existing = await self._find_by_hash(tx_hash)
        if existing:
            if existing.user_id != user_id:
                raise ConflictException("Transaction already recorded for another user", error_code="DUPLICATE_TX_HASH")
            return self._to_dict(existing)

        try:
            receipt = await self._require_chain().wait_for_confirmation(
                tx_hash, timeout=self.settings.CHAIN_CONFIRMATION_TIMEOUT
            )
        except ChainRevertedError as e:
            raise TransferRejectedException(str(e))
        except (ChainTimeoutError, ChainError) as e:
            raise ChainUnavailableException(f"Donation not confirmed yet: {e}")

        donation_wallet = self.settings.DONATION_WALLET_ADDRESS.lower()
        matched = any(
            t.from_address == address and t.to_address == donation_wallet and t.amount >= amount
            for t in receipt.transfers
        )
        if not matched:
            raise BadRequestException(
                "Transaction does not transfer the donated amount to the donation wallet",
                error_code="DONATION_MISMATCH",
            )

        donation = DonationRecord(
            user_id=user_id,
            amount=amount,
            message=normalize_text(message) if message else None,
            is_anonymous=is_anonymous,
            is_onchain=True,
            tx_hash=tx_hash,
            wallet_address=address,
            donation_type=DonationType.ONCHAIN,
        )
        self.db.add(donation)
        await self.ledger.record_transaction(
            user_id=user_id,
            amount=-amount,
            reward_type=RewardType.CHARITY_DONATION,
            description="On-chain donation to the platform",
            transaction_hash=tx_hash,
            claimed_to_wallet=True,
        )

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_by_hash(tx_hash)
            if not existing:
                raise
            return self._to_dict(existing)

        donations_total.labels(kind=DonationType.ONCHAIN.value).inc()
        logger.info(f"On-chain donation of {amount} CAMLY from {user_id} ({tx_hash})")
        return self._to_dict(donation)

    async def _find_by_hash(self, tx_hash: str) -> Optional[DonationRecord]:
        result = await self.db.execute(select(DonationRecord).where(DonationRecord.tx_hash == tx_hash))
        return result.scalar_one_or_none()

    async def _lock_donation(self, donation_id, donation_type: DonationType) -> Optional[DonationRecord]:
        result = await self.db.execute(
            select(DonationRecord)
            .where(
                DonationRecord.id == donation_id,
                DonationRecord.donation_type == donation_type,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _donation_ids(self, donation_type: DonationType, limit: int) -> List[Any]:
        result = await self.db.execute(
            select(DonationRecord.id)
            .where(DonationRecord.donation_type == donation_type)
            .order_by(DonationRecord.created_at)
            .limit(limit)
        )
        return [row[0] for row in result.all()]

    async def _finish_processing(self, donation_id, tx_hash: str) -> Optional[Dict[str, Any]]:
        donation = await self._lock_donation(donation_id, DonationType.PROCESSING)
        if not donation:
            await self.db.rollback()
            return None

        donation.tx_hash = tx_hash
        donation.is_onchain = True
        donation.wallet_address = self.settings.DONATION_WALLET_ADDRESS.lower()
        donation.donation_type = DonationType.ONCHAIN_PROCESSED
        await self.db.commit()

        donations_total.labels(kind=DonationType.ONCHAIN_PROCESSED.value).inc()
        logger.info(f"Donation {donation_id} moved on-chain ({tx_hash})")
        return {"donation_id": str(donation_id), "amount": donation.amount, "tx_hash": tx_hash}

    async def _release_processing(self, donation_id, reason: str) -> None:
        """Return a donation whose transfer moved nothing to the internal queue"""
        donation = await self._lock_donation(donation_id, DonationType.PROCESSING)
        if donation:
            donation.donation_type = DonationType.INTERNAL
            donation.tx_hash = None
        await self.db.commit()
        logger.warning(f"Donation {donation_id} returned to the internal queue: {reason}")

    async def process_internal_donations(self, limit: int = 20) -> Dict[str, Any]:
        """
        Move internal donations on-chain from the reward wallet (admin)

        Each donation runs like an on-chain claim: mark it PROCESSING and
        commit, submit the transfer, store the hash, then wait for the
        receipt. Donations an earlier run left PROCESSING are finished from
        their receipt and never transferred again; one without a hash has an
        unknown submission outcome and is reported for manual review.
        Stops at the first chain error.
        """
        chain = self._require_chain()
        processed: List[Dict[str, Any]] = []
        pending: List[str] = []
        needs_review: List[str] = []
        error = None

        for donation_id in await self._donation_ids(DonationType.PROCESSING, limit):
            donation = await self.db.get(DonationRecord, donation_id, populate_existing=True)
            if not donation.tx_hash:
                needs_review.append(str(donation_id))
                continue
            try:
                receipt = await chain.get_receipt(donation.tx_hash)
            except ChainError as e:
                error = str(e)
                logger.error(f"Receipt lookup for donation {donation_id} failed: {e}")
                break

            if receipt is None:
                pending.append(str(donation_id))
            elif not receipt.success:
                await self._release_processing(donation_id, f"transaction {donation.tx_hash} reverted")
            else:
                finished = await self._finish_processing(donation_id, donation.tx_hash)
                if finished:
                    processed.append(finished)

        for donation_id in ([] if error else await self._donation_ids(DonationType.INTERNAL, limit)):
            donation = await self._lock_donation(donation_id, DonationType.INTERNAL)
            if not donation:
                await self.db.rollback()
                continue
            amount = donation.amount
            donation.donation_type = DonationType.PROCESSING
            await self.db.commit()

            try:
                tx_hash = await chain.transfer(self.settings.DONATION_WALLET_ADDRESS, amount)
            except ChainTimeoutError as e:
                # The transfer may still land
                needs_review.append(str(donation_id))
                error = str(e)
                logger.error(f"Transfer for donation {donation_id} has an unknown outcome: {e}")
                break
            except ChainError as e:
                await self._release_processing(donation_id, str(e))
                error = str(e)
                logger.error(f"Moving donation {donation_id} on-chain failed: {e}")
                break

            donation.tx_hash = tx_hash.lower()
            await self.db.commit()

            try:
                await chain.wait_for_confirmation(donation.tx_hash, timeout=self.settings.CHAIN_CONFIRMATION_TIMEOUT)
            except ChainRevertedError as e:
                await self._release_processing(donation_id, str(e))
                error = str(e)
                break
            except ChainError as e:
                pending.append(str(donation_id))
                error = str(e)
                logger.warning(f"Donation {donation_id} ({donation.tx_hash}) awaiting confirmation: {e}")
                break

            finished = await self._finish_processing(donation_id, donation.tx_hash)
            if finished:
                processed.append(finished)

        return {
            "processed": processed,
            "total_amount": sum(p["amount"] for p in processed),
            "pending": pending,
            "needs_review": needs_review,
            "error": error,
        }

    async def list_donations(
        self,
        user_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Newest donations; anonymous donors are hidden from the public list"""
        stmt = select(DonationRecord)
        if user_id:
            stmt = stmt.where(DonationRecord.user_id == user_id)
        stmt = stmt.order_by(DonationRecord.created_at.desc()).limit(limit).offset(offset)

        result = await self.db.execute(stmt)
        donations = []
        for donation in result.scalars().all():
            data = self._to_dict(donation)
            if donation.is_anonymous and not user_id:
                data["user_id"] = None
                data["wallet_address"] = None
            donations.append(data)
        return donations

    async def get_totals(self) -> Dict[str, Any]:
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(DonationRecord.amount), 0),
                func.count(DonationRecord.id),
                func.count(func.distinct(DonationRecord.user_id)),
            )
        )
        total, count, donors = result.one()
        return {"total_amount": int(total), "donation_count": count, "donor_count": donors}
