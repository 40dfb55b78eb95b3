"""Wallet binding services"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import BadRequestException, WalletAlreadyBoundException, WalletNotEligibleException
from camly.services.eligibility import EligibilityService
from camly.services.ledger import LedgerService
from camly.utils.helpers import utc_now
from camly.utils.validators import normalize_wallet_address

logger = logging.getLogger(__name__)


class WalletService:
    """Service for one-way wallet binding"""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = LedgerService(db, self.settings)
        self.eligibility = EligibilityService(db, self.settings)

    @staticmethod
    def _normalize(wallet_address: str) -> str:
        try:
            return normalize_wallet_address(wallet_address)
        except ValueError as e:
            raise BadRequestException(str(e), error_code="INVALID_WALLET_ADDRESS")

    async def check_eligibility(self, user_id: str, wallet_address: str) -> Dict[str, Any]:
        address = self._normalize(wallet_address)
        result = await self.eligibility.check_wallet_eligibility(user_id, address)
        return {"wallet_address": address, **result}

    async def link_wallet(self, user_id: str, wallet_address: str) -> Dict[str, Any]:
        """
        Bind a wallet to the account

        Re-linking the same address is a no-op; a different address is
        refused once one is bound.
        """
        address = self._normalize(wallet_address)
        account = await self.ledger.lock_account(user_id)

        if account.wallet_address:
            if account.wallet_address != address:
                raise WalletAlreadyBoundException()
            await self.db.commit()
            return {
                "wallet_address": address,
                "linked_at": account.wallet_linked_at.isoformat() if account.wallet_linked_at else None,
                "already_linked": True,
            }

        result = await self.eligibility.check_wallet_eligibility(user_id, address)
        if not result["can_connect"]:
            raise WalletNotEligibleException(result["reason"])

        account.wallet_address = address
        account.wallet_linked_at = utc_now()
        await self.db.commit()

        logger.info(f"Wallet {address} linked to {user_id}")
        return {
            "wallet_address": address,
            "linked_at": account.wallet_linked_at.isoformat(),
            "already_linked": False,
        }
