"""
Fraud-eligibility checks

Wallet checks fail closed: any doubt blocks the binding. IP checks fail
open: a lookup failure lets the action through and logs a warning.
"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.models import UserReward, WalletBlacklist, IpBlacklist, IpRegistration

logger = logging.getLogger(__name__)


class EligibilityService:
    """Database-backed wallet and IP eligibility gates"""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def check_wallet_eligibility(self, user_id: str, wallet_address: str) -> Dict[str, Any]:
        """
        Decide whether a wallet may be bound to a user

        Args:
            user_id: Account asking to bind
            wallet_address: Normalized (lowercase) address

        Returns:
            {"can_connect": bool, "reason": str | None}
        """
        try:
            result = await self.db.execute(
                select(WalletBlacklist.reason).where(WalletBlacklist.wallet_address == wallet_address)
            )
            blacklisted = result.first()
            if blacklisted:
                return {"can_connect": False, "reason": "Wallet address is blacklisted"}

            result = await self.db.execute(
                select(func.count(UserReward.id)).where(
                    UserReward.wallet_address == wallet_address,
                    UserReward.user_id != user_id,
                )
            )
            bound_elsewhere = result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Wallet eligibility check failed for {wallet_address}: {e}")
            return {"can_connect": False, "reason": "Wallet eligibility could not be verified"}

        if bound_elsewhere >= self.settings.MAX_ACCOUNTS_PER_WALLET:
            return {
                "can_connect": False,
                "reason": "Wallet is already linked to another account",
            }

        return {"can_connect": True, "reason": None}

    async def check_ip_eligibility(self, ip_address: Optional[str], user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Decide whether an IP may earn rewards

        An IP already registered for this user stays eligible; otherwise it is
        blocked once it has MAX_ACCOUNTS_PER_IP accounts.
        """
        if not ip_address or ip_address == "unknown":
            return {"is_eligible": True, "reason": None}

        try:
            result = await self.db.execute(
                select(IpBlacklist.reason).where(IpBlacklist.ip_address == ip_address)
            )
            if result.first():
                return {"is_eligible": False, "reason": "IP address is blacklisted"}

            result = await self.db.execute(
                select(IpRegistration.user_id).where(IpRegistration.ip_address == ip_address)
            )
            registered = {row[0] for row in result.all()}
        except SQLAlchemyError as e:
            logger.warning(f"IP eligibility check failed for {ip_address}, allowing: {e}")
            return {"is_eligible": True, "reason": None}

        if user_id and user_id in registered:
            return {"is_eligible": True, "reason": None}

        if len(registered) >= self.settings.MAX_ACCOUNTS_PER_IP:
            return {
                "is_eligible": False,
                "reason": f"Too many accounts from this IP address (max {self.settings.MAX_ACCOUNTS_PER_IP})",
            }

        return {"is_eligible": True, "reason": None}

    async def register_ip(self, ip_address: Optional[str], user_id: str) -> None:
        """Remember that an account was seen from an IP"""
        if not ip_address or ip_address == "unknown":
            return

        result = await self.db.execute(
            select(IpRegistration.id).where(
                IpRegistration.ip_address == ip_address,
                IpRegistration.user_id == user_id,
            )
        )
        if result.first():
            return

        self.db.add(IpRegistration(ip_address=ip_address, user_id=user_id))
        await self.db.flush()

    async def blacklist_wallet(
        self,
        wallet_address: str,
        reason: Optional[str] = None,
        blacklisted_by: Optional[str] = None,
    ) -> WalletBlacklist:
        result = await self.db.execute(
            select(WalletBlacklist).where(WalletBlacklist.wallet_address == wallet_address)
        )
        entry = result.scalar_one_or_none()
        if entry:
            return entry

        entry = WalletBlacklist(
            wallet_address=wallet_address,
            reason=reason,
            blacklisted_by=blacklisted_by,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.warning(f"Wallet {wallet_address} blacklisted by {blacklisted_by}: {reason}")
        return entry
