"""Administrative reward operations, each written to the audit log"""

from typing import Any, Dict, Optional
import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.exceptions import BadRequestException
from camly.services.audit_service import AuditAction, AuditService
from camly.services.eligibility import EligibilityService
from camly.services.ledger import LedgerService
from camly.utils.validators import normalize_wallet_address

logger = logging.getLogger(__name__)


class AdminService:
    """Service for audited admin actions on reward accounts"""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = LedgerService(db, self.settings)
        self.audit = AuditService(db)

    async def reset_account(
        self,
        admin_id: str,
        user_id: str,
        reason: str,
        request: Optional[Request] = None,
    ) -> Dict[str, Any]:
        """Zero a user's balances; the reset and its audit row commit together"""
        old_values = await self.ledger.reset_account(user_id)
        new_values = {key: 0 for key in old_values}

        await self.audit.record(
            admin_id=admin_id,
            action=AuditAction.RESET_REWARDS,
            entity_id=user_id,
            description=f"Reset reward balances: {reason}",
            old_values=old_values,
            new_values=new_values,
            request=request,
        )
        await self.db.commit()

        return {"user_id": user_id, "old_values": old_values, "new_values": new_values}

    async def blacklist_wallet(
        self,
        admin_id: str,
        wallet_address: str,
        reason: str,
        request: Optional[Request] = None,
    ) -> Dict[str, Any]:
        try:
            address = normalize_wallet_address(wallet_address)
        except ValueError as e:
            raise BadRequestException(str(e), error_code="INVALID_WALLET_ADDRESS")

        entry = await EligibilityService(self.db, self.settings).blacklist_wallet(
            address, reason=reason, blacklisted_by=admin_id
        )
        await self.audit.record(
            admin_id=admin_id,
            action=AuditAction.BLACKLIST_WALLET,
            entity_id=address,
            description=f"Blacklisted wallet: {reason}",
            new_values={"wallet_address": address, "reason": reason},
            request=request,
        )
        await self.db.commit()

        return {"wallet_address": entry.wallet_address, "reason": entry.reason, "blacklisted": True}

    async def log_action(
        self,
        admin_id: str,
        action: AuditAction,
        entity_id: str,
        description: str,
        new_values: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> None:
        """Audit an action whose own service already committed"""
        await self.audit.record(
            admin_id=admin_id,
            action=action,
            entity_id=entity_id,
            description=description,
            new_values=new_values,
            request=request,
        )
        await self.db.commit()
