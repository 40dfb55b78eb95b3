"""
Audit trail for admin actions on the reward ledger

Every action that moves or releases value outside a user's own request
(balance resets, settlement replays, stale-claim expiry, donation batches)
is written here in the same transaction as the change it describes.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import enum
import uuid

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.security import get_client_ip
from camly.models.admin_log import AdminLog


class AuditAction(str, enum.Enum):
    RESET_REWARDS = "reset_rewards"
    BLACKLIST_WALLET = "blacklist_wallet"
    REPLAY_SETTLEMENT = "replay_settlement"
    EXPIRE_STALE_CLAIMS = "expire_stale_claims"
    APPROVE_GAME = "approve_game"
    REJECT_GAME = "reject_game"
    PROCESS_DONATIONS = "process_donations"


# Entity each action is recorded against
ACTION_ENTITIES = {
    AuditAction.RESET_REWARDS: "user_rewards",
    AuditAction.BLACKLIST_WALLET: "wallet",
    AuditAction.REPLAY_SETTLEMENT: "claim",
    AuditAction.EXPIRE_STALE_CLAIMS: "claim",
    AuditAction.APPROVE_GAME: "game",
    AuditAction.REJECT_GAME: "game",
    AuditAction.PROCESS_DONATIONS: "donation",
}


def _json_safe(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if values is None:
        return None
    safe = {}
    for key, value in values.items():
        if isinstance(value, (uuid.UUID, datetime, enum.Enum)):
            value = value.value if isinstance(value, enum.Enum) else str(value)
        elif isinstance(value, list):
            value = [str(item) if isinstance(item, uuid.UUID) else item for item in value]
        safe[key] = value
    return safe


class AuditService:
    """Writes and queries the admin audit trail"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        admin_id: str,
        action: AuditAction,
        entity_id: str,
        description: str,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> AdminLog:
        """
        Add an audit row for an admin action

        Only flushes: the row commits together with the change it describes.
        """
        action = AuditAction(action)
        log = AdminLog(
            admin_id=admin_id,
            action=action.value,
            entity_type=ACTION_ENTITIES[action],
            entity_id=str(entity_id),
            description=description,
            old_values=_json_safe(old_values),
            new_values=_json_safe(new_values),
            ip_address=get_client_ip(request) if request else None,
            user_agent=(request.headers.get("User-Agent") or "")[:500] if request else None,
        )
        self.db.add(log)
        await self.db.flush()
        return log

    async def search(
        self,
        admin_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AdminLog]:
        """Newest audit rows matching every given filter"""
        stmt = select(AdminLog)
        if admin_id:
            stmt = stmt.where(AdminLog.admin_id == admin_id)
        if action:
            stmt = stmt.where(AdminLog.action == action)
        if entity_type:
            stmt = stmt.where(AdminLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AdminLog.entity_id == str(entity_id))
        if since:
            stmt = stmt.where(AdminLog.created_at >= since)

        stmt = stmt.order_by(AdminLog.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
