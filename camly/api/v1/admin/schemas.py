"""
Admin schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid


class ResetAccountRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class ResetAccountResponse(BaseModel):
    user_id: str
    old_values: Dict[str, int]
    new_values: Dict[str, int]


class BlacklistWalletRequest(BaseModel):
    wallet_address: str = Field(..., max_length=64)
    reason: str = Field(..., min_length=3, max_length=500)


class BlacklistWalletResponse(BaseModel):
    wallet_address: str
    reason: Optional[str] = None
    blacklisted: bool


class LedgerReconcileResponse(BaseModel):
    """Balances against the sums of the transaction log"""
    user_id: str
    pending_amount: int
    claimed_amount: int
    total_earned: int
    logged_credits: int
    logged_settlements: int
    balanced: bool
    reset_adjustments: int


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    admin_id: str
    action: str
    entity_type: str
    entity_id: str
    description: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
