"""
Claim schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class InternalClaimRequest(BaseModel):
    """Claim pending CAMLY into the internal wallet balance"""
    amount: int = Field(..., gt=0)


class OnchainClaimRequest(BaseModel):
    """Claim pending CAMLY to the linked wallet"""
    amount: int = Field(..., gt=0)
    wallet_address: Optional[str] = Field(None, max_length=64)


class ReplaySettlementRequest(BaseModel):
    claim_id: Optional[str] = None
    tx_hash: Optional[str] = Field(None, max_length=80)


class ClaimResponse(BaseModel):
    """Outcome of a claim attempt"""
    success: bool
    claim_id: str
    kind: str
    status: str
    requested_amount: int
    amount: int
    capped: bool
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    error_message: Optional[str] = None

    new_pending: Optional[int] = None
    new_claimed: Optional[int] = None
    wallet_balance: Optional[int] = None
    daily_remaining: Optional[int] = None

    already_settled: bool = False
    pending_reconciliation: bool = False
    needs_manual_review: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "claim_id": "5b1f7c1e-3c1b-4a55-a1de-0e4c1f0c9a11",
                "kind": "onchain",
                "status": "settled",
                "requested_amount": 50000,
                "amount": 50000,
                "capped": False,
                "tx_hash": "0x" + "ab" * 32,
                "explorer_url": "https://bscscan.com/tx/0x" + "ab" * 32,
                "new_pending": 0,
                "new_claimed": 50000,
            }
        }


class ClaimStatusResponse(BaseModel):
    pending_amount: int
    reserved_amount: int
    claimable_amount: int
    daily_claimed: int
    daily_limit: int
    daily_remaining: int
    wallet_address: Optional[str] = None


class ReconcileResponse(BaseModel):
    checked: int
    settled: int
    failed: int
    pending: int
    errors: int


class ExpireStaleResponse(BaseModel):
    expired: List[str]
    count: int
