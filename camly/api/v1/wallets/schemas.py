"""
Wallet schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional


class WalletRequest(BaseModel):
    wallet_address: str = Field(..., max_length=64)


class WalletEligibilityResponse(BaseModel):
    wallet_address: str
    can_connect: bool
    reason: Optional[str] = None


class WalletLinkResponse(BaseModel):
    wallet_address: str
    linked_at: Optional[str] = None
    already_linked: bool


class IpEligibilityResponse(BaseModel):
    ip_address: str
    is_eligible: bool
    reason: Optional[str] = None
