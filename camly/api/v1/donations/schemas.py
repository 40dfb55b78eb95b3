"""
Donation schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class InternalDonationRequest(BaseModel):
    amount: int = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=500)
    is_anonymous: bool = False


class OnchainDonationPrepareRequest(BaseModel):
    wallet_address: str = Field(..., max_length=64)
    amount: int = Field(..., gt=0)


class OnchainDonationPrepareResponse(BaseModel):
    to_address: str
    token_address: str
    amount: int
    wallet_balance: int


class OnchainDonationConfirmRequest(BaseModel):
    """User-submitted donation transfer to confirm by hash"""
    tx_hash: str = Field(..., max_length=80)
    wallet_address: str = Field(..., max_length=64)
    amount: int = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=500)
    is_anonymous: bool = False


class DonationResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    amount: int
    message: Optional[str] = None
    is_anonymous: bool
    is_onchain: bool
    tx_hash: Optional[str] = None
    wallet_address: Optional[str] = None
    donation_type: str
    explorer_url: Optional[str] = None
    created_at: datetime
    new_wallet_balance: Optional[int] = None


class DonationTotalsResponse(BaseModel):
    total_amount: int
    donation_count: int
    donor_count: int


class ProcessedDonation(BaseModel):
    donation_id: str
    amount: int
    tx_hash: str


class ProcessDonationsResponse(BaseModel):
    processed: List[ProcessedDonation]
    total_amount: int
    pending: List[str] = []
    needs_review: List[str] = []
    error: Optional[str] = None
