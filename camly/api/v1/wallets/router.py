"""
Wallet API routes
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.database import get_db
from camly.core.security import get_current_user, get_client_ip
from camly.services.eligibility import EligibilityService

from .schemas import WalletRequest, WalletEligibilityResponse, WalletLinkResponse, IpEligibilityResponse
from .services import WalletService

router = APIRouter()


@router.post("/eligibility", response_model=WalletEligibilityResponse, summary="Check wallet eligibility")
async def check_wallet_eligibility(
    data: WalletRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await WalletService(db, settings).check_eligibility(current_user["id"], data.wallet_address)


@router.post("/link", response_model=WalletLinkResponse, summary="Link wallet")
async def link_wallet(
    data: WalletRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Bind a wallet to the account; a bound wallet cannot be replaced"""
    return await WalletService(db, settings).link_wallet(current_user["id"], data.wallet_address)


@router.get("/ip-eligibility", response_model=IpEligibilityResponse, summary="Check IP eligibility")
async def check_ip_eligibility(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    ip_address = get_client_ip(request)
    result = await EligibilityService(db, settings).check_ip_eligibility(ip_address, current_user["id"])
    return {"ip_address": ip_address, **result}
