"""
Donation API routes
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from camly.core.config import Settings, get_settings
from camly.core.database import get_db
from camly.core.security import get_current_user
from camly.middleware.rate_limit import claim_limiter
from camly.services.chain import ChainClient, get_chain_client

from .schemas import (
    InternalDonationRequest,
    OnchainDonationPrepareRequest,
    OnchainDonationPrepareResponse,
    OnchainDonationConfirmRequest,
    DonationResponse,
    DonationTotalsResponse,
)
from .services import DonationService

router = APIRouter()


@router.post(
    "/internal",
    response_model=DonationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Donate from internal wallet"
)
@claim_limiter
async def donate_internal(
    request: Request,
    data: InternalDonationRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = DonationService(db, settings=settings)
    return await service.donate_internal(
        current_user["id"],
        data.amount,
        message=data.message,
        is_anonymous=data.is_anonymous,
    )


@router.post("/onchain/prepare", response_model=OnchainDonationPrepareResponse, summary="Check an on-chain donation")
async def prepare_onchain_donation(
    data: OnchainDonationPrepareRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    """Validate the amount against the wallet's token balance and return the transfer target"""
    service = DonationService(db, chain=chain, settings=settings)
    return await service.prepare_onchain_donation(current_user["id"], data.wallet_address, data.amount)


@router.post(
    "/onchain/confirm",
    response_model=DonationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Confirm an on-chain donation"
)
@claim_limiter
async def confirm_onchain_donation(
    request: Request,
    data: OnchainDonationConfirmRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    service = DonationService(db, chain=chain, settings=settings)
    return await service.confirm_onchain_donation(
        current_user["id"],
        data.tx_hash,
        data.wallet_address,
        data.amount,
        message=data.message,
        is_anonymous=data.is_anonymous,
    )


@router.get("/", response_model=List[DonationResponse], summary="Recent donations")
async def list_donations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    return await DonationService(db).list_donations(limit=limit, offset=offset)


@router.get("/me", response_model=List[DonationResponse], summary="My donations")
async def list_my_donations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DonationService(db).list_donations(user_id=current_user["id"], limit=limit, offset=offset)


@router.get("/totals", response_model=DonationTotalsResponse, summary="Platform donation totals")
async def get_totals(db: AsyncSession = Depends(get_db)):
    return await DonationService(db).get_totals()
