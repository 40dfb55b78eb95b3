"""
Claim API routes
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from camly.core.config import Settings, get_settings
from camly.core.database import get_db
from camly.core.security import get_current_user
from camly.middleware.rate_limit import claim_limiter
from camly.services.chain import ChainClient, get_chain_client

from .schemas import (
    InternalClaimRequest,
    OnchainClaimRequest,
    ClaimResponse,
    ClaimStatusResponse,
)
from .services import ClaimService

router = APIRouter()


@router.get("/status", response_model=ClaimStatusResponse, summary="Claimable amount")
async def get_claim_status(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Pending balance, in-flight reservations and today's remaining allowance"""
    return await ClaimService(db, settings=settings).get_claim_status(current_user["id"])


@router.post(
    "/internal",
    response_model=ClaimResponse,
    summary="Claim to internal wallet",
    description="Move pending CAMLY to the internal wallet balance; truncated to the remaining daily allowance"
)
@claim_limiter
async def claim_internal(
    request: Request,
    data: InternalClaimRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = ClaimService(db, settings=settings)
    return await service.claim_internal(current_user["id"], data.amount)


@router.post(
    "/onchain",
    response_model=ClaimResponse,
    summary="Claim to linked wallet",
    description="Transfer pending CAMLY on-chain; settles once the transfer is confirmed"
)
@claim_limiter
async def claim_onchain(
    request: Request,
    data: OnchainClaimRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    service = ClaimService(db, chain=chain, settings=settings)
    return await service.claim_onchain(current_user["id"], data.amount, wallet_address=data.wallet_address)


@router.get("/", response_model=List[ClaimResponse], summary="My claims")
async def list_claims(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ClaimService(db).list_claims(current_user["id"], limit=limit, offset=offset)


@router.get("/{claim_id}", response_model=ClaimResponse, summary="Claim details")
async def get_claim(
    claim_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ClaimService(db).get_claim(claim_id, user_id=current_user["id"])


@router.post("/{claim_id}/settle", response_model=ClaimResponse, summary="Retry settlement of my claim")
async def settle_my_claim(
    claim_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    """Catch up a claim whose transfer was submitted but never recorded"""
    service = ClaimService(db, chain=chain, settings=settings)
    await service.get_claim(claim_id, user_id=current_user["id"])
    return await service.replay_settlement(claim_id=claim_id)
