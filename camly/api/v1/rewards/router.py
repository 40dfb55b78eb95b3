"""
Reward API routes
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from camly.core.config import Settings, get_settings
from camly.core.database import get_db
from camly.core.security import get_current_user, get_client_ip
from camly.services.accrual import AccrualService
from camly.services.ledger import LedgerService

from .schemas import (
    AccountResponse,
    TransactionResponse,
    TransactionListResponse,
    CheckinResponse,
    PlaySessionRequest,
    PlaySessionResponse,
    FirstPlayRequest,
    FirstPlayResponse,
    GameUploadRequest,
    MilestoneClaimRequest,
    MilestoneClaimResponse,
    ComboRequest,
    ComboResponse,
    ReferralRegisterRequest,
    ReferralStatsResponse,
    ReferralTierClaimResponse,
)

router = APIRouter()


@router.get("/me", response_model=AccountResponse, summary="Reward balances")
async def get_my_rewards(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Pending, claimed and wallet balances with today's claim allowance"""
    return await LedgerService(db, settings).get_summary(current_user["id"])


@router.get("/history", response_model=TransactionListResponse, summary="Reward history")
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entries = await LedgerService(db).get_history(current_user["id"], limit=limit, offset=offset)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.post("/checkin", response_model=CheckinResponse, summary="Daily check-in")
async def daily_checkin(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.daily_checkin(current_user["id"], ip_address=get_client_ip(request))


@router.post("/play", response_model=PlaySessionResponse, summary="Record a play session")
async def record_play_session(
    data: PlaySessionRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.record_play_session(
        current_user["id"],
        data.game_id,
        data.duration_seconds,
        category=data.category,
        age=current_user.get("age"),
        ip_address=get_client_ip(request),
    )


@router.post("/first-play", response_model=FirstPlayResponse, summary="First play of a game")
async def claim_first_play(
    data: FirstPlayRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.claim_first_play(
        current_user["id"],
        data.game_id,
        age=current_user.get("age"),
        ip_address=get_client_ip(request),
    )


@router.post("/games", status_code=status.HTTP_201_CREATED, summary="Register an uploaded game")
async def register_game(
    data: GameUploadRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    game = await AccrualService(db, settings).register_game(
        data.game_id, current_user["id"], title=data.title, category=data.category
    )
    return game.to_dict()


@router.post("/milestones/claim", response_model=MilestoneClaimResponse, summary="Claim a play milestone")
async def claim_milestone(
    data: MilestoneClaimRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.claim_milestone(current_user["id"], data.game_id, data.milestone)


@router.post("/combos", response_model=ComboResponse, summary="Record a combo")
async def record_combo(
    data: ComboRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.record_combo(current_user["id"], str(data.challenge_id), data.combo)


@router.get("/referrals", response_model=ReferralStatsResponse, summary="Referral stats")
async def get_referral_stats(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualService(db).get_referral_stats(current_user["id"])


@router.post("/referrals/register", summary="Register the code that referred me")
async def register_referral(
    data: ReferralRegisterRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.register_referral(current_user["id"], data.referral_code)


@router.post("/referrals/tiers/claim", response_model=ReferralTierClaimResponse, summary="Claim referral tiers")
async def claim_referral_tiers(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AccrualService(db, settings)
    return await service.claim_referral_tiers(current_user["id"])
