"""
Admin API routes
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime

from camly.core.config import Settings, get_settings
from camly.core.database import get_db
from camly.core.security import require_admin
from camly.services.accrual import AccrualService
from camly.services.audit_service import AuditAction, AuditService
from camly.services.chain import ChainClient, get_chain_client
from camly.services.ledger import LedgerService
from camly.api.v1.claims.schemas import ClaimResponse, ExpireStaleResponse, ReplaySettlementRequest, ReconcileResponse
from camly.api.v1.claims.services import ClaimService
from camly.api.v1.donations.schemas import ProcessDonationsResponse
from camly.api.v1.donations.services import DonationService
from camly.api.v1.rewards.schemas import ComboChallengeCreate

from .schemas import (
    ResetAccountRequest,
    ResetAccountResponse,
    BlacklistWalletRequest,
    BlacklistWalletResponse,
    LedgerReconcileResponse,
    AuditLogResponse,
)
from .services import AdminService

router = APIRouter()


@router.post("/accounts/{user_id}/reset", response_model=ResetAccountResponse, summary="Reset reward balances")
async def reset_account(
    user_id: str,
    data: ResetAccountRequest,
    request: Request,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Zero every balance of an account; audited"""
    return await AdminService(db).reset_account(current_admin["id"], user_id, data.reason, request=request)


@router.get("/accounts/{user_id}/reconcile", response_model=LedgerReconcileResponse, summary="Ledger reconciliation")
async def reconcile_account(
    user_id: str,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LedgerService(db).reconcile(user_id)


@router.post("/wallets/blacklist", response_model=BlacklistWalletResponse, summary="Blacklist a wallet")
async def blacklist_wallet(
    data: BlacklistWalletRequest,
    request: Request,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AdminService(db).blacklist_wallet(
        current_admin["id"], data.wallet_address, data.reason, request=request
    )


@router.post("/claims/replay", response_model=ClaimResponse, summary="Replay settlement")
async def replay_settlement(
    data: ReplaySettlementRequest,
    request: Request,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    """Settle a claim with a known transaction hash; a no-op if already settled"""
    result = await ClaimService(db, chain=chain, settings=settings).replay_settlement(
        claim_id=data.claim_id, tx_hash=data.tx_hash
    )
    await AdminService(db).log_action(
        current_admin["id"],
        action=AuditAction.REPLAY_SETTLEMENT,
        entity_id=result["claim_id"],
        description=f"Replayed settlement, claim now {result['status']}",
        new_values={"status": result["status"], "tx_hash": result["tx_hash"]},
        request=request,
    )
    return result


@router.post("/claims/reconcile", response_model=ReconcileResponse, summary="Reconcile in-flight claims")
async def reconcile_claims(
    min_age_seconds: Optional[int] = Query(None, ge=0),
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    service = ClaimService(db, chain=chain, settings=settings)
    return await service.reconcile_pending(min_age_seconds=min_age_seconds)


@router.post("/claims/expire-stale", response_model=ExpireStaleResponse, summary="Fail stale claim submissions")
async def expire_stale_claims(
    request: Request,
    older_than_seconds: Optional[int] = Query(None, ge=0),
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Release the reservation of SUBMITTING claims that never got a transaction hash"""
    result = await ClaimService(db, settings=settings).expire_stale_submissions(older_than_seconds)
    if result["expired"]:
        await AdminService(db).log_action(
            current_admin["id"],
            action=AuditAction.EXPIRE_STALE_CLAIMS,
            entity_id="batch",
            description=f"Failed {result['count']} claims stuck without a transaction hash",
            new_values={"claim_ids": result["expired"]},
            request=request,
        )
    return result


@router.post("/games/{game_id}/approve", summary="Approve an uploaded game")
async def approve_game(
    game_id: str,
    request: Request,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Approve the upload and pay the creator's upload reward"""
    result = await AccrualService(db, settings).approve_upload(game_id)
    await AdminService(db).log_action(
        current_admin["id"],
        action=AuditAction.APPROVE_GAME,
        entity_id=game_id,
        description=f"Approved game, paid {result['amount']} CAMLY to {result['creator_id']}",
        new_values={"status": "approved"},
        request=request,
    )
    return result


@router.post("/games/{game_id}/reject", summary="Reject an uploaded game")
async def reject_game(
    game_id: str,
    request: Request,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await AccrualService(db).reject_upload(game_id)
    await AdminService(db).log_action(
        current_admin["id"],
        action=AuditAction.REJECT_GAME,
        entity_id=game_id,
        description="Rejected game",
        new_values={"status": "rejected"},
        request=request,
    )
    return result


@router.post("/combo-challenges", status_code=status.HTTP_201_CREATED, summary="Create a combo challenge")
async def create_combo_challenge(
    data: ComboChallengeCreate,
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    challenge = await AccrualService(db).create_combo_challenge(
        data.title, data.target_combo, data.prize_amount, period_type=data.period_type
    )
    return challenge.to_dict()


@router.post("/donations/process", response_model=ProcessDonationsResponse, summary="Move internal donations on-chain")
async def process_internal_donations(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    settings: Settings = Depends(get_settings),
):
    result = await DonationService(db, chain=chain, settings=settings).process_internal_donations(limit=limit)
    if result["processed"]:
        await AdminService(db).log_action(
            current_admin["id"],
            action=AuditAction.PROCESS_DONATIONS,
            entity_id="batch",
            description=f"Moved {len(result['processed'])} donations on-chain ({result['total_amount']} CAMLY)",
            new_values={"tx_hashes": [p["tx_hash"] for p in result["processed"]]},
            request=request,
        )
    return result


@router.get("/audit-logs", response_model=List[AuditLogResponse], summary="Audit log")
async def get_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AuditService(db).search(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        since=since,
        limit=limit,
        offset=offset,
    )
