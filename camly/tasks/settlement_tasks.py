"""Settlement reconciliation tasks"""

from typing import Any, Dict, Optional
import asyncio
import logging

from camly.core.celery_app import celery_app
from camly.core.database import get_db_context
from camly.api.v1.claims.services import ClaimService
from camly.services.chain import Web3ChainClient

logger = logging.getLogger(__name__)


async def _reconcile(min_age_seconds: Optional[int] = None) -> Dict[str, Any]:
    # Fresh client per run: each task runs on its own event loop
    async with get_db_context() as db:
        service = ClaimService(db, chain=Web3ChainClient())
        return await service.reconcile_pending(min_age_seconds=min_age_seconds)


@celery_app.task(name="camly.tasks.settlement_tasks.reconcile_pending_claims")
def reconcile_pending_claims(min_age_seconds: Optional[int] = None) -> Dict[str, Any]:
    """Settle claims whose transfer was submitted but never recorded in the ledger"""
    try:
        return asyncio.run(_reconcile(min_age_seconds))
    except Exception as e:
        logger.error(f"Error reconciling pending claims: {str(e)}")
        raise

