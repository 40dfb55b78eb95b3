"""API v1 routes aggregation"""

from fastapi import APIRouter

from .rewards.router import router as rewards_router
from .claims.router import router as claims_router
from .donations.router import router as donations_router
from .wallets.router import router as wallets_router
from .admin.router import router as admin_router

# Create v1 router
api_router = APIRouter()

api_router.include_router(rewards_router, prefix="/rewards", tags=["Rewards"])
api_router.include_router(claims_router, prefix="/claims", tags=["Claims"])
api_router.include_router(donations_router, prefix="/donations", tags=["Donations"])
api_router.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
api_router.include_router(admin_router, prefix="/admin", tags=["Admin"])

# Export router
router = api_router
