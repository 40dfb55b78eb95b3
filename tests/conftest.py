"""Shared fixtures: in-memory database, policy settings and a fake chain"""

from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from camly.core.config import get_settings
from camly.core.database import get_db
from camly.core.security import SecurityUtils
from camly.models import Base
from camly.services.chain import (
    ChainClient,
    ChainError,
    ChainReceipt,
    ChainRevertedError,
    ChainTimeoutError,
    TokenTransfer,
    get_chain_client,
)

REWARD_WALLET = "0x" + "11" * 20
USER_WALLET = "0x" + "ab" * 20
OTHER_WALLET = "0x" + "cd" * 20


class FakeChainClient(ChainClient):
    """In-memory chain: transfers are mined instantly unless told otherwise"""

    def __init__(self):
        self.balances: Dict[str, int] = {}
        self.receipts: Dict[str, ChainReceipt] = {}
        self.transfers: List[Tuple[str, int, str]] = []
        self.transfer_error: Optional[ChainError] = None
        self.confirmation_error: Optional[ChainError] = None
        self.revert_next = False

    def _next_hash(self) -> str:
        return "0x" + f"{len(self.transfers) + len(self.receipts) + 1:064x}"

    def add_receipt(self, from_address: str, to_address: str, amount: int, success: bool = True) -> str:
        """Register a transfer submitted outside this client (user-signed)"""
        tx_hash = self._next_hash()
        self.receipts[tx_hash] = ChainReceipt(
            tx_hash=tx_hash,
            success=success,
            block_number=1,
            transfers=[TokenTransfer(from_address.lower(), to_address.lower(), amount)],
        )
        return tx_hash

    async def get_token_balance(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    async def transfer(self, to_address: str, amount: int) -> str:
        if self.transfer_error:
            raise self.transfer_error
        tx_hash = self._next_hash()
        self.transfers.append((to_address.lower(), amount, tx_hash))
        self.receipts[tx_hash] = ChainReceipt(
            tx_hash=tx_hash,
            success=not self.revert_next,
            block_number=len(self.transfers),
            transfers=[TokenTransfer(REWARD_WALLET, to_address.lower(), amount)],
        )
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str, timeout: Optional[int] = None) -> ChainReceipt:
        if self.confirmation_error:
            raise self.confirmation_error
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise ChainTimeoutError(f"Transaction {tx_hash} not confirmed in time")
        if not receipt.success:
            raise ChainRevertedError(f"Transaction {tx_hash} reverted")
        return receipt

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        return self.receipts.get(tx_hash)


@pytest.fixture
def policy():
    """Small policy values that keep scenarios readable"""
    return get_settings().model_copy(update={
        "DAILY_CHECKIN_REWARD": 100,
        "DAILY_CLAIM_LIMIT": 5000,
        "MIN_CLAIM_AMOUNT": 1,
        "MIN_DONATION_AMOUNT": 10,
        "NEW_GAME_BONUS": 500,
        "PLAY_REWARD_PER_MINUTE": 100,
        "MIN_SESSION_SECONDS": 60,
        "AGE_DAILY_CAPS": {"3-6": 300, "7-12": 600, "13-17": 900, "18+": 1500},
        "REFERRAL_REWARD": 250,
        "REFERRAL_TIERS": {"bronze": [1, 1000], "silver": [2, 2000]},
        "UPLOAD_REWARD": 5000,
        "MAX_DAILY_UPLOAD_REWARDS": 2,
        "CREATOR_FIRST_PLAY_BONUS": 100,
        "CREATOR_DAILY_CAP": 150,
        "CREATOR_MILESTONES": {2: 700, 3: 900},
        "MAX_ACCOUNTS_PER_IP": 2,
        "MAX_ACCOUNTS_PER_WALLET": 1,
        "DONATION_WALLET_ADDRESS": "0x" + "22" * 20,
        "RECONCILE_MIN_AGE_SECONDS": 0,
    })


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest_asyncio.fixture
async def client(session_factory, policy, chain):
    """API client wired to the test database, policy and fake chain"""
    from camly.main import app
    from camly.middleware.rate_limit import limiter

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: policy
    app.dependency_overrides[get_chain_client] = lambda: chain
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(user_id: str, role: Optional[str] = None, age: Optional[int] = None) -> Dict[str, str]:
    data = {"sub": user_id}
    if role:
        data["role"] = role
    if age is not None:
        data["age"] = age
    return {"Authorization": f"Bearer {SecurityUtils.create_access_token(data)}"}
