"""
CAMLY token chain client

Narrow boundary to the BSC network: token balance lookups, reward-wallet
transfers and confirmation waits. The settlement coordinator only depends on
the ChainClient interface; Web3ChainClient is the web3.py implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional
import asyncio
import logging

from eth_utils import to_checksum_address
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from camly.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]


class ChainError(Exception):
    """Chain call failed before anything was confirmed; safe to retry"""

    retryable = True


class ChainRejectedError(ChainError):
    """Transfer refused (signature declined, insufficient gas, bad recipient)"""

    retryable = False


class ChainTimeoutError(ChainError):
    """No confirmation inside the timeout; the transaction may still land"""

    retryable = True


class ChainRevertedError(ChainError):
    """Transaction was mined but reverted"""

    retryable = False


@dataclass
class TokenTransfer:
    from_address: str
    to_address: str
    amount: int


@dataclass
class ChainReceipt:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None
    transfers: List[TokenTransfer] = field(default_factory=list)


class ChainClient(ABC):
    """Interface the settlement coordinator uses to reach the chain"""

    @abstractmethod
    async def get_token_balance(self, address: str) -> int:
        """CAMLY balance of an address in whole token units"""

    @abstractmethod
    async def transfer(self, to_address: str, amount: int) -> str:
        """Submit a transfer from the reward wallet and return its hash"""

    @abstractmethod
    async def wait_for_confirmation(self, tx_hash: str, timeout: Optional[int] = None) -> ChainReceipt:
        """Block until the transaction is mined"""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        """Receipt if the transaction has been mined, otherwise None"""


class Web3ChainClient(ChainClient):
    """web3.py client with RPC endpoint fallback"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.decimals = self.settings.CAMLY_TOKEN_DECIMALS
        self._w3: Optional[AsyncWeb3] = None
        self._lock = asyncio.Lock()

    async def _connect(self) -> AsyncWeb3:
        """Return a connected provider, trying each configured RPC URL in order"""
        if self._w3 is not None:
            return self._w3

        async with self._lock:
            if self._w3 is not None:
                return self._w3

            for url in self.settings.CHAIN_RPC_URLS:
                w3 = AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": self.settings.CHAIN_RPC_TIMEOUT}))
                try:
                    if await w3.is_connected():
                        logger.info(f"Connected to chain RPC {url}")
                        self._w3 = w3
                        return w3
                except Exception as e:
                    logger.warning(f"RPC {url} unavailable: {e}")

        raise ChainError("No chain RPC endpoint reachable")

    def _contract(self, w3: AsyncWeb3):
        return w3.eth.contract(
            address=to_checksum_address(self.settings.CAMLY_CONTRACT_ADDRESS),
            abi=ERC20_ABI,
        )

    def to_raw(self, amount: int) -> int:
        return amount * 10 ** self.decimals

    def from_raw(self, raw: int) -> int:
        return raw // 10 ** self.decimals

    async def get_token_balance(self, address: str) -> int:
        w3 = await self._connect()
        try:
            raw = await self._contract(w3).functions.balanceOf(to_checksum_address(address)).call()
        except Web3Exception as e:
            raise ChainError(f"Balance lookup failed: {e}") from e
        return self.from_raw(raw)

    async def transfer(self, to_address: str, amount: int) -> str:
        if not self.settings.REWARD_WALLET_PRIVATE_KEY:
            raise ChainRejectedError("Reward wallet is not configured")

        w3 = await self._connect()

        try:
            account = w3.eth.account.from_key(self.settings.REWARD_WALLET_PRIVATE_KEY)
            nonce = await w3.eth.get_transaction_count(account.address, "pending")
            tx = await self._contract(w3).functions.transfer(
                to_checksum_address(to_address),
                self.to_raw(amount),
            ).build_transaction({
                "from": account.address,
                "nonce": nonce,
                "chainId": await w3.eth.chain_id,
                "gasPrice": await w3.eth.gas_price,
            })
            signed = w3.eth.account.sign_transaction(tx, self.settings.REWARD_WALLET_PRIVATE_KEY)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ContractLogicError, ValueError) as e:
            # Reverted during gas estimation or refused by the node
            raise ChainRejectedError(f"Transfer rejected: {e}") from e
        except Web3Exception as e:
            raise ChainError(f"Transfer submission failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ChainTimeoutError("Transfer submission timed out") from e
        except Exception as e:
            # Transport failures from the HTTP provider are not always wrapped by web3
            raise ChainError(f"Transfer submission failed: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Submitted transfer of {amount} CAMLY to {to_address}: {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_confirmation(self, tx_hash: str, timeout: Optional[int] = None) -> ChainReceipt:
        w3 = await self._connect()
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=timeout or self.settings.CHAIN_CONFIRMATION_TIMEOUT,
            )
        except TimeExhausted as e:
            raise ChainTimeoutError(f"Transaction {tx_hash} not confirmed in time") from e
        except Web3Exception as e:
            raise ChainError(f"Confirmation lookup failed: {e}") from e

        result = self._to_receipt(w3, tx_hash, receipt)
        if not result.success:
            raise ChainRevertedError(f"Transaction {tx_hash} reverted")
        return result

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        w3 = await self._connect()
        try:
            receipt = await w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Web3Exception as e:
            raise ChainError(f"Receipt lookup failed: {e}") from e
        return self._to_receipt(w3, tx_hash, receipt)

    def _to_receipt(self, w3: AsyncWeb3, tx_hash: str, receipt) -> ChainReceipt:
        events = self._contract(w3).events.Transfer().process_receipt(receipt, errors=DISCARD)
        return ChainReceipt(
            tx_hash=tx_hash.lower(),
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            transfers=[
                TokenTransfer(
                    from_address=event["args"]["from"].lower(),
                    to_address=event["args"]["to"].lower(),
                    amount=self.from_raw(event["args"]["value"]),
                )
                for event in events
            ],
        )


@lru_cache()
def get_chain_client() -> ChainClient:
    """Shared chain client (FastAPI dependency)"""
    return Web3ChainClient()
