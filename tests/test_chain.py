"""
Unit tests for Web3ChainClient error mapping.

Coverage targets:
- Unwrapped transport failures surface as retryable ChainError
- Node refusals surface as ChainRejectedError
- Missing reward wallet key is rejected before any RPC call
"""

from types import SimpleNamespace

import pytest

from camly.services.chain import ChainError, ChainRejectedError, Web3ChainClient

SIGNER = "0x" + "33" * 20


def _client(policy, eth):
    settings = policy.model_copy(update={"REWARD_WALLET_PRIVATE_KEY": "0x" + "01" * 32})
    client = Web3ChainClient(settings)
    client._w3 = SimpleNamespace(eth=eth)
    return client


def _eth(from_key=None, get_transaction_count=None):
    def default_from_key(key):
        return SimpleNamespace(address=SIGNER)

    return SimpleNamespace(
        account=SimpleNamespace(from_key=from_key or default_from_key),
        get_transaction_count=get_transaction_count,
    )


@pytest.mark.asyncio
async def test_connection_error_is_retryable(policy):
    async def dropped(address, block):
        raise ConnectionError("connection reset by peer")

    client = _client(policy, _eth(get_transaction_count=dropped))

    with pytest.raises(ChainError) as exc_info:
        await client.transfer("0x" + "11" * 20, 100)
    assert type(exc_info.value) is ChainError
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_signer_failure_is_retryable(policy):
    def broken(key):
        raise RuntimeError("keystore unavailable")

    client = _client(policy, _eth(from_key=broken))

    with pytest.raises(ChainError) as exc_info:
        await client.transfer("0x" + "11" * 20, 100)
    assert type(exc_info.value) is ChainError


@pytest.mark.asyncio
async def test_node_refusal_is_rejected(policy):
    async def refused(address, block):
        raise ValueError({"code": -32000, "message": "insufficient funds for gas"})

    client = _client(policy, _eth(get_transaction_count=refused))

    with pytest.raises(ChainRejectedError):
        await client.transfer("0x" + "11" * 20, 100)


@pytest.mark.asyncio
async def test_transfer_without_reward_key(policy):
    client = Web3ChainClient(policy.model_copy(update={"REWARD_WALLET_PRIVATE_KEY": ""}))

    with pytest.raises(ChainRejectedError):
        await client.transfer("0x" + "11" * 20, 100)
    assert client._w3 is None
