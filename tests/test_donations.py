"""Tests for DonationService"""

import pytest

from camly.api.v1.donations.services import DonationService
from camly.api.v1.wallets.services import WalletService
from camly.core.exceptions import (
    AmountBelowMinimumException,
    BadRequestException,
    ChainUnavailableException,
    ConflictException,
    InsufficientBalanceException,
    WalletAlreadyBoundException,
)
from camly.models import RewardType
from camly.services.chain import ChainError, ChainTimeoutError
from camly.services.ledger import LedgerService

from conftest import OTHER_WALLET, USER_WALLET

DONATION_WALLET = "0x" + "22" * 20


async def _wallet_balance(db, policy, user_id="kid-1", amount=500):
    ledger = LedgerService(db, policy)
    await ledger.apply_credit(user_id, amount, RewardType.GAME_PLAY, "Played")
    await ledger.settle_claim(user_id, amount, idempotency_key=f"claim:{user_id}")
    await db.commit()


@pytest.mark.asyncio
async def test_internal_donation_debits_wallet_balance(db, policy):
    await _wallet_balance(db, policy)
    service = DonationService(db, settings=policy)

    result = await service.donate_internal("kid-1", 120, message="  for   the kids ", is_anonymous=True)

    assert result["amount"] == 120
    assert result["message"] == "for the kids"
    assert result["is_onchain"] is False
    assert result["new_wallet_balance"] == 380


@pytest.mark.asyncio
async def test_internal_donation_below_minimum(db, policy):
    await _wallet_balance(db, policy)
    with pytest.raises(AmountBelowMinimumException):
        await DonationService(db, settings=policy).donate_internal("kid-1", 5)


@pytest.mark.asyncio
async def test_internal_donation_cannot_exceed_wallet_balance(db, policy):
    await _wallet_balance(db, policy, amount=100)
    with pytest.raises(InsufficientBalanceException):
        await DonationService(db, settings=policy).donate_internal("kid-1", 101)


@pytest.mark.asyncio
async def test_prepare_checks_token_balance(db, policy, chain):
    chain.balances[USER_WALLET] = 1000
    service = DonationService(db, chain=chain, settings=policy)

    prepared = await service.prepare_onchain_donation("kid-1", USER_WALLET, 300)
    assert prepared["to_address"] == DONATION_WALLET
    assert prepared["wallet_balance"] == 1000

    with pytest.raises(InsufficientBalanceException):
        await service.prepare_onchain_donation("kid-1", USER_WALLET, 1001)


@pytest.mark.asyncio
async def test_confirm_onchain_donation_is_idempotent(db, policy, chain):
    tx_hash = chain.add_receipt(USER_WALLET, DONATION_WALLET, 300)
    service = DonationService(db, chain=chain, settings=policy)

    first = await service.confirm_onchain_donation("kid-1", tx_hash, USER_WALLET, 300)
    second = await service.confirm_onchain_donation("kid-1", tx_hash.upper().replace("0X", "0x"), USER_WALLET, 300)

    assert first["id"] == second["id"]
    assert first["tx_hash"] == tx_hash
    assert first["explorer_url"].endswith(tx_hash)

    totals = await service.get_totals()
    assert totals == {"total_amount": 300, "donation_count": 1, "donor_count": 1}

    with pytest.raises(ConflictException):
        await service.confirm_onchain_donation("kid-2", tx_hash, USER_WALLET, 300)


@pytest.mark.asyncio
async def test_confirm_rejects_mismatched_transfer(db, policy, chain):
    tx_hash = chain.add_receipt(OTHER_WALLET, DONATION_WALLET, 300)
    service = DonationService(db, chain=chain, settings=policy)

    with pytest.raises(BadRequestException):
        await service.confirm_onchain_donation("kid-1", tx_hash, USER_WALLET, 300)

    small = chain.add_receipt(USER_WALLET, DONATION_WALLET, 100)
    with pytest.raises(BadRequestException):
        await service.confirm_onchain_donation("kid-1", small, USER_WALLET, 300)


@pytest.mark.asyncio
async def test_confirm_unmined_transaction(db, policy, chain):
    service = DonationService(db, chain=chain, settings=policy)
    with pytest.raises(ChainUnavailableException):
        await service.confirm_onchain_donation("kid-1", "0x" + "ef" * 32, USER_WALLET, 300)


@pytest.mark.asyncio
async def test_public_list_hides_anonymous_donors(db, policy):
    await _wallet_balance(db, policy)
    service = DonationService(db, settings=policy)
    await service.donate_internal("kid-1", 50, is_anonymous=True)

    public = await service.list_donations()
    assert public[0]["user_id"] is None

    own = await service.list_donations(user_id="kid-1")
    assert own[0]["user_id"] == "kid-1"


@pytest.mark.asyncio
async def test_process_internal_donations(db, policy, chain):
    await _wallet_balance(db, policy)
    service = DonationService(db, chain=chain, settings=policy)
    await service.donate_internal("kid-1", 50)
    await service.donate_internal("kid-1", 70)

    result = await service.process_internal_donations()

    assert result["total_amount"] == 120
    assert result["error"] is None
    assert [t[1] for t in chain.transfers] == [50, 70]
    assert all(t[0] == DONATION_WALLET for t in chain.transfers)

    again = await service.process_internal_donations()
    assert again["processed"] == []


@pytest.mark.asyncio
async def test_process_stops_at_chain_error(db, policy, chain):
    await _wallet_balance(db, policy)
    service = DonationService(db, chain=chain, settings=policy)
    await service.donate_internal("kid-1", 50)
    chain.transfer_error = ChainError("rpc down")

    result = await service.process_internal_donations()
    assert result["processed"] == []
    assert result["error"] == "rpc down"

    chain.transfer_error = None
    retried = await service.process_internal_donations()
    assert retried["total_amount"] == 50


@pytest.mark.asyncio
async def test_unconfirmed_transfer_is_finished_not_resent(db, policy, chain):
    await _wallet_balance(db, policy)
    service = DonationService(db, chain=chain, settings=policy)
    donation = await service.donate_internal("kid-1", 100)
    chain.confirmation_error = ChainTimeoutError("not mined yet")

    first = await service.process_internal_donations()
    assert first["processed"] == []
    assert first["pending"] == [donation["id"]]
    assert len(chain.transfers) == 1

    chain.confirmation_error = None
    second = await service.process_internal_donations()
    assert [p["donation_id"] for p in second["processed"]] == [donation["id"]]
    assert second["processed"][0]["tx_hash"] == chain.transfers[0][2]
    assert len(chain.transfers) == 1

    own = await service.list_donations(user_id="kid-1")
    assert own[0]["donation_type"] == "onchain_processed"
    assert own[0]["is_onchain"] is True


@pytest.mark.asyncio
async def test_unknown_submission_outcome_needs_review(db, policy, chain):
    await _wallet_balance(db, policy)
    service = DonationService(db, chain=chain, settings=policy)
    donation = await service.donate_internal("kid-1", 100)
    chain.transfer_error = ChainTimeoutError("submission timed out")

    first = await service.process_internal_donations()
    assert first["needs_review"] == [donation["id"]]

    chain.transfer_error = None
    second = await service.process_internal_donations()
    assert second["needs_review"] == [donation["id"]]
    assert second["processed"] == []
    assert chain.transfers == []


@pytest.mark.asyncio
async def test_reverted_transfer_returns_to_queue(db, policy, chain):
    await _wallet_balance(db, policy)
    service = DonationService(db, chain=chain, settings=policy)
    await service.donate_internal("kid-1", 100)
    chain.revert_next = True

    first = await service.process_internal_donations()
    assert first["processed"] == []
    assert first["error"]
    own = await service.list_donations(user_id="kid-1")
    assert own[0]["donation_type"] == "internal"
    assert own[0]["tx_hash"] is None

    chain.revert_next = False
    second = await service.process_internal_donations()
    assert second["total_amount"] == 100
    assert len(chain.transfers) == 2


@pytest.mark.asyncio
async def test_donation_must_come_from_linked_wallet(db, policy, chain):
    await WalletService(db, policy).link_wallet("kid-1", USER_WALLET)
    chain.balances[OTHER_WALLET] = 1000
    tx_hash = chain.add_receipt(OTHER_WALLET, DONATION_WALLET, 300)
    service = DonationService(db, chain=chain, settings=policy)

    with pytest.raises(WalletAlreadyBoundException):
        await service.prepare_onchain_donation("kid-1", OTHER_WALLET, 300)
    with pytest.raises(WalletAlreadyBoundException):
        await service.confirm_onchain_donation("kid-1", tx_hash, OTHER_WALLET, 300)

    assert (await service.get_totals())["donation_count"] == 0
