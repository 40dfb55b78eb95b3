"""
API tests through the FastAPI app.

Coverage targets:
- Authentication and admin authorization
- Error envelope for service exceptions
- Earn, claim and donate flow over HTTP
- Admin replay, reset and audit trail
- Claim rate limiting
"""

import pytest

from conftest import USER_WALLET, auth_headers


def user(user_id: str, ip: str = "10.1.0.1", **kwargs):
    headers = auth_headers(user_id, **kwargs)
    headers["X-Forwarded-For"] = ip
    return headers


ADMIN = auth_headers("admin-1", role="admin")


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_authentication(client):
    response = await client.get("/api/v1/rewards/me")
    assert response.status_code in (401, 403)

    response = await client.get("/api/v1/rewards/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(client):
    response = await client.post("/api/v1/admin/claims/reconcile", headers=user("kid-1"))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_new_account_has_zero_balances(client):
    response = await client.get("/api/v1/rewards/me", headers=user("kid-1"))
    assert response.status_code == 200
    data = response.json()
    assert data["pending_amount"] == 0
    assert data["total_earned"] == 0
    assert data["daily_remaining"] == 5000
    assert data["referral_code"]


@pytest.mark.asyncio
async def test_checkin_claim_donate_flow(client):
    headers = user("kid-1")

    checkin = await client.post("/api/v1/rewards/checkin", headers=headers)
    assert checkin.status_code == 200
    assert checkin.json()["amount"] == 100

    duplicate = await client.post("/api/v1/rewards/checkin", headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "ALREADY_CLAIMED_TODAY"

    claim = await client.post("/api/v1/claims/internal", json={"amount": 100}, headers=headers)
    assert claim.status_code == 200
    assert claim.json()["status"] == "settled"
    assert claim.json()["wallet_balance"] == 100

    donation = await client.post("/api/v1/donations/internal", json={"amount": 50}, headers=headers)
    assert donation.status_code == 201
    assert donation.json()["new_wallet_balance"] == 50

    me = (await client.get("/api/v1/rewards/me", headers=headers)).json()
    assert me["pending_amount"] == 0
    assert me["claimed_amount"] == 100
    assert me["total_earned"] == 100
    assert me["wallet_balance"] == 50

    history = (await client.get("/api/v1/rewards/history", headers=headers)).json()
    assert [item["reward_type"] for item in history["items"]] == [
        "charity_donation",
        "airdrop_claim",
        "daily_checkin",
    ]

    totals = (await client.get("/api/v1/donations/totals")).json()
    assert totals["total_amount"] == 50


@pytest.mark.asyncio
async def test_claim_without_balance_is_rejected(client):
    headers = user("kid-1")
    response = await client.post("/api/v1/claims/internal", json={"amount": 10}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INSUFFICIENT_BALANCE"

    claims = (await client.get("/api/v1/claims/", headers=headers)).json()
    assert claims[0]["status"] == "rejected"


@pytest.mark.asyncio
async def test_invalid_play_session_rejected(client):
    response = await client.post(
        "/api/v1/rewards/play",
        json={"game_id": "game-1", "duration_seconds": -1},
        headers=user("kid-1"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_play_session_uses_token_age(client):
    response = await client.post(
        "/api/v1/rewards/play",
        json={"game_id": "game-1", "duration_seconds": 3600},
        headers=user("kid-1", age=8),
    )
    assert response.status_code == 200
    assert response.json()["daily_cap"] == 600
    assert response.json()["amount"] == 600


@pytest.mark.asyncio
async def test_onchain_claim_and_admin_replay(client, chain):
    headers = user("kid-1")
    await client.post("/api/v1/rewards/checkin", headers=headers)
    link = await client.post("/api/v1/wallets/link", json={"wallet_address": USER_WALLET}, headers=headers)
    assert link.status_code == 200

    from camly.services.chain import ChainTimeoutError
    chain.confirmation_error = ChainTimeoutError("not mined yet")

    response = await client.post("/api/v1/claims/onchain", json={"amount": 100}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "submitting"
    assert body["pending_reconciliation"] is True

    chain.confirmation_error = None
    replay = await client.post(
        "/api/v1/admin/claims/replay",
        json={"tx_hash": body["tx_hash"]},
        headers=ADMIN,
    )
    assert replay.status_code == 200
    assert replay.json()["status"] == "settled"

    again = await client.post(f"/api/v1/claims/{body['claim_id']}/settle", headers=headers)
    assert again.json()["already_settled"] is True

    logs = (await client.get("/api/v1/admin/audit-logs?action=replay_settlement", headers=ADMIN)).json()
    assert len(logs) == 1
    assert logs[0]["entity_id"] == body["claim_id"]


@pytest.mark.asyncio
async def test_other_users_claim_is_hidden(client):
    owner = user("kid-1")
    await client.post("/api/v1/rewards/checkin", headers=owner)
    claim = (await client.post("/api/v1/claims/internal", json={"amount": 10}, headers=owner)).json()

    response = await client.get(f"/api/v1/claims/{claim['claim_id']}", headers=user("kid-2", ip="10.1.0.2"))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_reset_is_audited(client):
    headers = user("kid-1")
    await client.post("/api/v1/rewards/checkin", headers=headers)

    response = await client.post(
        "/api/v1/admin/accounts/kid-1/reset",
        json={"reason": "fraud review"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json()["old_values"]["pending_amount"] == 100

    me = (await client.get("/api/v1/rewards/me", headers=headers)).json()
    assert me["pending_amount"] == 0
    assert me["total_earned"] == 0

    report = (await client.get("/api/v1/admin/accounts/kid-1/reconcile", headers=ADMIN)).json()
    assert report["balanced"] is True
    assert report["reset_adjustments"] == 100

    logs = (await client.get("/api/v1/admin/audit-logs?entity_id=kid-1", headers=ADMIN)).json()
    assert logs[0]["action"] == "reset_rewards"
    assert logs[0]["entity_type"] == "user_rewards"
    assert logs[0]["admin_id"] == "admin-1"


@pytest.mark.asyncio
async def test_expire_stale_claims_route(client):
    forbidden = await client.post("/api/v1/admin/claims/expire-stale", headers=user("kid-1"))
    assert forbidden.status_code == 403

    response = await client.post("/api/v1/admin/claims/expire-stale?older_than_seconds=0", headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == {"expired": [], "count": 0}

    logs = (await client.get("/api/v1/admin/audit-logs?action=expire_stale_claims", headers=ADMIN)).json()
    assert logs == []


@pytest.mark.asyncio
async def test_game_upload_approval(client):
    creator = user("creator-1")
    created = await client.post(
        "/api/v1/rewards/games",
        json={"game_id": "game-1", "title": "Space Kids"},
        headers=creator,
    )
    assert created.status_code == 201

    approved = await client.post("/api/v1/admin/games/game-1/approve", headers=ADMIN)
    assert approved.status_code == 200
    assert approved.json()["amount"] == 5000

    twice = await client.post("/api/v1/admin/games/game-1/approve", headers=ADMIN)
    assert twice.status_code == 409


@pytest.mark.asyncio
async def test_combo_challenge_over_http(client):
    created = await client.post(
        "/api/v1/admin/combo-challenges",
        json={"title": "Combo x5", "target_combo": 5, "prize_amount": 200},
        headers=ADMIN,
    )
    assert created.status_code == 201
    challenge_id = created.json()["id"]

    headers = user("kid-1")
    hit = await client.post("/api/v1/rewards/combos", json={"challenge_id": challenge_id, "combo": 7}, headers=headers)
    assert hit.json()["awarded"] is True

    again = await client.post("/api/v1/rewards/combos", json={"challenge_id": challenge_id, "combo": 9}, headers=headers)
    assert again.json()["awarded"] is False
    assert again.json()["new_pending"] == 200


@pytest.mark.asyncio
async def test_claims_are_rate_limited(client):
    headers = user("kid-1")
    statuses = []
    for _ in range(11):
        response = await client.post("/api/v1/claims/internal", json={"amount": 1}, headers=headers)
        statuses.append(response.status_code)

    assert statuses[:10] == [400] * 10
    assert statuses[10] == 429
