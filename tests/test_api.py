from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.config import get_settings
from settlement.models import AuditLog


async def _open_wallet(client, admin_headers, ref, amount):
    response = await client.post(
        "/wallets",
        json={"ref": ref, "opening_balance": amount},
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _submit(client, headers, key, amount, **extra):
    payload = {"amount": amount, "buyer_ref": "buyer-1", "seller_ref": "seller-1", **extra}
    return await client.post("/transactions", json=payload, headers={**headers, "Idempotency-Key": key})


@pytest.mark.anyio("asyncio")
async def test_direct_transfer_over_http(client, admin_headers, party_headers):
    await _open_wallet(client, admin_headers, "buyer-1", "200000")

    preview = await client.post(
        "/transactions/preview",
        json={"amount": "150000", "buyer_ref": "buyer-1", "seller_ref": "seller-1"},
        headers=party_headers,
    )
    assert preview.status_code == 200
    assert preview.json()["accepted"] is True
    assert preview.json()["path_kind"] == "DIRECT"
    assert Decimal(preview.json()["fees"]["total_fees"]) == Decimal("4425.00")

    created = await _submit(client, party_headers, "order-77", "150000")
    assert created.status_code == 201, created.text
    body = created.json()
    assert body["path_kind"] == "DIRECT"
    assert body["escrow"] is None
    transfer = body["direct_transfer"]
    assert transfer["status"] == "VALIDATION"
    assert Decimal(transfer["net_amount"]) == Decimal("145575.00")

    replay = await _submit(client, party_headers, "order-77", "150000")
    assert replay.status_code == 200
    assert replay.json()["id"] == body["id"]

    confirmed = await client.post(f"/transfers/{transfer['id']}/confirm", headers=party_headers)
    assert confirmed.json()["status"] == "CONFIRMATION"
    processed = await client.post(f"/transfers/{transfer['id']}/process", headers=party_headers)
    assert processed.status_code == 200
    assert processed.json()["status"] == "COMPLETE"

    balance = await client.get("/wallets/seller-1/balance", headers=party_headers)
    assert Decimal(balance.json()["available"]) == Decimal("145575.00")


@pytest.mark.anyio("asyncio")
async def test_escrow_with_dispute_over_http(client, admin_headers, party_headers, resolver_headers):
    await _open_wallet(client, admin_headers, "buyer-1", "700000")
    created = await _submit(
        client,
        party_headers,
        "po-2024-001",
        "600000",
        milestones=[{"name": "Advance", "percentage": "40"}, {"name": "Balance", "percentage": "60"}],
    )
    assert created.status_code == 201, created.text
    escrow = created.json()["escrow"]
    assert created.json()["path_kind"] == "ESCROW"
    assert [Decimal(m["amount"]) for m in escrow["milestones"]] == [Decimal("240000.00"), Decimal("360000.00")]
    escrow_id = escrow["id"]

    funded = await client.post(f"/escrows/{escrow_id}/fund", headers=party_headers)
    assert funded.json()["status"] == "ACTIVE"

    dispute = await client.post(
        f"/escrows/{escrow_id}/disputes",
        json={"title": "Late", "description": "Advance shipment is two weeks late."},
        headers=party_headers,
    )
    assert dispute.status_code == 201
    dispute_id = dispute.json()["id"]

    refused = await client.post(f"/escrows/{escrow_id}/release", headers=party_headers)
    assert refused.status_code == 409
    assert refused.json()["error"]["code"] == "INVALID_ESCROW_STATE"

    forbidden = await client.post(
        f"/disputes/{dispute_id}/resolve", json={"outcome": "resume"}, headers=party_headers
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "INSUFFICIENT_ROLE"

    resolved = await client.post(
        f"/disputes/{dispute_id}/resolve",
        json={"outcome": "resume", "note": "Revised schedule agreed."},
        headers=resolver_headers,
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "RESOLVED"

    for milestone in escrow["milestones"]:
        base = f"/escrows/{escrow_id}/milestones/{milestone['id']}"
        assert (await client.post(f"{base}/start", headers=party_headers)).status_code == 200
        confirmed = await client.post(f"{base}/confirm", json={"evidence_ref": "grn-1"}, headers=party_headers)
        assert confirmed.json()["status"] == "COMPLETED"
        assert (await client.post(f"{base}/approve", headers=party_headers)).status_code == 200

    progress = await client.get(f"/escrows/{escrow_id}/progress", headers=party_headers)
    assert progress.json()["progress"] == 100
    assert progress.json()["outstanding_milestone_ids"] == []

    released = await client.post(f"/escrows/{escrow_id}/release", headers=party_headers)
    assert released.status_code == 200
    assert released.json()["status"] == "COMPLETED"

    feed = await client.get("/events", params={"kind": "EscrowReleased"}, headers=admin_headers)
    assert [event["aggregate_id"] for event in feed.json()] == [escrow_id]


@pytest.mark.anyio("asyncio")
async def test_transaction_requires_idempotency_key(client, party_headers):
    response = await client.post(
        "/transactions",
        json={"amount": "100", "buyer_ref": "buyer-1", "seller_ref": "seller-1"},
        headers=party_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "IDEMPOTENCY_KEY_REQUIRED"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("amount", ["0", "-1"])
async def test_non_positive_amount_is_rejected(client, party_headers, amount):
    response = await _submit(client, party_headers, f"bad-{amount}", amount)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_AMOUNT"
    assert response.json()["error"]["retryable"] is False


@pytest.mark.anyio("asyncio")
async def test_insufficient_balance_payload(client, admin_headers, party_headers):
    await _open_wallet(client, admin_headers, "buyer-1", "100")

    response = await _submit(client, party_headers, "too-big", "1000")

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_BALANCE"
    assert error["details"] == {"required": "1029.50", "available": "100.00"}


@pytest.mark.anyio("asyncio")
async def test_foreign_currency_is_refused(client, admin_headers, party_headers):
    await _open_wallet(client, admin_headers, "buyer-1", "600000")

    response = await _submit(client, party_headers, "usd-order", "499999", currency="USD")

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "UNSUPPORTED_CURRENCY"
    assert error["details"] == {"currency": "USD", "expected": "INR"}

    balance = await client.get("/wallets/buyer-1/balance", headers=party_headers)
    assert Decimal(balance.json()["available"]) == Decimal("600000")


@pytest.mark.anyio("asyncio")
async def test_same_party_on_both_sides_rejected(client, party_headers):
    response = await client.post(
        "/transactions",
        json={"amount": "100", "buyer_ref": "acme", "seller_ref": "acme"},
        headers={**party_headers, "Idempotency-Key": "self-deal"},
    )

    assert response.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_missing_and_unknown_keys(client):
    missing = await client.get("/transactions/1")
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "NO_API_KEY"

    unknown = await client.get("/transactions/1", headers={"X-API-Key": "nope"})
    assert unknown.status_code == 401
    assert unknown.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.anyio("asyncio")
async def test_role_checks(client, party_headers, resolver_headers):
    events = await client.get("/events", headers=party_headers)
    assert events.status_code == 403

    create_user = await client.post(
        "/users", json={"ref": "buyer-9", "email": "buyer9@example.com"}, headers=resolver_headers
    )
    assert create_user.status_code == 403


@pytest.mark.anyio("asyncio")
async def test_unknown_records_are_404(client, party_headers):
    response = await client.get("/escrows/424242", headers=party_headers)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_user_tier_drives_fees(client, admin_headers, party_headers):
    created = await client.post(
        "/users",
        json={"ref": "buyer-1", "email": "buyer1@example.com", "tier": "ENTERPRISE"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    duplicate = await client.post(
        "/users", json={"ref": "buyer-1", "email": "other@example.com"}, headers=admin_headers
    )
    assert duplicate.status_code == 409
    await _open_wallet(client, admin_headers, "buyer-1", "2000")

    preview = await client.post(
        "/transactions/preview",
        json={"amount": "1000", "buyer_ref": "buyer-1", "seller_ref": "seller-1"},
        headers=party_headers,
    )

    assert preview.json()["tier"] == "ENTERPRISE"
    assert Decimal(preview.json()["fees"]["transaction_fee"]) == Decimal("15.00")


@pytest.mark.anyio("asyncio")
async def test_dev_key_is_audited(client, admin_headers, db_session):
    response = await client.get("/events", headers=admin_headers)
    assert response.status_code == 200

    entry = db_session.scalars(select(AuditLog).where(AuditLog.action == "LEGACY_API_KEY_USED")).first()
    assert entry is not None
    assert entry.data_json["env"] == "test"


@pytest.mark.anyio("asyncio")
async def test_dev_key_rejected_outside_dev(monkeypatch, client, admin_headers):
    monkeypatch.setattr(get_settings(), "app_env", "prod")

    response = await client.get("/events", headers=admin_headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "LEGACY_KEY_FORBIDDEN"


@pytest.mark.anyio("asyncio")
async def test_bound_keys_act_only_for_their_party(
    client, admin_headers, buyer_headers, seller_headers, outsider_headers
):
    await _open_wallet(client, admin_headers, "buyer-1", "600000")

    impersonated = await _submit(client, seller_headers, "seller-as-buyer", "1000")
    assert impersonated.status_code == 403
    assert impersonated.json()["error"]["code"] == "NOT_A_PARTY"

    created = await _submit(client, buyer_headers, "bound-escrow", "500000")
    assert created.status_code == 201, created.text
    escrow_id = created.json()["escrow"]["id"]
    milestone_id = created.json()["escrow"]["milestones"][0]["id"]
    base = f"/escrows/{escrow_id}/milestones/{milestone_id}"

    assert (await client.post(f"/escrows/{escrow_id}/fund", headers=seller_headers)).status_code == 403
    assert (await client.post(f"/escrows/{escrow_id}/fund", headers=buyer_headers)).status_code == 200

    assert (await client.post(f"{base}/start", headers=buyer_headers)).status_code == 403
    assert (await client.post(f"{base}/start", headers=seller_headers)).status_code == 200
    assert (await client.post(f"{base}/confirm", headers=seller_headers)).status_code == 200

    self_approval = await client.post(f"{base}/approve", headers=seller_headers)
    assert self_approval.status_code == 403
    assert self_approval.json()["error"]["details"] == {"party_ref": "seller-1"}
    assert (await client.post(f"{base}/approve", headers=buyer_headers)).status_code == 200

    assert (await client.post(f"/escrows/{escrow_id}/release", headers=seller_headers)).status_code == 403
    assert (await client.get(f"/escrows/{escrow_id}", headers=outsider_headers)).status_code == 403
    assert (await client.get(f"/escrows/{escrow_id}", headers=seller_headers)).status_code == 200
    assert (await client.get("/wallets/buyer-1/balance", headers=outsider_headers)).status_code == 403

    released = await client.post(f"/escrows/{escrow_id}/release", headers=buyer_headers)
    assert released.status_code == 200
    assert released.json()["status"] == "COMPLETED"
