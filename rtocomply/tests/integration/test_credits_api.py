from __future__ import annotations

import pytest

from rtocomply.tests.utils.seed import RTO_CODE, seed_catalog, seed_credits


@pytest.mark.asyncio
async def test_missing_ledger_reads_as_zero(client) -> None:
    await seed_catalog()
    response = await client.get(f"/v1/credits/ai/{RTO_CODE}")
    assert response.status_code == 200
    assert response.json()["credits"] == {
        "kind": "ai",
        "rto_code": RTO_CODE,
        "current": 0,
        "total": 0,
        "subscription": 0,
        "percentage": 0,
        "percentage_text": "0% available",
    }


@pytest.mark.asyncio
async def test_add_consume_and_remove_credits(client) -> None:
    await seed_catalog()
    added = await client.post(
        f"/v1/credits/validation/{RTO_CODE}/add",
        json={"amount": 10, "reason": "monthly plan", "subscription": True},
    )
    assert added.status_code == 200
    assert added.json()["credits"]["current"] == 10
    assert added.json()["credits"]["subscription"] == 10

    consumed = await client.post(f"/v1/credits/validation/{RTO_CODE}/consume")
    assert consumed.json()["credits"]["current"] == 9

    removed = await client.post(
        f"/v1/credits/validation/{RTO_CODE}/remove", json={"amount": 1, "reason": "correction"}
    )
    credits = removed.json()["credits"]
    assert credits["current"] == 8
    assert credits["total"] == 10
    assert credits["percentage_text"] == "80% available"

    transactions = await client.get(f"/v1/credits/validation/{RTO_CODE}/transactions")
    body = transactions.json()
    assert body["count"] == 3
    assert sorted(tx["amount"] for tx in body["transactions"]) == [-1, -1, 10]
    assert {tx["reason"] for tx in body["transactions"]} == {"monthly plan", "validation_usage", "correction"}


@pytest.mark.asyncio
async def test_consume_beyond_balance_is_rejected_without_writes(client) -> None:
    await seed_catalog()
    await seed_credits(ai=1)
    response = await client.post(f"/v1/credits/ai/{RTO_CODE}/consume", json={"amount": 2})
    assert response.status_code == 402
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "INSUFFICIENT_CREDITS"
    assert body["error"] == "Insufficient AI credits"
    assert body["details"] == {"current": 1, "requested": 2, "kind": "ai"}

    balance = await client.get(f"/v1/credits/ai/{RTO_CODE}")
    assert balance.json()["credits"]["current"] == 1
    transactions = await client.get(f"/v1/credits/ai/{RTO_CODE}/transactions")
    assert transactions.json()["count"] == 0


@pytest.mark.asyncio
async def test_remove_does_not_clamp_to_zero(client) -> None:
    await seed_catalog()
    await seed_credits(validation=2)
    response = await client.post(
        f"/v1/credits/validation/{RTO_CODE}/remove", json={"amount": 5, "reason": "chargeback"}
    )
    assert response.status_code == 402
    balance = await client.get(f"/v1/credits/validation/{RTO_CODE}")
    assert balance.json()["credits"]["current"] == 2


@pytest.mark.asyncio
async def test_unknown_kind_and_rto(client) -> None:
    await seed_catalog()
    unknown_kind = await client.get(f"/v1/credits/tokens/{RTO_CODE}")
    assert unknown_kind.status_code == 400
    assert unknown_kind.json()["error"] == "Unknown credit kind: tokens"

    unknown_rto = await client.post("/v1/credits/ai/9999/add", json={"amount": 1, "reason": "grant"})
    assert unknown_rto.status_code == 404
    assert unknown_rto.json()["error"] == "RTO not found: 9999"


@pytest.mark.asyncio
async def test_non_positive_amount_is_a_request_error(client) -> None:
    await seed_catalog()
    response = await client.post(f"/v1/credits/ai/{RTO_CODE}/add", json={"amount": 0, "reason": "grant"})
    assert response.status_code == 400
    assert response.json()["code"] == "REQUEST_VALIDATION_ERROR"
