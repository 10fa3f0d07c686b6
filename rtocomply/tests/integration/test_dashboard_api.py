from __future__ import annotations

import pytest

from rtocomply.tests.utils.seed import RTO_CODE, UNIT_CODE, seed_catalog, seed_credits


@pytest.mark.asyncio
async def test_dashboard_metrics_reflect_new_sessions_and_queries(client) -> None:
    await seed_catalog()
    await seed_credits(ai=3)
    created = await client.post(
        "/v1/validation-records",
        json={"rtoCode": RTO_CODE, "unitCode": UNIT_CODE, "namespace": "ns-1"},
    )
    assert created.status_code == 201
    await client.post(f"/v1/credits/ai/{RTO_CODE}/consume")

    response = await client.get("/v1/dashboard/metrics", params={"rto_code": RTO_CODE})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["total_validations"]["count"] == 1
    assert body["active_units"] == {"count": 1, "status": "1 currently processing"}
    assert body["ai_queries"]["period"] == "1 this month / 1 all time"
    assert body["success_rate"]["rate"] == 0.0


@pytest.mark.asyncio
async def test_dashboard_metrics_for_unknown_rto(client) -> None:
    await seed_catalog()
    response = await client.get("/v1/dashboard/metrics", params={"rto_code": "9999"})
    assert response.status_code == 404
    assert response.json()["error"] == "RTO not found: 9999"
