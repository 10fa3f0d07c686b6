from __future__ import annotations

import pytest

from rtocomply.domain.models import Rto
from rtocomply.persistence.db import SessionLocal
from rtocomply.services.rto_cache import RtoCache


class _Ticker:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


async def _add_rto(code: str) -> None:
    async with SessionLocal() as session:
        session.add(Rto(code=code, name=f"RTO {code}"))
        await session.commit()


@pytest.mark.asyncio
async def test_cache_serves_stale_rows_until_ttl_expires() -> None:
    ticker = _Ticker()
    cache = RtoCache(ttl_s=60, time_provider=ticker)
    await _add_rto("1001")
    async with SessionLocal() as session:
        assert [r.code for r in await cache.get_all(session)] == ["1001"]
        await _add_rto("1002")

        ticker.value = 59
        assert await cache.get_by_code(session, "1002") is None

        ticker.value = 61
        record = await cache.get_by_code(session, "1002")
    assert record is not None
    assert record.name == "RTO 1002"


@pytest.mark.asyncio
async def test_invalidate_forces_reload() -> None:
    cache = RtoCache(ttl_s=3600, time_provider=_Ticker())
    async with SessionLocal() as session:
        assert await cache.get_all(session) == []
        await _add_rto("2002")
        cache.invalidate()
        assert [r.code for r in await cache.get_all(session)] == ["2002"]
