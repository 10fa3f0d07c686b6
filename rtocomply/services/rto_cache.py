from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.config import get_settings
from rtocomply.persistence.repos import catalog as catalog_repo


@dataclass(frozen=True)
class RtoRecord:
    id: str
    code: str
    name: str
    status: str


class RtoCache:
    """TTL cache over the RTO directory.

    Concurrent misses share one load through an asyncio lock, and callers
    invalidate explicitly after writes to the RTO table.
    """

    def __init__(self, ttl_s: float, time_provider: Callable[[], float] | None = None) -> None:
        self._ttl_s = ttl_s
        self._time_provider = time_provider or time.monotonic
        self._records: dict[str, RtoRecord] | None = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._records is not None and (self._time_provider() - self._loaded_at) < self._ttl_s

    async def _load(self, session: AsyncSession) -> dict[str, RtoRecord]:
        if self._fresh():
            return self._records  # type: ignore[return-value]
        async with self._lock:
            # Another waiter may have refreshed while we queued for the lock.
            if self._fresh():
                return self._records  # type: ignore[return-value]
            rows = await catalog_repo.list_rtos(session)
            self._records = {
                row.code: RtoRecord(id=row.id, code=row.code, name=row.name, status=row.status)
                for row in rows
            }
            self._loaded_at = self._time_provider()
            return self._records

    async def get_all(self, session: AsyncSession) -> list[RtoRecord]:
        return list((await self._load(session)).values())

    async def get_by_code(self, session: AsyncSession, code: str) -> RtoRecord | None:
        return (await self._load(session)).get(code)

    def invalidate(self) -> None:
        self._records = None
        self._loaded_at = 0.0


def build_rto_cache() -> RtoCache:
    return RtoCache(ttl_s=get_settings().rto_cache_ttl_s)
