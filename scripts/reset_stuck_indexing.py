from __future__ import annotations

import asyncio

from rtocomply.persistence.db import SessionLocal
from rtocomply.providers.file_search.factory import get_file_search_provider
from rtocomply.services.operations import OperationsService


async def reset() -> None:
    # Fail operations claimed by a crashed sweep so their documents can be reindexed.
    service = OperationsService(get_file_search_provider())
    async with SessionLocal() as session:
        count = await service.reset_stuck_operations(session)
        print(f"reset_stuck_operations={count}")


if __name__ == "__main__":
    asyncio.run(reset())
