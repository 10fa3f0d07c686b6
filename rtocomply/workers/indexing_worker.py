from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from rtocomply.core.config import get_settings
from rtocomply.core.logging import configure_logging
from rtocomply.persistence.db import SessionLocal, engine
from rtocomply.providers.file_search.factory import get_file_search_provider
from rtocomply.services.operations import OperationsService
from rtocomply.services.storage import get_document_storage


logger = logging.getLogger(__name__)


def _sweep_seconds(interval_s: int) -> set[int]:
    # arq cron matches wall-clock seconds, so spread the sweep evenly across each minute.
    step = max(1, min(60, int(interval_s)))
    return set(range(0, 60, step))


async def process_pending_indexing_job(ctx) -> dict:
    service = OperationsService(get_file_search_provider(), storage=get_document_storage())
    async with SessionLocal() as session:
        result = await service.process_pending_indexing(session)
    logger.info(
        "indexing_sweep_finished reset=%s processed=%s started=%s failed=%s",
        result.reset_count,
        result.processed,
        result.started,
        result.failed,
    )
    return {
        "reset_count": result.reset_count,
        "processed": result.processed,
        "started": result.started,
        "failed": result.failed,
    }


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("indexing_worker_started")


async def _shutdown(ctx) -> None:
    # Release pooled connections so the worker exits without dangling sockets.
    await engine.dispose()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.worker_queue_name
    functions = [process_pending_indexing_job]
    cron_jobs = [
        cron(
            process_pending_indexing_job,
            second=_sweep_seconds(settings.indexing_sweep_seconds),
            run_at_startup=True,
            unique=True,
        )
    ]
    on_startup = _startup
    on_shutdown = _shutdown
