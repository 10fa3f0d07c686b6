from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.domain.models import GeminiOperation, TERMINAL_OPERATION_STATUSES


async def create_operation(
    session: AsyncSession,
    *,
    document_id: str,
    validation_detail_id: str | None,
    max_wait_time_ms: int,
    operation_type: str = "document_embedding",
) -> GeminiOperation:
    op = GeminiOperation(
        document_id=document_id,
        validation_detail_id=validation_detail_id,
        operation_type=operation_type,
        status="pending",
        progress_percentage=0,
        check_count=0,
        max_wait_time_ms=max_wait_time_ms,
    )
    session.add(op)
    await session.flush()
    return op


async def get_operation(session: AsyncSession, operation_id: str) -> GeminiOperation | None:
    # Guarded updates bypass the identity map, so always reload row state.
    result = await session.execute(
        select(GeminiOperation)
        .where(GeminiOperation.id == operation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_name(session: AsyncSession, operation_name: str) -> GeminiOperation | None:
    result = await session.execute(
        select(GeminiOperation)
        .where(GeminiOperation.operation_name == operation_name)
        .order_by(GeminiOperation.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_for_detail(session: AsyncSession, validation_detail_id: str) -> list[GeminiOperation]:
    result = await session.execute(
        select(GeminiOperation)
        .where(GeminiOperation.validation_detail_id == validation_detail_id)
        .order_by(GeminiOperation.created_at, GeminiOperation.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_for_document(session: AsyncSession, document_id: str) -> list[GeminiOperation]:
    result = await session.execute(
        select(GeminiOperation)
        .where(GeminiOperation.document_id == document_id)
        .order_by(GeminiOperation.created_at.desc(), GeminiOperation.id)
    )
    return list(result.scalars().all())


async def list_pending(session: AsyncSession, *, limit: int) -> list[GeminiOperation]:
    # Oldest first so a backlog drains in upload order.
    result = await session.execute(
        select(GeminiOperation)
        .where(GeminiOperation.status == "pending")
        .order_by(GeminiOperation.created_at, GeminiOperation.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_stuck_processing(session: AsyncSession, *, started_before: datetime) -> list[GeminiOperation]:
    # A processing row with no provider handle means the upload never got started.
    result = await session.execute(
        select(GeminiOperation).where(
            GeminiOperation.status == "processing",
            GeminiOperation.operation_name.is_(None),
            GeminiOperation.started_at < started_before,
        )
    )
    return list(result.scalars().all())


async def claim_pending(session: AsyncSession, operation_id: str, *, started_at: datetime) -> bool:
    # Only one caller may move a pending operation into processing.
    result = await session.execute(
        update(GeminiOperation)
        .where(GeminiOperation.id == operation_id, GeminiOperation.status == "pending")
        .values(status="processing", started_at=started_at, error_message=None)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def update_if_open(session: AsyncSession, operation_id: str, **values: Any) -> bool:
    """Apply ``values`` only while the operation is still non-terminal.

    Returns False when a concurrent pass already moved the row into a terminal
    state, which keeps terminal transitions at-most-once.
    """
    result = await session.execute(
        update(GeminiOperation)
        .where(
            GeminiOperation.id == operation_id,
            GeminiOperation.status.notin_(TERMINAL_OPERATION_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
