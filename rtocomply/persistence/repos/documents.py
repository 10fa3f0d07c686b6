from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.domain.models import Document


async def create_document(
    session: AsyncSession,
    *,
    rto_code: str,
    unit_code: str | None,
    document_type: str,
    file_name: str,
    storage_path: str,
    validation_detail_id: str | None,
    display_name: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> Document:
    # New documents always start pending; only the operations service moves them on.
    doc = Document(
        rto_code=rto_code,
        unit_code=unit_code,
        document_type=document_type,
        file_name=file_name,
        storage_path=storage_path,
        validation_detail_id=validation_detail_id,
        display_name=display_name or file_name,
        metadata_json=metadata_json or {},
        embedding_status="pending",
    )
    session.add(doc)
    await session.flush()
    return doc


async def get_document(session: AsyncSession, document_id: str) -> Document | None:
    result = await session.execute(
        select(Document).where(Document.id == document_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_for_detail(session: AsyncSession, validation_detail_id: str) -> list[Document]:
    result = await session.execute(
        select(Document)
        .where(Document.validation_detail_id == validation_detail_id)
        .order_by(Document.created_at, Document.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def set_embedding_status(
    session: AsyncSession,
    document_id: str,
    *,
    status: str,
    file_search_document_id: str | None = None,
    file_search_store_id: str | None = None,
) -> None:
    # Completed documents are immutable, so never move them out of completed.
    values: dict[str, Any] = {"embedding_status": status}
    if file_search_document_id is not None:
        values["file_search_document_id"] = file_search_document_id
    if file_search_store_id is not None:
        values["file_search_store_id"] = file_search_store_id
    await session.execute(
        update(Document)
        .where(Document.id == document_id, Document.embedding_status != "completed")
        .values(**values)
    )


async def reset_for_reindex(session: AsyncSession, document_id: str) -> bool:
    # Clears the previous file search handle so the next run attaches a fresh one.
    result = await session.execute(
        update(Document)
        .where(Document.id == document_id, Document.embedding_status != "completed")
        .values(embedding_status="pending", file_search_document_id=None)
    )
    return result.rowcount == 1
