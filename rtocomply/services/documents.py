from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.config import get_settings
from rtocomply.core.errors import ConflictError, NotFoundError, RequestValidationError
from rtocomply.domain.models import Document, TERMINAL_OPERATION_STATUSES
from rtocomply.persistence.repos import catalog as catalog_repo
from rtocomply.persistence.repos import documents as documents_repo
from rtocomply.persistence.repos import operations as operations_repo
from rtocomply.persistence.repos import validations as validations_repo
from rtocomply.services.operations import OperationSnapshot, OperationsService
from rtocomply.services.storage import DocumentStorage


logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("assessment", "unit_requirement", "training_package", "other")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_metadata(metadata: dict[str, Any]) -> dict[str, str]:
    # File search metadata keys use hyphens and every value is sent as a string.
    return {
        str(key).replace("_", "-"): str(value)
        for key, value in metadata.items()
        if value is not None and value != ""
    }


@dataclass(frozen=True)
class DocumentCreated:
    document_id: str
    operation_id: str
    validation_detail_id: str | None
    embedding_status: str
    operation: OperationSnapshot


@dataclass(frozen=True)
class DocumentView:
    id: str
    rto_code: str
    unit_code: str | None
    document_type: str
    file_name: str
    storage_path: str
    embedding_status: str
    validation_detail_id: str | None
    file_search_store_id: str | None
    file_search_document_id: str | None
    metadata: dict[str, Any]
    latest_operation: OperationSnapshot | None

    @classmethod
    def from_row(cls, row: Document, latest_operation: OperationSnapshot | None) -> "DocumentView":
        return cls(
            id=row.id,
            rto_code=row.rto_code,
            unit_code=row.unit_code,
            document_type=row.document_type,
            file_name=row.file_name,
            storage_path=row.storage_path,
            embedding_status=row.embedding_status,
            validation_detail_id=row.validation_detail_id,
            file_search_store_id=row.file_search_store_id,
            file_search_document_id=row.file_search_document_id,
            metadata=dict(row.metadata_json or {}),
            latest_operation=latest_operation,
        )


@dataclass(frozen=True)
class ValidationReindexed:
    validation_detail_id: str
    document_ids: list[str]
    operation_ids: list[str]
    skipped_document_ids: list[str]

    @property
    def message(self) -> str:
        return f"{len(self.document_ids)} documents marked for re-indexing"


@dataclass(frozen=True)
class DocumentStatus:
    id: str
    file_name: str
    embedding_status: str
    file_search_document_id: str | None
    uploaded_at: datetime
    operation_status: str | None
    operation_progress: int
    error_message: str | None
    operation_count: int


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or str(value).strip() == ""]
    if missing:
        raise RequestValidationError(
            f"Missing required fields: {', '.join(missing)}", details={"missing": missing}
        )


def _check_document_type(document_type: str) -> None:
    if document_type not in DOCUMENT_TYPES:
        raise RequestValidationError(
            f"Invalid document type: {document_type}", details={"allowed": list(DOCUMENT_TYPES)}
        )


async def _ensure_detail(
    session: AsyncSession, *, rto_code: str, unit_code: str, validation_detail_id: str | None
) -> str:
    if validation_detail_id:
        detail = await validations_repo.get_detail(session, validation_detail_id)
        if detail is None:
            raise NotFoundError(
                "Validation detail not found", details={"validation_detail_id": validation_detail_id}
            )
        return detail.id
    summary = await validations_repo.get_summary_for_unit(session, unit_code=unit_code, rto_code=rto_code)
    if summary is None:
        requirements = await catalog_repo.list_requirements(session, unit_code, ("knowledge_evidence",))
        summary = await validations_repo.create_summary(
            session,
            unit_code=unit_code,
            rto_code=rto_code,
            unit_link=None,
            req_extracted=bool(requirements),
        )
    vtype = await validations_repo.get_or_create_type(session, "UnitOfCompetency")
    detail = await validations_repo.create_detail(
        session, summary_id=summary.id, validation_type_id=vtype.id, namespace_code=None
    )
    return detail.id


async def create_document(
    session: AsyncSession,
    *,
    rto_code: str,
    unit_code: str,
    document_type: str,
    file_name: str,
    storage_path: str,
    validation_detail_id: str | None = None,
    display_name: str | None = None,
    metadata: dict[str, Any] | None = None,
    max_wait_time_ms: int | None = None,
) -> DocumentCreated:
    """Register an uploaded file and its pending indexing operation.

    The document, its operation and (when absent) the validation session are
    written in one transaction, so a failure leaves no partial rows behind.
    """
    _require(
        rto_code=rto_code,
        unit_code=unit_code,
        document_type=document_type,
        file_name=file_name,
        storage_path=storage_path,
    )
    _check_document_type(document_type)
    settings = get_settings()
    try:
        rto = await catalog_repo.get_rto_by_code(session, rto_code)
        if rto is None:
            raise NotFoundError(f"RTO not found: {rto_code}", details={"rto_code": rto_code})
        detail_id = await _ensure_detail(
            session, rto_code=rto_code, unit_code=unit_code, validation_detail_id=validation_detail_id
        )
        detail = await validations_repo.get_detail(session, detail_id)
        base_metadata: dict[str, Any] = {
            "rto_code": rto_code,
            "rto_id": rto.id,
            "document_type": document_type,
            "unit_code": unit_code,
            "validation_detail_id": detail_id,
            "namespace": detail.namespace_code if detail else None,
            "upload_date": _utc_now().date().isoformat(),
            "storage_path": storage_path,
        }
        base_metadata.update(metadata or {})
        doc = await documents_repo.create_document(
            session,
            rto_code=rto_code,
            unit_code=unit_code,
            document_type=document_type,
            file_name=file_name,
            storage_path=storage_path,
            validation_detail_id=detail_id,
            display_name=display_name,
            metadata_json=normalize_metadata(base_metadata),
        )
        op = await operations_repo.create_operation(
            session,
            document_id=doc.id,
            validation_detail_id=detail_id,
            max_wait_time_ms=max_wait_time_ms or settings.operation_max_wait_ms_fast,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "document_created document_id=%s operation_id=%s rto_code=%s detail_id=%s",
        doc.id,
        op.id,
        rto_code,
        detail_id,
    )
    return DocumentCreated(
        document_id=doc.id,
        operation_id=op.id,
        validation_detail_id=detail_id,
        embedding_status=doc.embedding_status,
        operation=OperationSnapshot.from_row(op),
    )


async def upload_document(
    session: AsyncSession,
    *,
    storage: DocumentStorage,
    operations: OperationsService,
    rto_code: str,
    unit_code: str,
    document_type: str,
    file_name: str,
    content: bytes,
    validation_detail_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    start_indexing: bool = False,
) -> DocumentCreated:
    _require(rto_code=rto_code, unit_code=unit_code, document_type=document_type, file_name=file_name)
    _check_document_type(document_type)
    if not content:
        raise RequestValidationError("Uploaded file is empty")
    storage_path = storage.save(rto_code=rto_code, file_name=file_name, content=content)
    try:
        created = await create_document(
            session,
            rto_code=rto_code,
            unit_code=unit_code,
            document_type=document_type,
            file_name=file_name,
            storage_path=storage_path,
            validation_detail_id=validation_detail_id,
            metadata=metadata,
            max_wait_time_ms=get_settings().operation_max_wait_ms_async,
        )
    except Exception:
        # No row references the saved file, so remove it before surfacing the error.
        storage.delete(storage_path)
        raise
    if not start_indexing:
        return created
    snapshot = await operations.start(session, created.operation_id)
    return DocumentCreated(
        document_id=created.document_id,
        operation_id=created.operation_id,
        validation_detail_id=created.validation_detail_id,
        embedding_status="failed" if snapshot.status == "failed" else "processing",
        operation=snapshot,
    )


async def reindex_document(session: AsyncSession, document_id: str) -> DocumentCreated:
    doc = await documents_repo.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found", details={"document_id": document_id})
    if doc.embedding_status == "completed":
        raise ConflictError("Document is already indexed", details={"document_id": document_id})
    ops = await operations_repo.list_for_document(session, document_id)
    if any(op.status not in TERMINAL_OPERATION_STATUSES for op in ops):
        raise ConflictError(
            "Document already has an indexing operation in progress", details={"document_id": document_id}
        )
    try:
        await documents_repo.reset_for_reindex(session, document_id)
        op = await operations_repo.create_operation(
            session,
            document_id=document_id,
            validation_detail_id=doc.validation_detail_id,
            max_wait_time_ms=get_settings().operation_max_wait_ms_fast,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("document_reindex_queued document_id=%s operation_id=%s", document_id, op.id)
    return DocumentCreated(
        document_id=document_id,
        operation_id=op.id,
        validation_detail_id=doc.validation_detail_id,
        embedding_status="pending",
        operation=OperationSnapshot.from_row(op),
    )


async def get_document(session: AsyncSession, document_id: str) -> DocumentView:
    doc = await documents_repo.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found", details={"document_id": document_id})
    ops = await operations_repo.list_for_document(session, document_id)
    latest = OperationSnapshot.from_row(ops[0]) if ops else None
    return DocumentView.from_row(doc, latest)


async def reindex_validation(session: AsyncSession, validation_detail_id: str) -> ValidationReindexed:
    """Queue a fresh indexing operation for every document of a session.

    Completed documents and documents with an operation still in flight are
    left untouched and reported as skipped.
    """
    docs = await documents_repo.list_for_detail(session, validation_detail_id)
    if not docs:
        raise NotFoundError(
            "No documents found for this validation",
            details={"validation_detail_id": validation_detail_id},
        )
    ops = await operations_repo.list_for_detail(session, validation_detail_id)
    busy = {op.document_id for op in ops if op.status not in TERMINAL_OPERATION_STATUSES}
    eligible = [doc for doc in docs if doc.embedding_status != "completed" and doc.id not in busy]
    skipped = [doc.id for doc in docs if doc not in eligible]
    if not eligible:
        raise ConflictError(
            "No documents are eligible for re-indexing",
            details={"validation_detail_id": validation_detail_id, "skipped_document_ids": skipped},
        )
    max_wait_time_ms = get_settings().operation_max_wait_ms_fast
    operation_ids: list[str] = []
    try:
        for doc in eligible:
            await documents_repo.reset_for_reindex(session, doc.id)
            op = await operations_repo.create_operation(
                session,
                document_id=doc.id,
                validation_detail_id=validation_detail_id,
                max_wait_time_ms=max_wait_time_ms,
            )
            operation_ids.append(op.id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "validation_reindex_queued detail_id=%s documents=%s skipped=%s",
        validation_detail_id,
        len(eligible),
        len(skipped),
    )
    return ValidationReindexed(
        validation_detail_id=validation_detail_id,
        document_ids=[doc.id for doc in eligible],
        operation_ids=operation_ids,
        skipped_document_ids=skipped,
    )


async def get_validation_document_status(
    session: AsyncSession, validation_detail_id: str
) -> list[DocumentStatus]:
    detail = await validations_repo.get_detail(session, validation_detail_id)
    if detail is None:
        raise NotFoundError(
            "Validation detail not found", details={"validation_detail_id": validation_detail_id}
        )
    docs = await documents_repo.list_for_detail(session, validation_detail_id)
    statuses: list[DocumentStatus] = []
    # Newest upload first, each paired with its latest operation.
    for doc in reversed(docs):
        ops = await operations_repo.list_for_document(session, doc.id)
        latest = ops[0] if ops else None
        statuses.append(
            DocumentStatus(
                id=doc.id,
                file_name=doc.file_name,
                embedding_status=doc.embedding_status,
                file_search_document_id=doc.file_search_document_id,
                uploaded_at=doc.created_at,
                operation_status=latest.status if latest else None,
                operation_progress=int(latest.progress_percentage or 0) if latest else 0,
                error_message=latest.error_message if latest else None,
                operation_count=len(ops),
            )
        )
    return statuses
