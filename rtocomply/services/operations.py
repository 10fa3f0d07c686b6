from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.config import get_settings
from rtocomply.core.errors import (
    ConflictError,
    NotFoundError,
    ProviderConfigError,
    ProviderError,
    RequestValidationError,
    StorageError,
)
from rtocomply.domain.models import Document, GeminiOperation, TERMINAL_OPERATION_STATUSES
from rtocomply.persistence.repos import documents as documents_repo
from rtocomply.persistence.repos import operations as operations_repo
from rtocomply.persistence.repos import validations as validations_repo
from rtocomply.providers.file_search.base import FileSearchProvider
from rtocomply.services.storage import DocumentStorage, guess_mime_type


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes; treat stored values as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def estimate_progress(elapsed_ms: int, max_wait_ms: int) -> int:
    """Estimate progress for a running operation from elapsed wall-clock time.

    The estimate starts at 10, grows linearly with elapsed/max and is capped at
    82 so a running operation never reports 100 before the provider does.
    """
    if max_wait_ms <= 0:
        return 10
    ratio = min(max(elapsed_ms, 0) / max_wait_ms, 0.9)
    return int(math.floor(10 + ratio * 80))


def store_display_name(rto_code: str) -> str:
    return f"rto-{rto_code.lower()}-assessments"


@dataclass(frozen=True)
class OperationSnapshot:
    id: str
    document_id: str
    validation_detail_id: str | None
    operation_name: str | None
    status: str
    progress_percentage: int
    error_message: str | None
    check_count: int
    elapsed_time_ms: int | None
    max_wait_time_ms: int
    started_at: datetime | None
    completed_at: datetime | None
    last_check_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OPERATION_STATUSES

    @classmethod
    def from_row(cls, row: GeminiOperation) -> "OperationSnapshot":
        return cls(
            id=row.id,
            document_id=row.document_id,
            validation_detail_id=row.validation_detail_id,
            operation_name=row.operation_name,
            status=row.status,
            progress_percentage=int(row.progress_percentage or 0),
            error_message=row.error_message,
            check_count=int(row.check_count or 0),
            elapsed_time_ms=row.elapsed_time_ms,
            max_wait_time_ms=int(row.max_wait_time_ms),
            started_at=_as_utc(row.started_at),
            completed_at=_as_utc(row.completed_at),
            last_check_at=_as_utc(row.last_check_at),
        )


@dataclass(frozen=True)
class OperationsSummary:
    validation_detail_id: str
    all_completed: bool
    any_failed: bool
    total_count: int
    completed_count: int
    processing_count: int
    pending_count: int
    failed_count: int
    timeout_count: int
    operations: list[OperationSnapshot] = field(default_factory=list)


@dataclass(frozen=True)
class PendingIndexingResult:
    reset_count: int
    processed: int
    started: int
    failed: int
    operations: list[OperationSnapshot] = field(default_factory=list)


def summarize_operations(validation_detail_id: str, snapshots: list[OperationSnapshot]) -> OperationsSummary:
    counts = {status: 0 for status in ("pending", "processing", "completed", "failed", "timeout")}
    for snapshot in snapshots:
        counts[snapshot.status] = counts.get(snapshot.status, 0) + 1
    total = len(snapshots)
    return OperationsSummary(
        validation_detail_id=validation_detail_id,
        all_completed=total > 0 and counts["completed"] == total,
        any_failed=counts["failed"] > 0 or counts["timeout"] > 0,
        total_count=total,
        completed_count=counts["completed"],
        processing_count=counts["processing"],
        pending_count=counts["pending"],
        failed_count=counts["failed"],
        timeout_count=counts["timeout"],
        operations=snapshots,
    )


class OperationsService:
    """Drive indexing operations through their lifecycle.

    Reconciliation is a cooperative polling contract: callers decide when to
    poll, and every call is safe to repeat. Terminal operations are returned
    untouched, and writes are guarded so only one pass can move an operation
    into a terminal state.
    """

    def __init__(
        self,
        provider: FileSearchProvider,
        *,
        storage: DocumentStorage | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._storage = storage
        self._time_provider = time_provider or _utc_now
        self._settings = get_settings()

    def _now(self) -> datetime:
        return _as_utc(self._time_provider())  # type: ignore[return-value]

    async def _load(self, session: AsyncSession, operation_id: str) -> GeminiOperation:
        op = await operations_repo.get_operation(session, operation_id)
        if op is None:
            raise NotFoundError("Operation not found", details={"operation_id": operation_id})
        return op

    async def _snapshot(self, session: AsyncSession, op: GeminiOperation) -> OperationSnapshot:
        await session.refresh(op)
        return OperationSnapshot.from_row(op)

    async def find_operation_id(
        self, session: AsyncSession, *, operation_id: str | None, operation_name: str | None
    ) -> str:
        if operation_id:
            return (await self._load(session, operation_id)).id
        if operation_name:
            op = await operations_repo.get_by_name(session, operation_name)
            if op is None:
                raise NotFoundError("Operation not found", details={"operation_name": operation_name})
            return op.id
        raise RequestValidationError("Must provide either operationId or operationName")

    async def reconcile(self, session: AsyncSession, operation_id: str) -> OperationSnapshot:
        op = await self._load(session, operation_id)
        if op.status in TERMINAL_OPERATION_STATUSES:
            return OperationSnapshot.from_row(op)
        if not op.operation_name:
            # Not started yet; the pending-indexing sweep owns this row.
            return OperationSnapshot.from_row(op)

        now = self._now()
        started = _as_utc(op.started_at) or _as_utc(op.created_at) or now
        elapsed_ms = max(0, int((now - started).total_seconds() * 1000))
        values: dict[str, object] = {
            "check_count": GeminiOperation.check_count + 1,
            "last_check_at": now,
            "elapsed_time_ms": elapsed_ms,
        }

        document_status: str | None = None
        extract_status: str | None = None
        document_name: str | None = None
        try:
            remote = await self._provider.get_operation(op.operation_name)
        except ProviderError as exc:
            logger.warning("operation_check_failed operation_id=%s error=%s", op.id, exc.message)
            values.update(status="failed", error_message=exc.message, completed_at=now)
            document_status = "failed"
            extract_status = "Failed"
        else:
            if remote.done and remote.error:
                values.update(status="failed", error_message=remote.error, completed_at=now)
                document_status = "failed"
                extract_status = "Failed"
            elif remote.done:
                values.update(status="completed", progress_percentage=100, completed_at=now)
                document_status = "completed"
                extract_status = "DocumentsUploaded"
                document_name = remote.document_name
            elif elapsed_ms > op.max_wait_time_ms:
                # Leave progress at its last recorded value so the UI shows where it stalled.
                values.update(
                    status="timeout",
                    error_message=f"Operation exceeded maximum wait time of {op.max_wait_time_ms}ms",
                    completed_at=now,
                )
                document_status = "failed"
                extract_status = "Failed"
            else:
                progress = max(int(op.progress_percentage or 0), estimate_progress(elapsed_ms, op.max_wait_time_ms))
                values.update(status="processing", progress_percentage=min(progress, 99))
                document_status = "processing"

        try:
            applied = await operations_repo.update_if_open(session, op.id, **values)
            if applied and document_status is not None:
                await documents_repo.set_embedding_status(
                    session,
                    op.document_id,
                    status=document_status,
                    file_search_document_id=document_name,
                )
            if applied and extract_status is not None and op.validation_detail_id:
                detail_values: dict[str, object] = {"extract_status": extract_status}
                if extract_status == "DocumentsUploaded":
                    detail_values["doc_extracted"] = True
                await validations_repo.update_detail(session, op.validation_detail_id, **detail_values)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        snapshot = await self._snapshot(session, op)
        if applied and snapshot.is_terminal:
            logger.info(
                "operation_%s operation_id=%s elapsed_ms=%s checks=%s",
                snapshot.status,
                snapshot.id,
                elapsed_ms,
                snapshot.check_count,
            )
        return snapshot

    async def reconcile_session(self, session: AsyncSession, validation_detail_id: str) -> OperationsSummary:
        ops = await operations_repo.list_for_detail(session, validation_detail_id)
        snapshots = [await self.reconcile(session, op.id) for op in ops]
        return summarize_operations(validation_detail_id, snapshots)

    async def _resolve_store(self, document: Document) -> str:
        # Reuse an explicit store resource; otherwise fall back to the per-RTO store.
        if document.file_search_store_id and document.file_search_store_id.startswith("fileSearchStores/"):
            return document.file_search_store_id
        display_name = document.file_search_store_id or store_display_name(document.rto_code)
        return await self._provider.get_or_create_store(display_name)

    async def start(self, session: AsyncSession, operation_id: str) -> OperationSnapshot:
        """Upload the operation's document to the provider and record the handle."""
        op = await self._load(session, operation_id)
        now = self._now()
        try:
            claimed = await operations_repo.claim_pending(session, op.id, started_at=now)
            if not claimed:
                raise ConflictError(
                    "Operation is not pending", details={"operation_id": op.id, "status": op.status}
                )
            await documents_repo.set_embedding_status(session, op.document_id, status="processing")
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        document = await documents_repo.get_document(session, op.document_id)
        if document is None:
            return await self._fail(session, op, now, "Document not found")
        storage = self._storage or DocumentStorage()
        try:
            content = storage.read(document.storage_path)
            store_name = await self._resolve_store(document)
            remote = await self._provider.upload_document(
                store_name=store_name,
                content=content,
                file_name=document.file_name,
                display_name=document.display_name or document.file_name,
                mime_type=guess_mime_type(document.file_name),
                metadata={key: str(value) for key, value in (document.metadata_json or {}).items()},
            )
        except (StorageError, ProviderError, ProviderConfigError) as exc:
            logger.warning("operation_start_failed operation_id=%s error=%s", op.id, exc.message)
            return await self._fail(session, op, now, exc.message)

        try:
            await operations_repo.update_if_open(
                session, op.id, operation_name=remote.name, progress_percentage=10
            )
            await documents_repo.set_embedding_status(
                session, document.id, status="processing", file_search_store_id=store_name
            )
            if op.validation_detail_id:
                await validations_repo.update_detail(
                    session, op.validation_detail_id, extract_status="DocumentProcessing"
                )
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        logger.info("operation_started operation_id=%s operation_name=%s", op.id, remote.name)
        if remote.done:
            return await self.reconcile(session, op.id)
        return await self._snapshot(session, op)

    async def _fail(self, session: AsyncSession, op: GeminiOperation, now: datetime, message: str) -> OperationSnapshot:
        try:
            await operations_repo.update_if_open(
                session, op.id, status="failed", error_message=message, completed_at=now
            )
            await documents_repo.set_embedding_status(session, op.document_id, status="failed")
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return await self._snapshot(session, op)

    async def reset_stuck_operations(self, session: AsyncSession) -> int:
        # Claimed rows that never received a provider handle cannot be reconciled; fail them.
        now = self._now()
        threshold = now - timedelta(seconds=self._settings.stuck_operation_threshold_s)
        stuck = await operations_repo.list_stuck_processing(session, started_before=threshold)
        for op in stuck:
            await self._fail(session, op, now, "Indexing stalled before the provider upload started")
        if stuck:
            logger.warning("pending_indexing_reset_stuck count=%s", len(stuck))
        return len(stuck)

    async def process_pending_indexing(self, session: AsyncSession) -> PendingIndexingResult:
        reset_count = await self.reset_stuck_operations(session)
        pending = await operations_repo.list_pending(
            session, limit=max(1, self._settings.pending_indexing_batch_size)
        )
        snapshots: list[OperationSnapshot] = []
        for op in pending:
            try:
                snapshots.append(await self.start(session, op.id))
            except ConflictError:
                # Another sweep claimed it first.
                continue
        failed = sum(1 for snapshot in snapshots if snapshot.status == "failed")
        result = PendingIndexingResult(
            reset_count=reset_count,
            processed=len(snapshots),
            started=len(snapshots) - failed,
            failed=failed,
            operations=snapshots,
        )
        logger.info(
            "pending_indexing_sweep processed=%s started=%s failed=%s reset=%s",
            result.processed,
            result.started,
            result.failed,
            result.reset_count,
        )
        return result
