from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from rtocomply.core.config import Settings
from rtocomply.core.errors import ConflictError, RequestValidationError
from rtocomply.domain.models import Document, ValidationDetail
from rtocomply.persistence.db import SessionLocal
from rtocomply.persistence.repos import operations as operations_repo
from rtocomply.providers.file_search.gemini import GeminiFileSearchProvider
from rtocomply.services import documents as documents_service
from rtocomply.services.operations import OperationsService, estimate_progress
from rtocomply.tests.utils.seed import FrozenClock, load_operation, seed_catalog, set_operation


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_estimate_progress_starts_at_ten_and_caps_below_complete() -> None:
    assert estimate_progress(0, 60000) == 10
    assert estimate_progress(30000, 60000) == 50
    assert estimate_progress(600000, 60000) == 82
    assert estimate_progress(1000, 0) == 10


async def _started_operation(provider, storage, clock) -> tuple[OperationsService, str]:
    # Upload a document and hand it to the provider so reconciliation has a handle to poll.
    await seed_catalog()
    service = OperationsService(provider, storage=storage, time_provider=clock)
    async with SessionLocal() as session:
        created = await documents_service.upload_document(
            session,
            storage=storage,
            operations=service,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="assessment.pdf",
            content=b"%PDF-1.4 assessment",
            start_indexing=True,
        )
    assert created.operation.status == "processing"
    assert created.operation.operation_name
    return service, created.operation_id


@pytest.mark.asyncio
async def test_start_records_provider_handle(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    _, operation_id = await _started_operation(fake_provider, storage, clock)

    op = await load_operation(operation_id)
    assert op.status == "processing"
    assert op.progress_percentage == 10
    assert op.operation_name.startswith("fileSearchStores/rto-7148-assessments/")
    upload = fake_provider.uploads[0]
    assert upload["metadata"]["unit-code"] == "BSBWHS332X"
    assert upload["metadata"]["document-type"] == "assessment"

    async with SessionLocal() as session:
        doc = await session.get(Document, op.document_id)
        detail = await session.get(ValidationDetail, op.validation_detail_id)
    assert doc.embedding_status == "processing"
    assert doc.file_search_store_id == "fileSearchStores/rto-7148-assessments"
    assert detail.extract_status == "DocumentProcessing"


@pytest.mark.asyncio
async def test_running_operation_reports_estimated_progress(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)

    clock.now = START + timedelta(seconds=30)
    async with SessionLocal() as session:
        snapshot = await service.reconcile(session, operation_id)

    # 30s of a 300s budget: 10 + 0.1 * 80.
    assert snapshot.status == "processing"
    assert snapshot.progress_percentage == 18
    assert snapshot.check_count == 1
    assert snapshot.elapsed_time_ms == 30000


@pytest.mark.asyncio
async def test_completed_operation_marks_document_and_session(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    op = await load_operation(operation_id)
    fake_provider.complete(op.operation_name, document_name="fileSearchStores/s/documents/d1")

    clock.now = START + timedelta(seconds=5)
    async with SessionLocal() as session:
        snapshot = await service.reconcile(session, operation_id)
        doc = await session.get(Document, op.document_id)
        detail = await session.get(ValidationDetail, op.validation_detail_id)

    assert snapshot.status == "completed"
    assert snapshot.progress_percentage == 100
    assert snapshot.completed_at is not None
    assert doc.embedding_status == "completed"
    assert doc.file_search_document_id == "fileSearchStores/s/documents/d1"
    assert detail.doc_extracted is True
    assert detail.extract_status == "DocumentsUploaded"


@pytest.mark.asyncio
async def test_timeout_keeps_last_progress(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    await set_operation(operation_id, progress_percentage=37, max_wait_time_ms=60000)

    clock.now = START + timedelta(seconds=61)
    async with SessionLocal() as session:
        snapshot = await service.reconcile(session, operation_id)
        doc = await session.get(Document, snapshot.document_id)

    assert snapshot.status == "timeout"
    assert snapshot.progress_percentage == 37
    assert snapshot.error_message == "Operation exceeded maximum wait time of 60000ms"
    assert doc.embedding_status == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["completed", "failed", "timeout"])
async def test_terminal_operations_are_never_reopened(fake_provider, storage, terminal) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    await set_operation(operation_id, status=terminal, progress_percentage=64)
    op = await load_operation(operation_id)
    # Provider now reports a different outcome; it must be ignored.
    fake_provider.complete(op.operation_name, error="late failure")
    calls_before = len(fake_provider.get_operation_calls)

    clock.now = START + timedelta(hours=1)
    async with SessionLocal() as session:
        first = await service.reconcile(session, operation_id)
        second = await service.reconcile(session, operation_id)

    assert first.status == second.status == terminal
    assert first.progress_percentage == second.progress_percentage == 64
    assert len(fake_provider.get_operation_calls) == calls_before


@pytest.mark.asyncio
async def test_provider_error_fails_operation(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    fake_provider.operation_error = "Requested entity was not found."

    async with SessionLocal() as session:
        snapshot = await service.reconcile(session, operation_id)

    assert snapshot.status == "failed"
    assert snapshot.error_message == "Requested entity was not found."


@pytest.mark.asyncio
async def test_done_with_error_fails_operation(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    op = await load_operation(operation_id)
    fake_provider.complete(op.operation_name, error="File is not a supported format")

    async with SessionLocal() as session:
        snapshot = await service.reconcile(session, operation_id)

    assert snapshot.status == "failed"
    assert snapshot.error_message == "File is not a supported format"


@pytest.mark.asyncio
async def test_guarded_update_refuses_terminal_rows(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    _, operation_id = await _started_operation(fake_provider, storage, clock)
    await set_operation(operation_id, status="completed")

    async with SessionLocal() as session:
        applied = await operations_repo.update_if_open(session, operation_id, status="failed")
        await session.commit()

    assert applied is False
    assert (await load_operation(operation_id)).status == "completed"


@pytest.mark.asyncio
async def test_unstarted_operation_is_left_for_the_sweep(fake_provider, storage) -> None:
    await seed_catalog()
    service = OperationsService(fake_provider, storage=storage, time_provider=FrozenClock(START))
    async with SessionLocal() as session:
        created = await documents_service.create_document(
            session,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="a.pdf",
            storage_path="7148/a.pdf",
        )
        snapshot = await service.reconcile(session, created.operation_id)

    assert snapshot.status == "pending"
    assert snapshot.check_count == 0
    assert fake_provider.get_operation_calls == []


@pytest.mark.asyncio
async def test_find_operation_requires_id_or_name(fake_provider) -> None:
    service = OperationsService(fake_provider)
    async with SessionLocal() as session:
        with pytest.raises(RequestValidationError) as excinfo:
            await service.find_operation_id(session, operation_id=None, operation_name=None)
    assert excinfo.value.message == "Must provide either operationId or operationName"


@pytest.mark.asyncio
async def test_start_refuses_operation_that_is_not_pending(fake_provider, storage) -> None:
    clock = FrozenClock(START)
    service, operation_id = await _started_operation(fake_provider, storage, clock)
    async with SessionLocal() as session:
        with pytest.raises(ConflictError):
            await service.start(session, operation_id)


@pytest.mark.asyncio
async def test_sweep_starts_pending_and_resets_stuck(fake_provider, storage) -> None:
    await seed_catalog()
    clock = FrozenClock(START)
    service = OperationsService(fake_provider, storage=storage, time_provider=clock)
    async with SessionLocal() as session:
        queued = await documents_service.upload_document(
            session,
            storage=storage,
            operations=service,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="queued.pdf",
            content=b"queued",
        )
        stuck = await documents_service.upload_document(
            session,
            storage=storage,
            operations=service,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="stuck.pdf",
            content=b"stuck",
        )
    # Simulate a sweep that claimed the row and crashed before uploading.
    await set_operation(stuck.operation_id, status="processing", started_at=START - timedelta(minutes=10))

    async with SessionLocal() as session:
        result = await service.process_pending_indexing(session)

    assert result.reset_count == 1
    assert result.processed == 1
    assert result.started == 1
    assert (await load_operation(stuck.operation_id)).status == "failed"
    started = await load_operation(queued.operation_id)
    assert started.status == "processing"
    assert started.operation_name is not None


@pytest.mark.asyncio
async def test_failed_upload_marks_operation_and_document_failed(fake_provider, storage) -> None:
    await seed_catalog()
    fake_provider.upload_error = "Upload quota exceeded"
    service = OperationsService(fake_provider, storage=storage, time_provider=FrozenClock(START))
    async with SessionLocal() as session:
        created = await documents_service.upload_document(
            session,
            storage=storage,
            operations=service,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="a.pdf",
            content=b"content",
            start_indexing=True,
        )
        doc = await session.get(Document, created.document_id)

    assert created.operation.status == "failed"
    assert created.operation.error_message == "Upload quota exceeded"
    assert created.embedding_status == "failed"
    assert doc.embedding_status == "failed"


@pytest.mark.asyncio
async def test_missing_provider_key_fails_operation_and_document(storage) -> None:
    await seed_catalog()
    provider = GeminiFileSearchProvider(settings=Settings(gemini_api_key=None))
    service = OperationsService(provider, storage=storage, time_provider=FrozenClock(START))
    async with SessionLocal() as session:
        created = await documents_service.upload_document(
            session,
            storage=storage,
            operations=service,
            rto_code="7148",
            unit_code="BSBWHS332X",
            document_type="assessment",
            file_name="a.pdf",
            content=b"content",
            start_indexing=True,
        )
        doc = await session.get(Document, created.document_id)

    op = await load_operation(created.operation_id)
    assert op.status == "failed"
    assert op.error_message == "Gemini config missing: set GEMINI_API_KEY in .env."
    assert created.embedding_status == "failed"
    assert doc.embedding_status == "failed"
