from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from rtocomply.core.errors import ConflictError, NotFoundError, RequestValidationError
from rtocomply.domain.models import Document, GeminiOperation, ValidationDetail, ValidationSummary
from rtocomply.persistence.db import SessionLocal
from rtocomply.services import documents as documents_service
from rtocomply.services import validation as validation_service
from rtocomply.services.operations import OperationsService
from rtocomply.tests.utils.seed import RTO_CODE, UNIT_CODE, seed_catalog, set_operation


async def _all(model) -> list:
    async with SessionLocal() as session:
        return list((await session.execute(select(model))).scalars().all())


def test_metadata_keys_are_hyphenated_and_stringified() -> None:
    assert documents_service.normalize_metadata({"unit_code": "X1", "page_count": 4, "namespace": None}) == {
        "unit-code": "X1",
        "page-count": "4",
    }


@pytest.mark.asyncio
async def test_upload_creates_one_pending_document_and_operation(fake_provider, storage) -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        created = await documents_service.upload_document(
            session,
            storage=storage,
            operations=OperationsService(fake_provider, storage=storage),
            rto_code=RTO_CODE,
            unit_code=UNIT_CODE,
            document_type="assessment",
            file_name="tool.pdf",
            content=b"%PDF",
        )

    documents = await _all(Document)
    operations = await _all(GeminiOperation)
    assert len(documents) == 1
    assert len(operations) == 1
    assert documents[0].embedding_status == "pending"
    assert operations[0].status == "pending"
    assert operations[0].document_id == documents[0].id == created.document_id
    assert operations[0].validation_detail_id == created.validation_detail_id
    assert storage.read(documents[0].storage_path) == b"%PDF"
    assert fake_provider.uploads == []


@pytest.mark.asyncio
async def test_create_document_opens_a_validation_session() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        created = await documents_service.create_document(
            session,
            rto_code=RTO_CODE,
            unit_code=UNIT_CODE,
            document_type="assessment",
            file_name="tool.pdf",
            storage_path="7148/tool.pdf",
            metadata={"assessor": "J. Smith"},
        )
        detail = await session.get(ValidationDetail, created.validation_detail_id)
        summary = await session.get(ValidationSummary, detail.summary_id)
        doc = await session.get(Document, created.document_id)

    assert summary.req_extracted is True
    assert detail.extract_status == "Uploading"
    assert doc.metadata_json["rto-code"] == RTO_CODE
    assert doc.metadata_json["validation-detail-id"] == created.validation_detail_id
    assert doc.metadata_json["assessor"] == "J. Smith"


@pytest.mark.asyncio
async def test_invalid_input_writes_nothing(storage) -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        with pytest.raises(RequestValidationError):
            await documents_service.create_document(
                session,
                rto_code=RTO_CODE,
                unit_code=UNIT_CODE,
                document_type="spreadsheet",
                file_name="tool.pdf",
                storage_path="7148/tool.pdf",
            )
        with pytest.raises(NotFoundError):
            await documents_service.create_document(
                session,
                rto_code="9999",
                unit_code=UNIT_CODE,
                document_type="assessment",
                file_name="tool.pdf",
                storage_path="9999/tool.pdf",
            )
        with pytest.raises(RequestValidationError):
            await documents_service.create_document(
                session,
                rto_code=RTO_CODE,
                unit_code="",
                document_type="assessment",
                file_name="tool.pdf",
                storage_path="7148/tool.pdf",
            )

    assert await _all(Document) == []
    assert await _all(GeminiOperation) == []
    assert await _all(ValidationDetail) == []


@pytest.mark.asyncio
async def test_reindex_requires_a_finished_failed_attempt() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        created = await documents_service.create_document(
            session,
            rto_code=RTO_CODE,
            unit_code=UNIT_CODE,
            document_type="assessment",
            file_name="tool.pdf",
            storage_path="7148/tool.pdf",
        )
        with pytest.raises(ConflictError):
            await documents_service.reindex_document(session, created.document_id)

    await set_operation(created.operation_id, status="failed")
    async with SessionLocal() as session:
        requeued = await documents_service.reindex_document(session, created.document_id)
        view = await documents_service.get_document(session, created.document_id)

    assert requeued.operation_id != created.operation_id
    assert requeued.operation.status == "pending"
    assert view.embedding_status == "pending"
    assert len(await _all(GeminiOperation)) == 2


async def _set_document(document_id: str, **values: object) -> None:
    async with SessionLocal() as session:
        doc = await session.get(Document, document_id)
        for key, value in values.items():
            setattr(doc, key, value)
        await session.commit()


async def _register(file_name: str, validation_detail_id: str | None = None):
    async with SessionLocal() as session:
        return await documents_service.create_document(
            session,
            rto_code=RTO_CODE,
            unit_code=UNIT_CODE,
            document_type="assessment",
            file_name=file_name,
            storage_path=f"7148/{file_name}",
            validation_detail_id=validation_detail_id,
        )


@pytest.mark.asyncio
async def test_failed_registration_removes_the_stored_file(fake_provider, storage) -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await documents_service.upload_document(
                session,
                storage=storage,
                operations=OperationsService(fake_provider, storage=storage),
                rto_code="9999",
                unit_code=UNIT_CODE,
                document_type="assessment",
                file_name="tool.pdf",
                content=b"%PDF",
            )

    assert [path for path in storage.root.rglob("*") if path.is_file()] == []
    assert await _all(Document) == []


@pytest.mark.asyncio
async def test_reindex_validation_requeues_unfinished_documents() -> None:
    await seed_catalog()
    failed = await _register("failed.pdf")
    indexed = await _register("indexed.pdf", failed.validation_detail_id)
    await set_operation(failed.operation_id, status="failed")
    await _set_document(failed.document_id, embedding_status="failed", file_search_document_id="docs/old")
    await set_operation(indexed.operation_id, status="completed")
    await _set_document(indexed.document_id, embedding_status="completed", file_search_document_id="docs/kept")

    async with SessionLocal() as session:
        reindexed = await documents_service.reindex_validation(session, failed.validation_detail_id)

    assert reindexed.document_ids == [failed.document_id]
    assert reindexed.skipped_document_ids == [indexed.document_id]
    assert reindexed.message == "1 documents marked for re-indexing"
    documents = {doc.id: doc for doc in await _all(Document)}
    assert documents[failed.document_id].embedding_status == "pending"
    assert documents[failed.document_id].file_search_document_id is None
    assert documents[indexed.document_id].embedding_status == "completed"
    assert documents[indexed.document_id].file_search_document_id == "docs/kept"
    operations = await _all(GeminiOperation)
    assert len(operations) == 3
    new_op = next(op for op in operations if op.id == reindexed.operation_ids[0])
    assert new_op.status == "pending"
    assert new_op.document_id == failed.document_id


@pytest.mark.asyncio
async def test_reindex_validation_without_documents_is_not_found() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        record = await validation_service.create_validation_records_simple(
            session, rto_code=RTO_CODE, unit_code=UNIT_CODE, validation_type="full_validation", namespace="ns-1"
        )
        with pytest.raises(NotFoundError) as excinfo:
            await documents_service.reindex_validation(session, record.detail_id)
    assert excinfo.value.message == "No documents found for this validation"


@pytest.mark.asyncio
async def test_reindex_validation_skips_documents_with_open_operations() -> None:
    await seed_catalog()
    created = await _register("tool.pdf")
    async with SessionLocal() as session:
        with pytest.raises(ConflictError) as excinfo:
            await documents_service.reindex_validation(session, created.validation_detail_id)

    assert excinfo.value.details["skipped_document_ids"] == [created.document_id]
    assert len(await _all(GeminiOperation)) == 1


@pytest.mark.asyncio
async def test_document_status_reports_latest_operation_per_document() -> None:
    await seed_catalog()
    first = await _register("first.pdf")
    second = await _register("second.pdf", first.validation_detail_id)
    # Age the first attempt so the requeued operation sorts as the latest.
    await set_operation(
        first.operation_id,
        status="failed",
        error_message="quota exceeded",
        created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )
    async with SessionLocal() as session:
        await documents_service.reindex_document(session, first.document_id)
        statuses = await documents_service.get_validation_document_status(session, first.validation_detail_id)

    by_id = {status.id: status for status in statuses}
    assert set(by_id) == {first.document_id, second.document_id}
    assert by_id[first.document_id].operation_count == 2
    assert by_id[first.document_id].operation_status == "pending"
    assert by_id[first.document_id].error_message is None
    assert by_id[second.document_id].operation_count == 1
    assert by_id[second.document_id].file_name == "second.pdf"


@pytest.mark.asyncio
async def test_document_status_for_unknown_session_is_not_found() -> None:
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await documents_service.get_validation_document_status(session, "missing")
