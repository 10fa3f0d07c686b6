from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import NotFoundError, ProviderConfigError, RequestValidationError, WorkflowError
from rtocomply.domain.models import ValidationDetail, ValidationResult, ValidationSummary
from rtocomply.domain.results import RequirementResult, parse_result, result_from_row, result_to_row_values
from rtocomply.domain.stage import ValidationStage, WorkflowStep, derive_stage, workflow_steps
from rtocomply.persistence.repos import catalog as catalog_repo
from rtocomply.persistence.repos import documents as documents_repo
from rtocomply.persistence.repos import operations as operations_repo
from rtocomply.persistence.repos import validations as validations_repo
from rtocomply.services.credits import CreditLedger
from rtocomply.services.documents import DocumentView
from rtocomply.services.operations import OperationSnapshot
from rtocomply.services.requirements import fetch_requirements
from rtocomply.services.workflow import WorkflowClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationRecordCreated:
    summary_id: str
    detail_id: str
    validation_type_id: str
    namespace: str


@dataclass(frozen=True)
class ValidationSessionStatus:
    detail_id: str
    summary_id: str
    unit_code: str
    unit_link: str | None
    rto_code: str | None
    namespace_code: str | None
    extract_status: str
    doc_extracted: bool
    req_extracted: bool
    total_requirements: int
    completed_count: int
    stage: ValidationStage


@dataclass(frozen=True)
class ValidationSessionDetails:
    status: ValidationSessionStatus
    steps: list[WorkflowStep]
    documents: list[DocumentView] = field(default_factory=list)
    operations: list[OperationSnapshot] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationTriggered:
    detail_id: str
    requirements_count: int
    workflow_response: dict[str, Any]


def serialize_result(row: ValidationResult) -> dict[str, Any]:
    # Emit the tagged-union view plus row identity for clients.
    payload = result_from_row(row).model_dump(mode="json")
    payload["id"] = row.id
    payload["validation_detail_id"] = row.validation_detail_id
    payload["validation_method"] = row.validation_method
    return payload


async def _build_status(
    session: AsyncSession, detail: ValidationDetail, summary: ValidationSummary
) -> ValidationSessionStatus:
    completed = await validations_repo.count_completed_results(session, detail.id)
    return ValidationSessionStatus(
        detail_id=detail.id,
        summary_id=summary.id,
        unit_code=summary.unit_code,
        unit_link=summary.unit_link,
        rto_code=summary.rto_code,
        namespace_code=detail.namespace_code,
        extract_status=detail.extract_status,
        doc_extracted=bool(detail.doc_extracted),
        req_extracted=bool(summary.req_extracted),
        total_requirements=int(detail.num_of_req or 0),
        completed_count=completed,
        stage=derive_stage(
            bool(detail.doc_extracted),
            bool(summary.req_extracted),
            completed,
            int(detail.num_of_req or 0),
            detail.extract_status,
        ),
    )


async def _load_detail(session: AsyncSession, detail_id: str) -> tuple[ValidationDetail, ValidationSummary]:
    detail = await validations_repo.get_detail(session, detail_id)
    if detail is None:
        raise NotFoundError("Validation detail not found", details={"validation_detail_id": detail_id})
    summary = await validations_repo.get_summary(session, detail.summary_id)
    if summary is None:
        raise NotFoundError("Validation summary not found", details={"summary_id": detail.summary_id})
    return detail, summary


def _require_fields(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise RequestValidationError(
            f"Missing required fields: {', '.join(missing)}", details={"missing": missing}
        )


async def create_validation_record(
    session: AsyncSession,
    *,
    rto_code: str,
    unit_code: str,
    validation_type: str,
    namespace: str,
    unit_link: str | None = None,
    document_type: str = "unit",
) -> ValidationRecordCreated:
    _require_fields(
        rto_code=rto_code, unit_code=unit_code, validation_type=validation_type, namespace=namespace
    )
    try:
        if await catalog_repo.get_rto_by_code(session, rto_code) is None:
            raise NotFoundError(f"RTO not found: {rto_code}", details={"rto_code": rto_code})
        requirements = await fetch_requirements(session, unit_code)
        summary = await validations_repo.get_summary_for_unit(
            session, unit_code=unit_code, rto_code=rto_code, unit_link=unit_link
        )
        if summary is None:
            summary = await validations_repo.create_summary(
                session,
                unit_code=unit_code,
                rto_code=rto_code,
                unit_link=unit_link,
                req_extracted=bool(requirements),
            )
        elif requirements and not summary.req_extracted:
            summary.req_extracted = True
        if not summary.req_extracted:
            raise RequestValidationError(
                f"No requirements found for unit: {unit_code}. Please extract requirements first",
                details={"unit_code": unit_code},
            )
        vtype = await validations_repo.get_or_create_type(session, validation_type)
        detail = await validations_repo.create_detail(
            session,
            summary_id=summary.id,
            validation_type_id=vtype.id,
            namespace_code=namespace,
            document_type=document_type,
        )
        created = ValidationRecordCreated(
            summary_id=summary.id,
            detail_id=detail.id,
            validation_type_id=vtype.id,
            namespace=namespace,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "validation_record_created detail_id=%s unit_code=%s rto_code=%s",
        created.detail_id,
        unit_code,
        rto_code,
    )
    return created


async def create_validation_records_simple(
    session: AsyncSession,
    *,
    rto_code: str,
    unit_code: str,
    validation_type: str,
    namespace: str,
    document_type: str = "unit",
) -> ValidationRecordCreated:
    """Create a fresh summary, type and detail without a requirements check.

    Used by upload flows that attach documents before requirements have been
    extracted; the summary always starts with ``req_extracted`` unset.
    """
    _require_fields(
        rto_code=rto_code, unit_code=unit_code, validation_type=validation_type, namespace=namespace
    )
    try:
        if await catalog_repo.get_rto_by_code(session, rto_code) is None:
            raise NotFoundError(f"RTO not found: {rto_code}", details={"rto_code": rto_code})
        unit = await catalog_repo.get_unit(session, unit_code)
        summary = await validations_repo.create_summary(
            session,
            unit_code=unit_code,
            rto_code=rto_code,
            unit_link=unit.unit_link if unit is not None else None,
            req_extracted=False,
        )
        vtype = await validations_repo.get_or_create_type(session, validation_type)
        detail = await validations_repo.create_detail(
            session,
            summary_id=summary.id,
            validation_type_id=vtype.id,
            namespace_code=namespace,
            document_type=document_type,
        )
        created = ValidationRecordCreated(
            summary_id=summary.id,
            detail_id=detail.id,
            validation_type_id=vtype.id,
            namespace=namespace,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "validation_record_created detail_id=%s unit_code=%s rto_code=%s simple=true",
        created.detail_id,
        unit_code,
        rto_code,
    )
    return created


async def get_validation_status(session: AsyncSession, rto_code: str, *, limit: int = 50) -> list[ValidationSessionStatus]:
    if not rto_code:
        raise RequestValidationError("rto_code is required")
    pairs = await validations_repo.list_details_for_rto(session, rto_code, limit=limit)
    return [await _build_status(session, detail, summary) for detail, summary in pairs]


async def get_validation_details(session: AsyncSession, detail_id: str) -> ValidationSessionDetails:
    detail, summary = await _load_detail(session, detail_id)
    status = await _build_status(session, detail, summary)
    ops = await operations_repo.list_for_detail(session, detail_id)
    snapshots = [OperationSnapshot.from_row(op) for op in ops]
    latest_by_document: dict[str, OperationSnapshot] = {}
    for snapshot in snapshots:
        # Operations are ordered oldest first, so the last one seen per document wins.
        latest_by_document[snapshot.document_id] = snapshot
    documents = [
        DocumentView.from_row(doc, latest_by_document.get(doc.id))
        for doc in await documents_repo.list_for_detail(session, detail_id)
    ]
    results = [serialize_result(row) for row in await validations_repo.list_results(session, detail_id)]
    return ValidationSessionDetails(
        status=status,
        steps=workflow_steps(status.stage),
        documents=documents,
        operations=snapshots,
        results=results,
    )


async def trigger_validation(
    session: AsyncSession,
    detail_id: str,
    *,
    workflow: WorkflowClient,
    ledger: CreditLedger,
    signed_url: str | None = None,
) -> ValidationTriggered:
    """Hand a validation session to the workflow engine.

    One validation credit is consumed before the webhook call and refunded
    if the workflow engine rejects the request.
    """
    detail, summary = await _load_detail(session, detail_id)
    documents = await documents_repo.list_for_detail(session, detail_id)
    if not documents:
        raise NotFoundError("No documents found", details={"validation_detail_id": detail_id})
    first = documents[0]
    if not first.file_search_store_id:
        raise RequestValidationError(
            "Document not indexed", details={"document_id": first.id, "embedding_status": first.embedding_status}
        )
    vtype = await validations_repo.get_type(session, detail.validation_type_id)
    requirements = await fetch_requirements(session, summary.unit_code, "full_validation")
    if not requirements:
        raise RequestValidationError(
            f"No requirements found for unit: {summary.unit_code}", details={"unit_code": summary.unit_code}
        )
    rto_code = summary.rto_code or first.rto_code
    try:
        await validations_repo.update_detail(session, detail_id, num_of_req=len(requirements))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await ledger.consume(session, kind="validation", rto_code=rto_code, reason=f"validation:{detail_id}")
    payload = {
        "validationDetailId": detail_id,
        "documentId": first.id,
        "fileName": first.file_name,
        "storagePath": first.storage_path,
        "signedUrl": signed_url,
        "validationType": vtype.code if vtype else None,
        "fileSearchStore": first.file_search_store_id,
        "unitCode": summary.unit_code,
        "unitLink": summary.unit_link,
        "rtoCode": rto_code,
        "namespaceCode": detail.namespace_code,
        "requirements": [
            {
                "id": item.id,
                "type": item.type,
                "number": item.number,
                "text": item.text,
                "description": item.description,
            }
            for item in requirements
        ],
        "requirementsCount": len(requirements),
    }
    try:
        response = await workflow.trigger_validation(payload)
    except (WorkflowError, ProviderConfigError):
        await ledger.refund(session, kind="validation", rto_code=rto_code, reason=f"refund:validation:{detail_id}")
        raise
    logger.info("validation_triggered detail_id=%s requirements=%s", detail_id, len(requirements))
    return ValidationTriggered(
        detail_id=detail_id, requirements_count=len(requirements), workflow_response=response
    )


def _parse_results(items: list[dict[str, Any]]) -> list[RequirementResult]:
    parsed: list[RequirementResult] = []
    for index, item in enumerate(items):
        try:
            parsed.append(parse_result(item))
        except PydanticValidationError as exc:
            raise RequestValidationError(
                f"Invalid validation result at index {index}",
                details={"errors": exc.errors(include_url=False, include_input=False)},
            ) from exc
    return parsed


async def store_results(
    session: AsyncSession,
    detail_id: str,
    items: list[dict[str, Any]],
    *,
    validation_method: str | None = None,
) -> list[dict[str, Any]]:
    parsed = _parse_results(items)
    await _load_detail(session, detail_id)
    try:
        rows = [
            await validations_repo.upsert_result(
                session,
                detail_id=detail_id,
                values=result_to_row_values(result),
                validation_method=validation_method,
            )
            for result in parsed
        ]
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("validation_results_stored detail_id=%s count=%s", detail_id, len(rows))
    return [serialize_result(row) for row in rows]


async def _load_result(session: AsyncSession, result_id: str | None) -> ValidationResult:
    if not result_id:
        raise RequestValidationError("Missing validation_result_id")
    row = await validations_repo.get_result(session, result_id)
    if row is None:
        raise NotFoundError("Validation result not found", details={"validation_result_id": result_id})
    return row


async def _rto_for_result(session: AsyncSession, row: ValidationResult) -> str:
    _, summary = await _load_detail(session, row.validation_detail_id)
    if not summary.rto_code:
        raise NotFoundError("Validation session has no RTO", details={"validation_detail_id": row.validation_detail_id})
    return summary.rto_code


def _parse_revalidated(row: ValidationResult, response: dict[str, Any]) -> RequirementResult:
    # A reply the result model rejects is an upstream fault, not a client one.
    payload = response.get("validation_result") or response
    if not isinstance(payload, dict):
        raise WorkflowError("N8n webhook returned an invalid validation result")
    # Keep requirement identity fixed; only the verdict and evidence are replaced.
    updated_payload = dict(payload)
    updated_payload.update(
        requirement_type=row.requirement_type,
        requirement_number=row.requirement_number,
        requirement_text=row.requirement_text,
    )
    for key in ("id", "validation_detail_id", "validation_method"):
        updated_payload.pop(key, None)
    try:
        return parse_result(updated_payload)
    except PydanticValidationError as exc:
        raise WorkflowError(
            "N8n webhook returned an invalid validation result",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


def _optional_text(response: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = response.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise WorkflowError(f"N8n webhook returned a non-text {key}", details={"field": key})
        return value
    return None


async def revalidate_requirement(
    session: AsyncSession,
    result_id: str | None,
    *,
    workflow: WorkflowClient,
    ledger: CreditLedger,
) -> dict[str, Any]:
    row = await _load_result(session, result_id)
    rto_code = await _rto_for_result(session, row)
    current = serialize_result(row)
    await ledger.consume(session, kind="ai", rto_code=rto_code, reason=f"revalidate:{row.id}")
    try:
        response = await workflow.revalidate({"validation_result": current})
        updated = _parse_revalidated(row, response)
    except (WorkflowError, ProviderConfigError):
        await ledger.refund(session, kind="ai", rto_code=rto_code, reason=f"refund:revalidate:{row.id}")
        raise
    try:
        saved = await validations_repo.upsert_result(
            session,
            detail_id=row.validation_detail_id,
            values=result_to_row_values(updated),
            validation_method="revalidation",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("validation_result_revalidated result_id=%s status=%s", saved.id, saved.status)
    return serialize_result(saved)


async def regenerate_questions(
    session: AsyncSession,
    result_id: str | None,
    *,
    guidance: str | None,
    workflow: WorkflowClient,
    ledger: CreditLedger,
) -> dict[str, Any]:
    row = await _load_result(session, result_id)
    rto_code = await _rto_for_result(session, row)
    await ledger.consume(session, kind="ai", rto_code=rto_code, reason=f"smart_question:{row.id}")
    try:
        response = await workflow.regenerate_questions(
            {"validation_result": serialize_result(row), "user_guidance": guidance}
        )
        question = _optional_text(response, "question", "smart_question")
        if not question:
            raise WorkflowError("N8n webhook returned no question", details={"response_keys": sorted(response)})
        benchmark_answer = _optional_text(response, "benchmark_answer", "answer")
    except (WorkflowError, ProviderConfigError):
        await ledger.refund(session, kind="ai", rto_code=rto_code, reason=f"refund:smart_question:{row.id}")
        raise
    try:
        row.smart_question = question
        row.benchmark_answer = benchmark_answer
        await session.commit()
        await session.refresh(row)
    except Exception:
        await session.rollback()
        raise
    logger.info("validation_result_question_regenerated result_id=%s", row.id)
    return serialize_result(row)
