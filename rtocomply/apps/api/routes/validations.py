from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db, get_ledger, get_workflow
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.requests import RequestModel
from rtocomply.apps.api.response import success_response
from rtocomply.services import documents as documents_service
from rtocomply.services import validation as validation_service
from rtocomply.services.credits import CreditLedger
from rtocomply.services.workflow import WorkflowClient


router = APIRouter(tags=["validations"], responses=DEFAULT_ERROR_RESPONSES)


class CreateValidationRequest(RequestModel):
    rto_code: str
    unit_code: str
    validation_type: str
    namespace: str
    unit_link: str | None = None
    document_type: str = "unit"


class CreateValidationRecordsRequest(RequestModel):
    rto_code: str
    unit_code: str
    validation_type: str = "full_validation"
    namespace: str
    document_type: str = "unit"


class TriggerValidationRequest(RequestModel):
    signed_url: str | None = None


class StoreResultsRequest(RequestModel):
    # Items are validated per requirement type by the service.
    results: list[dict[str, Any]] = Field(default_factory=list)
    validation_method: str | None = None


class RevalidateRequest(RequestModel):
    validation_result_id: str | None = None


class RegenerateQuestionsRequest(RequestModel):
    validation_result_id: str | None = None
    user_guidance: str | None = None


@router.post("/validations", status_code=201)
async def create_validation(
    request: Request,
    body: CreateValidationRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    created = await validation_service.create_validation_record(
        db,
        rto_code=body.rto_code,
        unit_code=body.unit_code,
        validation_type=body.validation_type,
        namespace=body.namespace,
        unit_link=body.unit_link,
        document_type=body.document_type,
    )
    return success_response(request=request, data=created)


@router.post("/validation-records", status_code=201)
async def create_validation_records_simple(
    request: Request,
    body: CreateValidationRecordsRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    created = await validation_service.create_validation_records_simple(
        db,
        rto_code=body.rto_code,
        unit_code=body.unit_code,
        validation_type=body.validation_type,
        namespace=body.namespace,
        document_type=body.document_type,
    )
    return success_response(request=request, data=created)


@router.get("/validations")
async def list_validations(
    request: Request,
    rto_code: str = Query(...),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> dict:
    sessions = await validation_service.get_validation_status(db, rto_code, limit=limit)
    return success_response(request=request, validations=sessions, count=len(sessions))


@router.get("/validations/{detail_id}")
async def get_validation(
    request: Request,
    detail_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    details = await validation_service.get_validation_details(db, detail_id)
    return success_response(request=request, data=details)


@router.get("/validations/{detail_id}/documents")
async def get_validation_document_status(
    request: Request,
    detail_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    documents = await documents_service.get_validation_document_status(db, detail_id)
    return success_response(
        request=request,
        validation_detail_id=detail_id,
        documents=documents,
        document_count=len(documents),
    )


@router.post("/validations/{detail_id}/reindex", status_code=202)
async def reindex_validation(
    request: Request,
    detail_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    reindexed = await documents_service.reindex_validation(db, detail_id)
    return success_response(
        request=request,
        data=reindexed,
        message=reindexed.message,
        document_count=len(reindexed.document_ids),
    )


@router.post("/validations/{detail_id}/trigger", status_code=202)
async def trigger_validation(
    request: Request,
    detail_id: str,
    body: TriggerValidationRequest | None = None,
    db: AsyncSession = Depends(get_db),
    workflow: WorkflowClient = Depends(get_workflow),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    triggered = await validation_service.trigger_validation(
        db,
        detail_id,
        workflow=workflow,
        ledger=ledger,
        signed_url=body.signed_url if body else None,
    )
    return success_response(request=request, data=triggered)


@router.post("/validations/{detail_id}/results")
async def store_validation_results(
    request: Request,
    detail_id: str,
    body: StoreResultsRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    stored = await validation_service.store_results(
        db, detail_id, body.results, validation_method=body.validation_method
    )
    return success_response(request=request, results=stored, count=len(stored))


@router.post("/validation-results/revalidate")
async def revalidate_requirement(
    request: Request,
    body: RevalidateRequest,
    db: AsyncSession = Depends(get_db),
    workflow: WorkflowClient = Depends(get_workflow),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    result = await validation_service.revalidate_requirement(
        db, body.validation_result_id, workflow=workflow, ledger=ledger
    )
    return success_response(request=request, validation_result=result)


@router.post("/validation-results/regenerate-questions")
async def regenerate_questions(
    request: Request,
    body: RegenerateQuestionsRequest,
    db: AsyncSession = Depends(get_db),
    workflow: WorkflowClient = Depends(get_workflow),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    result = await validation_service.regenerate_questions(
        db,
        body.validation_result_id,
        guidance=body.user_guidance,
        workflow=workflow,
        ledger=ledger,
    )
    return success_response(request=request, validation_result=result)
