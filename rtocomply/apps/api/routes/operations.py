from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db, get_operations_service
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.requests import RequestModel
from rtocomply.apps.api.response import success_response
from rtocomply.core.errors import RequestValidationError
from rtocomply.services.operations import OperationsService


router = APIRouter(prefix="/operations", tags=["operations"], responses=DEFAULT_ERROR_RESPONSES)


class CheckOperationRequest(RequestModel):
    operation_id: str | None = None
    operation_name: str | None = None


class CheckAllOperationsRequest(RequestModel):
    validation_detail_id: str | None = None


# Polling is idempotent: callers own the interval and may repeat this freely.
@router.post("/check")
async def check_operation_status(
    request: Request,
    body: CheckOperationRequest,
    db: AsyncSession = Depends(get_db),
    operations: OperationsService = Depends(get_operations_service),
) -> dict:
    operation_id = await operations.find_operation_id(
        db, operation_id=body.operation_id, operation_name=body.operation_name
    )
    snapshot = await operations.reconcile(db, operation_id)
    return success_response(request=request, operation=snapshot)


async def _check_all(
    request: Request,
    validation_detail_id: str | None,
    db: AsyncSession,
    operations: OperationsService,
) -> dict:
    if not validation_detail_id:
        raise RequestValidationError("validation_detail_id is required")
    summary = await operations.reconcile_session(db, validation_detail_id)
    return success_response(request=request, data=summary)


@router.get("/check-all")
async def check_all_operations_status(
    request: Request,
    validation_detail_id: str | None = Query(default=None, alias="validationDetailId"),
    db: AsyncSession = Depends(get_db),
    operations: OperationsService = Depends(get_operations_service),
) -> dict:
    return await _check_all(request, validation_detail_id, db, operations)


@router.post("/check-all")
async def check_all_operations_status_post(
    request: Request,
    body: CheckAllOperationsRequest,
    db: AsyncSession = Depends(get_db),
    operations: OperationsService = Depends(get_operations_service),
) -> dict:
    return await _check_all(request, body.validation_detail_id, db, operations)


@router.post("/process-pending")
async def process_pending_indexing(
    request: Request,
    db: AsyncSession = Depends(get_db),
    operations: OperationsService = Depends(get_operations_service),
) -> dict:
    result = await operations.process_pending_indexing(db)
    return success_response(request=request, data=result)
