from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.response import success_response
from rtocomply.services import dashboard as dashboard_service


router = APIRouter(prefix="/dashboard", tags=["dashboard"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/metrics")
async def get_dashboard_metrics(
    request: Request,
    rto_code: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> dict:
    metrics = await dashboard_service.get_dashboard_metrics(db, rto_code)
    return success_response(request=request, data=metrics)
