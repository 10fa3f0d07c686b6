from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db, get_ledger, get_provider, get_rto_cache
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.requests import RequestModel
from rtocomply.apps.api.response import success_response
from rtocomply.providers.file_search.base import FileSearchProvider
from rtocomply.services import promo_codes, query, requirements
from rtocomply.services.credits import CreditLedger
from rtocomply.services.rto_cache import RtoCache


router = APIRouter(tags=["lookups"], responses=DEFAULT_ERROR_RESPONSES)


class QueryDocumentRequest(RequestModel):
    rto_code: str
    question: str
    unit_code: str | None = None
    document_type: str | None = None


class PromoCodeRequest(RequestModel):
    code: str | None = None


@router.get("/rtos")
async def list_rtos(
    request: Request,
    code: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    cache: RtoCache = Depends(get_rto_cache),
) -> dict:
    if code:
        record = await cache.get_by_code(db, code)
        rtos = [record] if record is not None else []
    else:
        rtos = await cache.get_all(db)
    return success_response(request=request, rtos=rtos, count=len(rtos))


@router.get("/units")
async def list_units(
    request: Request,
    search: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await requirements.list_units(db, search=search, limit=limit)
    units = [
        {"id": row.id, "unit_code": row.unit_code, "title": row.title, "unit_link": row.unit_link}
        for row in rows
    ]
    return success_response(request=request, units=units, count=len(units))


@router.get("/units/{unit_code}/requirements")
async def list_unit_requirements(
    request: Request,
    unit_code: str,
    requirement_type: str | None = Query(default=None, alias="type"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await requirements.get_unit(db, unit_code)
    items = await requirements.fetch_requirements(db, unit_code, requirement_type)
    return success_response(request=request, unit_code=unit_code, requirements=items, count=len(items))


@router.post("/query-document")
async def query_document(
    request: Request,
    body: QueryDocumentRequest,
    db: AsyncSession = Depends(get_db),
    provider: FileSearchProvider = Depends(get_provider),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    answer = await query.query_documents(
        db,
        provider=provider,
        ledger=ledger,
        rto_code=body.rto_code,
        question=body.question,
        unit_code=body.unit_code,
        document_type=body.document_type,
    )
    return success_response(request=request, data=answer)


@router.post("/promo-codes/validate")
async def validate_promo_code(
    request: Request,
    body: PromoCodeRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    check = await promo_codes.validate_promo_code(db, body.code)
    return success_response(request=request, data=check)
