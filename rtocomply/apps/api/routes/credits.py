from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db, get_ledger
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.requests import RequestModel
from rtocomply.apps.api.response import success_response
from rtocomply.services.credits import CreditBalance, CreditLedger


router = APIRouter(prefix="/credits", tags=["credits"], responses=DEFAULT_ERROR_RESPONSES)


class ConsumeCreditsRequest(RequestModel):
    amount: int = Field(default=1, ge=1)
    reason: str | None = None


class AdjustCreditsRequest(RequestModel):
    amount: int = Field(ge=1)
    reason: str
    subscription: bool = False


def _balance_payload(balance: CreditBalance) -> dict:
    return {
        "kind": balance.kind,
        "rto_code": balance.rto_code,
        "current": balance.current,
        "total": balance.total,
        "subscription": balance.subscription,
        "percentage": balance.percentage,
        "percentage_text": balance.percentage_text,
    }


@router.get("/{kind}/{rto_code}")
async def get_credits(
    request: Request,
    kind: str,
    rto_code: str,
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    balance = await ledger.get_balance(db, kind=kind, rto_code=rto_code)
    return success_response(request=request, credits=_balance_payload(balance))


@router.post("/{kind}/{rto_code}/consume")
async def consume_credits(
    request: Request,
    kind: str,
    rto_code: str,
    body: ConsumeCreditsRequest | None = None,
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    body = body or ConsumeCreditsRequest()
    balance = await ledger.consume(db, kind=kind, rto_code=rto_code, amount=body.amount, reason=body.reason)
    return success_response(request=request, credits=_balance_payload(balance))


@router.post("/{kind}/{rto_code}/add")
async def add_credits(
    request: Request,
    kind: str,
    rto_code: str,
    body: AdjustCreditsRequest,
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    balance = await ledger.grant(
        db,
        kind=kind,
        rto_code=rto_code,
        amount=body.amount,
        reason=body.reason,
        subscription=body.subscription,
    )
    return success_response(request=request, credits=_balance_payload(balance))


@router.post("/{kind}/{rto_code}/remove")
async def remove_credits(
    request: Request,
    kind: str,
    rto_code: str,
    body: AdjustCreditsRequest,
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    balance = await ledger.remove(db, kind=kind, rto_code=rto_code, amount=body.amount, reason=body.reason)
    return success_response(request=request, credits=_balance_payload(balance))


@router.get("/{kind}/{rto_code}/transactions")
async def list_credit_transactions(
    request: Request,
    kind: str,
    rto_code: str,
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    transactions = await ledger.list_transactions(db, kind=kind, rto_code=rto_code, limit=limit)
    return success_response(request=request, transactions=transactions, count=len(transactions))
