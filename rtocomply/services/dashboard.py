from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import NotFoundError, RequestValidationError
from rtocomply.domain.models import AiCreditTransaction, ValidationDetail, ValidationResult, ValidationSummary
from rtocomply.domain.stage import derive_stage
from rtocomply.persistence.repos import catalog as catalog_repo


logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(days=30)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TotalValidations:
    count: int
    monthly_change: int
    monthly_growth: str


@dataclass(frozen=True)
class SuccessRate:
    rate: float
    change: float
    change_text: str


@dataclass(frozen=True)
class ActiveUnits:
    count: int
    status: str


@dataclass(frozen=True)
class AiQueries:
    count: int
    period: str


@dataclass(frozen=True)
class DashboardMetrics:
    rto_code: str
    total_validations: TotalValidations
    success_rate: SuccessRate
    active_units: ActiveUnits
    ai_queries: AiQueries


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Return the start of the current and of the previous calendar month (UTC)."""
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_last_month = (start_of_month - timedelta(days=1)).replace(day=1)
    return start_of_month, start_of_last_month


def _rate(met: int, total: int) -> float:
    return met * 100 / total if total else 0.0


async def _count_summaries(
    session: AsyncSession, rto_code: str, *, since: datetime | None = None, until: datetime | None = None
) -> int:
    stmt = select(func.count()).select_from(ValidationSummary).where(ValidationSummary.rto_code == rto_code)
    if since is not None:
        stmt = stmt.where(ValidationSummary.created_at >= since)
    if until is not None:
        stmt = stmt.where(ValidationSummary.created_at < until)
    return int((await session.execute(stmt)).scalar() or 0)


async def _count_results(
    session: AsyncSession, rto_code: str, *, since: datetime | None = None, until: datetime | None = None
) -> tuple[int, int]:
    met = func.sum(case((func.lower(ValidationResult.status) == "met", 1), else_=0))
    stmt = (
        select(func.count(), met)
        .select_from(ValidationResult)
        .join(ValidationDetail, ValidationDetail.id == ValidationResult.validation_detail_id)
        .join(ValidationSummary, ValidationSummary.id == ValidationDetail.summary_id)
        .where(ValidationSummary.rto_code == rto_code)
    )
    if since is not None:
        stmt = stmt.where(ValidationResult.created_at >= since)
    if until is not None:
        stmt = stmt.where(ValidationResult.created_at < until)
    total, met_count = (await session.execute(stmt)).one()
    return int(met_count or 0), int(total or 0)


async def _count_active_units(session: AsyncSession, rto_code: str, *, active_since: datetime) -> tuple[int, int]:
    completed = (
        select(ValidationResult.validation_detail_id, func.count().label("completed"))
        .group_by(ValidationResult.validation_detail_id)
        .subquery()
    )
    result = await session.execute(
        select(
            ValidationDetail.created_at,
            ValidationDetail.doc_extracted,
            ValidationSummary.req_extracted,
            ValidationDetail.num_of_req,
            ValidationDetail.extract_status,
            func.coalesce(completed.c.completed, 0),
        )
        .join(ValidationSummary, ValidationSummary.id == ValidationDetail.summary_id)
        .outerjoin(completed, completed.c.validation_detail_id == ValidationDetail.id)
        .where(ValidationSummary.rto_code == rto_code)
    )
    rows = result.all()
    processing = 0
    for created_at, doc_extracted, req_extracted, num_of_req, extract_status, done in rows:
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if created_at is None or created_at < active_since:
            continue
        stage = derive_stage(
            bool(doc_extracted), bool(req_extracted), int(done), int(num_of_req or 0), extract_status
        )
        if stage != "validated":
            processing += 1
    return len(rows), processing


async def _count_ai_queries(session: AsyncSession, rto_code: str, *, since: datetime | None = None) -> int:
    # Consumptions are the negative ledger rows; grants and refunds are excluded.
    stmt = (
        select(func.count())
        .select_from(AiCreditTransaction)
        .where(AiCreditTransaction.rto_code == rto_code, AiCreditTransaction.amount < 0)
    )
    if since is not None:
        stmt = stmt.where(AiCreditTransaction.created_at >= since)
    return int((await session.execute(stmt)).scalar() or 0)


async def get_dashboard_metrics(
    session: AsyncSession,
    rto_code: str | None,
    *,
    time_provider: Callable[[], datetime] = _utc_now,
) -> DashboardMetrics:
    if not rto_code:
        raise RequestValidationError("rto_code is required")
    if await catalog_repo.get_rto_by_code(session, rto_code) is None:
        raise NotFoundError(f"RTO not found: {rto_code}", details={"rto_code": rto_code})
    now = time_provider()
    start_of_month, start_of_last_month = month_bounds(now)

    total = await _count_summaries(session, rto_code)
    this_month = await _count_summaries(session, rto_code, since=start_of_month)
    last_month = await _count_summaries(session, rto_code, since=start_of_last_month, until=start_of_month)
    monthly_change = this_month - last_month
    growth = f"+{monthly_change} this month" if monthly_change >= 0 else f"{monthly_change} this month"

    # The headline rate is all-time; the change compares it with last month alone.
    met, assessed = await _count_results(session, rto_code)
    met_last, assessed_last = await _count_results(
        session, rto_code, since=start_of_last_month, until=start_of_month
    )
    rate = _rate(met, assessed)
    change = rate - _rate(met_last, assessed_last)
    arrow = "↑" if change >= 0 else "↓"

    units, processing = await _count_active_units(session, rto_code, active_since=now - ACTIVE_WINDOW)
    queries_this_month = await _count_ai_queries(session, rto_code, since=start_of_month)
    queries_all_time = await _count_ai_queries(session, rto_code)

    logger.info(
        "dashboard_metrics rto_code=%s validations=%s results=%s units=%s ai_queries=%s",
        rto_code,
        total,
        assessed,
        units,
        queries_all_time,
    )
    return DashboardMetrics(
        rto_code=rto_code,
        total_validations=TotalValidations(count=total, monthly_change=monthly_change, monthly_growth=growth),
        success_rate=SuccessRate(
            rate=round(rate, 1),
            change=round(change, 1),
            change_text=f"{arrow} {abs(change):.1f}% from last month",
        ),
        active_units=ActiveUnits(count=units, status=f"{processing} currently processing"),
        ai_queries=AiQueries(
            count=queries_this_month,
            period=f"{queries_this_month:,} this month / {queries_all_time:,} all time",
        ),
    )
