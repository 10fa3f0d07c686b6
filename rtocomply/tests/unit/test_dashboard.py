from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rtocomply.core.errors import NotFoundError, RequestValidationError
from rtocomply.domain.models import AiCreditTransaction, ValidationDetail, ValidationResult, ValidationSummary
from rtocomply.persistence.db import SessionLocal
from rtocomply.services.dashboard import get_dashboard_metrics, month_bounds
from rtocomply.tests.utils.seed import RTO_CODE, UNIT_CODE, FrozenClock, seed_catalog


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _at(month: int, day: int) -> datetime:
    return datetime(2026, month, day, 9, 0, tzinfo=timezone.utc)


async def _add_session(
    *,
    created_at: datetime,
    statuses: tuple[str, ...] = (),
    num_of_req: int = 0,
    rto_code: str = RTO_CODE,
) -> None:
    # One summary, one detail and its results, all stamped at the same instant.
    async with SessionLocal() as session:
        summary = ValidationSummary(unit_code=UNIT_CODE, rto_code=rto_code, req_extracted=True, created_at=created_at)
        session.add(summary)
        await session.flush()
        detail = ValidationDetail(summary_id=summary.id, num_of_req=num_of_req, created_at=created_at)
        session.add(detail)
        await session.flush()
        for index, status in enumerate(statuses, start=1):
            session.add(
                ValidationResult(
                    validation_detail_id=detail.id,
                    requirement_type="knowledge_evidence",
                    requirement_number=str(index),
                    requirement_text=f"Requirement {index}",
                    status=status,
                    created_at=created_at,
                )
            )
        await session.commit()


async def _add_ai_transaction(amount: int, created_at: datetime, rto_code: str = RTO_CODE) -> None:
    async with SessionLocal() as session:
        session.add(
            AiCreditTransaction(
                rto_code=rto_code, amount=amount, reason="test", balance_after=0, created_at=created_at
            )
        )
        await session.commit()


def test_month_bounds_cross_the_year() -> None:
    start, previous = month_bounds(datetime(2026, 1, 20, 8, 30, tzinfo=timezone.utc))
    assert start == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert previous == datetime(2025, 12, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_metrics_summarise_sessions_results_and_queries() -> None:
    await seed_catalog()
    await _add_session(created_at=_at(3, 10), statuses=("met", "met"), num_of_req=2)
    await _add_session(created_at=_at(3, 12), statuses=("not_met",), num_of_req=3)
    await _add_session(created_at=_at(2, 10), statuses=("met", "not_met"), num_of_req=2)
    await _add_session(created_at=_at(1, 5))
    await _add_session(created_at=_at(3, 11), statuses=("met",), rto_code="0001")
    await _add_ai_transaction(10, _at(3, 1))
    await _add_ai_transaction(-1, _at(3, 2))
    await _add_ai_transaction(-1, _at(3, 14))
    await _add_ai_transaction(-1, _at(2, 20))
    await _add_ai_transaction(-1, _at(3, 3), rto_code="0001")

    async with SessionLocal() as session:
        metrics = await get_dashboard_metrics(session, RTO_CODE, time_provider=FrozenClock(NOW))

    assert metrics.total_validations.count == 4
    assert metrics.total_validations.monthly_change == 1
    assert metrics.total_validations.monthly_growth == "+1 this month"
    assert metrics.success_rate.rate == 60.0
    assert metrics.success_rate.change == 10.0
    assert metrics.success_rate.change_text == "↑ 10.0% from last month"
    # Only the March session with open requirements is still in progress.
    assert metrics.active_units.count == 4
    assert metrics.active_units.status == "1 currently processing"
    assert metrics.ai_queries.count == 2
    assert metrics.ai_queries.period == "2 this month / 3 all time"


@pytest.mark.asyncio
async def test_metrics_for_an_idle_rto_are_zero() -> None:
    await seed_catalog()
    await _add_session(created_at=_at(2, 10))
    async with SessionLocal() as session:
        metrics = await get_dashboard_metrics(session, RTO_CODE, time_provider=FrozenClock(NOW))

    assert metrics.total_validations.monthly_growth == "-1 this month"
    assert metrics.success_rate.rate == 0.0
    assert metrics.success_rate.change_text == "↑ 0.0% from last month"
    assert metrics.active_units.status == "0 currently processing"
    assert metrics.ai_queries.period == "0 this month / 0 all time"


@pytest.mark.asyncio
async def test_metrics_require_a_known_rto() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        with pytest.raises(RequestValidationError):
            await get_dashboard_metrics(session, "")
        with pytest.raises(NotFoundError) as excinfo:
            await get_dashboard_metrics(session, "9999")
    assert excinfo.value.message == "RTO not found: 9999"
