from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.domain.models import (
    ValidationDetail,
    ValidationResult,
    ValidationSummary,
    ValidationType,
)


_TYPE_DESCRIPTIONS = {"UnitOfCompetency": "Unit Validation", "full_validation": "Full Validation"}


async def get_summary_for_unit(
    session: AsyncSession, *, unit_code: str, rto_code: str | None, unit_link: str | None = None
) -> ValidationSummary | None:
    # Prefer the unit link when provided; older summaries were keyed on it.
    stmt = select(ValidationSummary)
    if unit_link:
        stmt = stmt.where(ValidationSummary.unit_link == unit_link)
    else:
        stmt = stmt.where(ValidationSummary.unit_code == unit_code)
    if rto_code:
        stmt = stmt.where(ValidationSummary.rto_code == rto_code)
    result = await session.execute(stmt.order_by(ValidationSummary.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def create_summary(
    session: AsyncSession,
    *,
    unit_code: str,
    rto_code: str,
    unit_link: str | None,
    req_extracted: bool,
) -> ValidationSummary:
    summary = ValidationSummary(
        unit_code=unit_code,
        rto_code=rto_code,
        unit_link=unit_link,
        req_extracted=req_extracted,
    )
    session.add(summary)
    await session.flush()
    return summary


async def get_summary(session: AsyncSession, summary_id: str) -> ValidationSummary | None:
    result = await session.execute(select(ValidationSummary).where(ValidationSummary.id == summary_id))
    return result.scalar_one_or_none()


async def get_or_create_type(session: AsyncSession, code: str) -> ValidationType:
    result = await session.execute(select(ValidationType).where(ValidationType.code == code))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing
    description = _TYPE_DESCRIPTIONS.get(code, "Learner Guide Validation")
    vtype = ValidationType(code=code, description=description)
    session.add(vtype)
    await session.flush()
    return vtype


async def get_type(session: AsyncSession, type_id: str | None) -> ValidationType | None:
    if type_id is None:
        return None
    result = await session.execute(select(ValidationType).where(ValidationType.id == type_id))
    return result.scalar_one_or_none()


async def create_detail(
    session: AsyncSession,
    *,
    summary_id: str,
    validation_type_id: str | None,
    namespace_code: str | None,
    document_type: str = "unit",
) -> ValidationDetail:
    detail = ValidationDetail(
        summary_id=summary_id,
        validation_type_id=validation_type_id,
        namespace_code=namespace_code,
        document_type=document_type,
        doc_extracted=False,
        extract_status="Uploading",
        num_of_req=0,
    )
    session.add(detail)
    await session.flush()
    return detail


async def get_detail(session: AsyncSession, detail_id: str) -> ValidationDetail | None:
    result = await session.execute(
        select(ValidationDetail)
        .where(ValidationDetail.id == detail_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_details_for_rto(
    session: AsyncSession, rto_code: str, *, limit: int = 50
) -> list[tuple[ValidationDetail, ValidationSummary]]:
    result = await session.execute(
        select(ValidationDetail, ValidationSummary)
        .join(ValidationSummary, ValidationSummary.id == ValidationDetail.summary_id)
        .where(ValidationSummary.rto_code == rto_code)
        .order_by(ValidationDetail.created_at.desc(), ValidationDetail.id)
        .limit(limit)
    )
    return [(detail, summary) for detail, summary in result.all()]


async def count_completed_results(session: AsyncSession, detail_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ValidationResult)
        .where(ValidationResult.validation_detail_id == detail_id)
    )
    return int(result.scalar() or 0)


async def list_results(session: AsyncSession, detail_id: str) -> list[ValidationResult]:
    result = await session.execute(
        select(ValidationResult)
        .where(ValidationResult.validation_detail_id == detail_id)
        .order_by(ValidationResult.requirement_type, ValidationResult.requirement_number)
    )
    return list(result.scalars().all())


async def get_result(session: AsyncSession, result_id: str) -> ValidationResult | None:
    result = await session.execute(select(ValidationResult).where(ValidationResult.id == result_id))
    return result.scalar_one_or_none()


async def upsert_result(
    session: AsyncSession, *, detail_id: str, values: dict[str, Any], validation_method: str | None
) -> ValidationResult:
    # One row per requirement per session; later passes overwrite in place.
    result = await session.execute(
        select(ValidationResult).where(
            ValidationResult.validation_detail_id == detail_id,
            ValidationResult.requirement_type == values["requirement_type"],
            ValidationResult.requirement_number == values["requirement_number"],
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = ValidationResult(validation_detail_id=detail_id)
        session.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    row.validation_method = validation_method
    await session.flush()
    return row


async def update_detail(session: AsyncSession, detail_id: str, **values: Any) -> None:
    await session.execute(
        update(ValidationDetail)
        .where(ValidationDetail.id == detail_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
