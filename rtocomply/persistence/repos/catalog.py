from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.domain.models import Requirement, Rto, UnitOfCompetency


async def list_rtos(session: AsyncSession) -> list[Rto]:
    result = await session.execute(select(Rto).order_by(Rto.code))
    return list(result.scalars().all())


async def get_rto_by_code(session: AsyncSession, code: str) -> Rto | None:
    result = await session.execute(select(Rto).where(Rto.code == code))
    return result.scalar_one_or_none()


async def list_units(session: AsyncSession, *, search: str | None, limit: int) -> list[UnitOfCompetency]:
    stmt = select(UnitOfCompetency)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(UnitOfCompetency.unit_code.ilike(pattern), UnitOfCompetency.title.ilike(pattern))
        )
    result = await session.execute(stmt.order_by(UnitOfCompetency.unit_code).limit(limit))
    return list(result.scalars().all())


async def get_unit(session: AsyncSession, unit_code: str) -> UnitOfCompetency | None:
    result = await session.execute(select(UnitOfCompetency).where(UnitOfCompetency.unit_code == unit_code))
    return result.scalar_one_or_none()


async def list_requirements(
    session: AsyncSession, unit_code: str, requirement_types: tuple[str, ...]
) -> list[Requirement]:
    result = await session.execute(
        select(Requirement)
        .where(Requirement.unit_code == unit_code, Requirement.requirement_type.in_(requirement_types))
        .order_by(Requirement.requirement_type, Requirement.number)
    )
    return list(result.scalars().all())
