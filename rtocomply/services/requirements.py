from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import NotFoundError, RequestValidationError
from rtocomply.domain.models import REQUIREMENT_TYPES
from rtocomply.persistence.repos import catalog as catalog_repo


# Aliases accepted from clients and workflow payloads.
_TYPE_ALIASES = {
    "elements_criteria": "elements_performance_criteria",
    "epc": "elements_performance_criteria",
    "ke": "knowledge_evidence",
    "pe": "performance_evidence",
    "fs": "foundation_skills",
    "ac": "assessment_conditions",
}
# These select every requirement type for the unit.
_ALL_TYPES = {"full_validation", "assessment", "all"}


@dataclass(frozen=True)
class RequirementItem:
    id: str
    unit_code: str
    type: str
    number: str
    text: str
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def resolve_requirement_types(requirement_type: str | None) -> tuple[str, ...]:
    if not requirement_type or requirement_type in _ALL_TYPES:
        return REQUIREMENT_TYPES
    resolved = _TYPE_ALIASES.get(requirement_type, requirement_type)
    if resolved not in REQUIREMENT_TYPES:
        raise RequestValidationError(
            f"Unknown requirement type: {requirement_type}",
            details={"allowed": list(REQUIREMENT_TYPES) + sorted(_ALL_TYPES)},
        )
    return (resolved,)


async def fetch_requirements(
    session: AsyncSession, unit_code: str, requirement_type: str | None = None
) -> list[RequirementItem]:
    rows = await catalog_repo.list_requirements(session, unit_code, resolve_requirement_types(requirement_type))
    return [
        RequirementItem(
            id=row.id,
            unit_code=row.unit_code,
            type=row.requirement_type,
            number=row.number,
            text=row.text,
            description=row.description,
            metadata=dict(row.metadata_json or {}),
        )
        for row in rows
    ]


async def list_units(session: AsyncSession, *, search: str | None = None, limit: int = 50):
    return await catalog_repo.list_units(session, search=search, limit=max(1, min(limit, 200)))


async def get_unit(session: AsyncSession, unit_code: str):
    unit = await catalog_repo.get_unit(session, unit_code)
    if unit is None:
        raise NotFoundError(f"Unit of competency not found: {unit_code}")
    return unit
