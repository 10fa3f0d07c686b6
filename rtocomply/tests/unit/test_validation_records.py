from __future__ import annotations

import pytest
from sqlalchemy import select

from rtocomply.core.errors import RequestValidationError
from rtocomply.domain.models import UnitOfCompetency, ValidationDetail, ValidationSummary, ValidationType
from rtocomply.persistence.db import SessionLocal
from rtocomply.services import validation as validation_service
from rtocomply.tests.utils.seed import RTO_CODE, UNIT_CODE, seed_catalog


UNIT_LINK = "https://training.gov.au/Training/Details/BSBWHS332X"


async def _link_unit() -> None:
    async with SessionLocal() as session:
        unit = (
            await session.execute(select(UnitOfCompetency).where(UnitOfCompetency.unit_code == UNIT_CODE))
        ).scalar_one()
        unit.unit_link = UNIT_LINK
        await session.commit()


@pytest.mark.asyncio
async def test_simple_records_take_the_link_from_the_unit() -> None:
    await seed_catalog()
    await _link_unit()
    async with SessionLocal() as session:
        created = await validation_service.create_validation_records_simple(
            session, rto_code=RTO_CODE, unit_code=UNIT_CODE, validation_type="full_validation", namespace="ns-1"
        )
        summary = await session.get(ValidationSummary, created.summary_id)
        detail = await session.get(ValidationDetail, created.detail_id)
        vtype = await session.get(ValidationType, created.validation_type_id)

    assert summary.unit_link == UNIT_LINK
    assert summary.req_extracted is False
    assert detail.namespace_code == "ns-1"
    assert detail.extract_status == "Uploading"
    assert detail.num_of_req == 0
    assert vtype.code == "full_validation"
    assert vtype.description == "Full Validation"


@pytest.mark.asyncio
async def test_simple_records_tolerate_unknown_units() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        created = await validation_service.create_validation_records_simple(
            session, rto_code=RTO_CODE, unit_code="NEW001", validation_type="UnitOfCompetency", namespace="ns-1"
        )
        summary = await session.get(ValidationSummary, created.summary_id)
        vtype = await session.get(ValidationType, created.validation_type_id)

    assert summary.unit_code == "NEW001"
    assert summary.unit_link is None
    assert vtype.description == "Unit Validation"


@pytest.mark.asyncio
async def test_simple_records_require_every_field() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        with pytest.raises(RequestValidationError) as excinfo:
            await validation_service.create_validation_records_simple(
                session, rto_code=RTO_CODE, unit_code=UNIT_CODE, validation_type="full_validation", namespace=""
            )
    assert excinfo.value.details == {"missing": ["namespace"]}
