from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from rtocomply.domain.models import PromoCode, Requirement, Rto, UnitOfCompetency
from rtocomply.persistence.db import SessionLocal
from rtocomply.services.credits import get_credit_ledger


DEMO_RTO_CODE = "7148"
DEMO_RTO_NAME = "Demo Training Institute"
DEMO_UNIT_CODE = "BSBWHS332X"
DEMO_UNIT_TITLE = "Apply infection prevention and control procedures to own work activities"
DEMO_AI_CREDITS = 50
DEMO_VALIDATION_CREDITS = 10


@dataclass(frozen=True)
class DemoRequirement:
    # Keep seed content deterministic so repeated runs leave identical rows.
    requirement_type: str
    number: str
    text: str


def build_demo_requirements() -> tuple[DemoRequirement, ...]:
    return (
        DemoRequirement("elements_performance_criteria", "1.1", "Identify infection hazards in the workplace."),
        DemoRequirement("elements_performance_criteria", "1.2", "Follow procedures to control identified hazards."),
        DemoRequirement("performance_evidence", "1", "Apply infection control procedures on at least two occasions."),
        DemoRequirement("knowledge_evidence", "1", "Describe standard and additional precautions."),
        DemoRequirement("foundation_skills", "1", "Reading skills to interpret workplace procedures."),
        DemoRequirement("assessment_conditions", "1", "Skills must be demonstrated in a workplace or simulated environment."),
    )


async def seed_demo() -> int:
    # Use the shared async session factory so env config matches the API container.
    async with SessionLocal() as session:
        rto = (await session.execute(select(Rto).where(Rto.code == DEMO_RTO_CODE))).scalar_one_or_none()
        if rto is None:
            session.add(Rto(code=DEMO_RTO_CODE, name=DEMO_RTO_NAME, status="active"))

        unit = (
            await session.execute(select(UnitOfCompetency).where(UnitOfCompetency.unit_code == DEMO_UNIT_CODE))
        ).scalar_one_or_none()
        if unit is None:
            session.add(
                UnitOfCompetency(
                    unit_code=DEMO_UNIT_CODE,
                    title=DEMO_UNIT_TITLE,
                    unit_link=f"https://training.gov.au/Training/Details/{DEMO_UNIT_CODE}",
                )
            )

        existing = await session.execute(
            select(Requirement.id).where(Requirement.unit_code == DEMO_UNIT_CODE).limit(1)
        )
        seeded_requirements = 0
        if existing.scalar_one_or_none() is None:
            for item in build_demo_requirements():
                session.add(
                    Requirement(
                        unit_code=DEMO_UNIT_CODE,
                        requirement_type=item.requirement_type,
                        number=item.number,
                        text=item.text,
                    )
                )
                seeded_requirements += 1

        promo = (await session.execute(select(PromoCode).where(PromoCode.code == "WELCOME10"))).scalar_one_or_none()
        if promo is None:
            session.add(PromoCode(code="WELCOME10", description="10% off the first plan", discount_percent=10))
        await session.commit()

        # Credits go through the ledger so the transaction history matches the balance.
        ledger = get_credit_ledger()
        ai = await ledger.get_balance(session, kind="ai", rto_code=DEMO_RTO_CODE)
        if ai.current == 0:
            await ledger.grant(
                session, kind="ai", rto_code=DEMO_RTO_CODE, amount=DEMO_AI_CREDITS, reason="demo_seed"
            )
        validation = await ledger.get_balance(session, kind="validation", rto_code=DEMO_RTO_CODE)
        if validation.current == 0:
            await ledger.grant(
                session,
                kind="validation",
                rto_code=DEMO_RTO_CODE,
                amount=DEMO_VALIDATION_CREDITS,
                reason="demo_seed",
            )
        print(
            f"seeded rto_code={DEMO_RTO_CODE} unit_code={DEMO_UNIT_CODE} "
            f"requirements={seeded_requirements}"
        )
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
