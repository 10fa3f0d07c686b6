from __future__ import annotations

import pytest
from sqlalchemy import func, select

from rtocomply.core.errors import InsufficientCreditsError, NotFoundError, RequestValidationError
from rtocomply.domain.models import AiCreditTransaction, CreditTransaction
from rtocomply.persistence.db import SessionLocal
from rtocomply.services.credits import CreditBalance, CreditLedger, get_credit_ledger
from rtocomply.tests.utils.seed import RTO_CODE, seed_catalog, seed_credits


async def _transaction_count(model) -> int:
    async with SessionLocal() as session:
        return int((await session.execute(select(func.count()).select_from(model))).scalar() or 0)


@pytest.mark.asyncio
async def test_overdraw_fails_and_leaves_balance_unchanged() -> None:
    await seed_catalog()
    await seed_credits(ai=3)
    ledger = CreditLedger()
    async with SessionLocal() as session:
        with pytest.raises(InsufficientCreditsError) as excinfo:
            await ledger.adjust(session, kind="ai", rto_code=RTO_CODE, delta=-4, reason="test")
        balance = await ledger.get_balance(session, kind="ai", rto_code=RTO_CODE)

    assert excinfo.value.message == "Insufficient AI credits"
    assert excinfo.value.details == {"current": 3, "requested": 4, "kind": "ai"}
    assert balance.current == 3
    assert await _transaction_count(AiCreditTransaction) == 0


@pytest.mark.asyncio
async def test_grant_then_consume_round_trips() -> None:
    await seed_catalog()
    await seed_credits(validation=2)
    ledger = CreditLedger()
    async with SessionLocal() as session:
        granted = await ledger.adjust(session, kind="validation", rto_code=RTO_CODE, delta=5, reason="topup")
        restored = await ledger.adjust(session, kind="validation", rto_code=RTO_CODE, delta=-5, reason="usage")

    assert granted.current == 7
    assert restored.current == 2
    # Totals track allocations, so only the grant moves them.
    assert restored.total == 7
    assert await _transaction_count(CreditTransaction) == 2


@pytest.mark.asyncio
async def test_consuming_from_empty_balance_writes_no_transaction() -> None:
    await seed_catalog()
    ledger = CreditLedger()
    async with SessionLocal() as session:
        with pytest.raises(InsufficientCreditsError) as excinfo:
            await ledger.consume(session, kind="ai", rto_code=RTO_CODE)

    assert excinfo.value.status_code == 402
    assert await _transaction_count(AiCreditTransaction) == 0


@pytest.mark.asyncio
async def test_transactions_record_balance_after() -> None:
    await seed_catalog()
    ledger = CreditLedger()
    async with SessionLocal() as session:
        await ledger.grant(session, kind="ai", rto_code=RTO_CODE, amount=10, reason="purchase", subscription=True)
        await ledger.consume(session, kind="ai", rto_code=RTO_CODE, amount=2, reason="query_document")
        transactions = await ledger.list_transactions(session, kind="ai", rto_code=RTO_CODE)
        balance = await ledger.get_balance(session, kind="ai", rto_code=RTO_CODE)

    assert sorted((t.amount, t.balance_after) for t in transactions) == [(-2, 8), (10, 10)]
    assert balance.subscription == 10
    assert balance.percentage == 80
    assert balance.percentage_text == "80% available"


@pytest.mark.asyncio
async def test_remove_fails_instead_of_clamping() -> None:
    await seed_catalog()
    await seed_credits(validation=1)
    ledger = CreditLedger()
    async with SessionLocal() as session:
        with pytest.raises(InsufficientCreditsError) as excinfo:
            await ledger.remove(session, kind="validation", rto_code=RTO_CODE, amount=2, reason="correction")
    assert excinfo.value.message == "Insufficient validation credits"


@pytest.mark.asyncio
async def test_missing_balance_reads_as_zero() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        balance = await CreditLedger().get_balance(session, kind="validation", rto_code=RTO_CODE)
    assert balance == CreditBalance(kind="validation", rto_code=RTO_CODE, current=0, total=0, subscription=0)
    assert balance.percentage == 0


@pytest.mark.asyncio
async def test_unknown_rto_and_kind_are_rejected() -> None:
    await seed_catalog()
    ledger = CreditLedger()
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await ledger.grant(session, kind="ai", rto_code="0000", amount=1, reason="x")
        with pytest.raises(RequestValidationError):
            await ledger.grant(session, kind="gold", rto_code=RTO_CODE, amount=1, reason="x")
        with pytest.raises(RequestValidationError):
            await ledger.consume(session, kind="ai", rto_code=RTO_CODE, amount=0)


@pytest.mark.asyncio
async def test_refund_restores_balance_without_raising_total() -> None:
    await seed_catalog()
    await seed_credits(ai=5)
    ledger = CreditLedger()
    async with SessionLocal() as session:
        await ledger.consume(session, kind="ai", rto_code=RTO_CODE, reason="query_document")
        refunded = await ledger.refund(session, kind="ai", rto_code=RTO_CODE, reason="refund:query_document")
        transactions = await ledger.list_transactions(session, kind="ai", rto_code=RTO_CODE)

    assert refunded.current == 5
    assert refunded.total == 5
    assert refunded.percentage_text == "100% available"
    assert sorted(t.amount for t in transactions) == [-1, 1]


@pytest.mark.asyncio
async def test_refund_rejects_non_positive_amounts() -> None:
    await seed_catalog()
    async with SessionLocal() as session:
        with pytest.raises(RequestValidationError):
            await CreditLedger().refund(session, kind="validation", rto_code=RTO_CODE, amount=0, reason="x")


def test_ledger_dependency_builds_a_fresh_ledger() -> None:
    assert get_credit_ledger() is not get_credit_ledger()
