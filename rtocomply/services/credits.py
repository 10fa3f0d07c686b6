from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import InsufficientCreditsError, NotFoundError, RequestValidationError
from rtocomply.domain.models import (
    AiCredits,
    AiCreditTransaction,
    CreditTransaction,
    ValidationCredits,
)
from rtocomply.persistence.repos import catalog as catalog_repo


logger = logging.getLogger(__name__)

CreditKind = Literal["ai", "validation"]

_BALANCE_MODELS = {"ai": AiCredits, "validation": ValidationCredits}
_TRANSACTION_MODELS = {"ai": AiCreditTransaction, "validation": CreditTransaction}
_KIND_LABELS = {"ai": "AI", "validation": "validation"}


@dataclass(frozen=True)
class CreditBalance:
    kind: str
    rto_code: str
    current: int
    total: int
    subscription: int

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.current / self.total * 100)

    @property
    def percentage_text(self) -> str:
        return f"{self.percentage}% available"


@dataclass(frozen=True)
class CreditTransactionRecord:
    id: str
    amount: int
    reason: str
    balance_after: int
    created_at: datetime


def _parse_kind(kind: str) -> CreditKind:
    if kind not in _BALANCE_MODELS:
        raise RequestValidationError(
            f"Unknown credit kind: {kind}", details={"allowed": sorted(_BALANCE_MODELS)}
        )
    return kind  # type: ignore[return-value]


class CreditLedger:
    """Per-RTO credit balances mutated only through signed adjustments.

    Every adjustment locks the balance row, rejects results below zero
    without writing, and records a transaction row with the resulting balance.
    """

    async def _require_rto(self, session: AsyncSession, rto_code: str) -> None:
        if await catalog_repo.get_rto_by_code(session, rto_code) is None:
            raise NotFoundError(f"RTO not found: {rto_code}", details={"rto_code": rto_code})

    async def _lock_balance(self, session: AsyncSession, kind: CreditKind, rto_code: str):
        model = _BALANCE_MODELS[kind]
        result = await session.execute(
            select(model)
            .where(model.rto_code == rto_code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            # Initialise missing ledgers at zero so the first grant has a row to land on.
            row = model(rto_code=rto_code, current_credits=0, total_credits=0, subscription_credits=0)
            session.add(row)
            await session.flush()
        return row

    async def adjust(
        self,
        session: AsyncSession,
        *,
        kind: str,
        rto_code: str,
        delta: int,
        reason: str,
        subscription: bool = False,
        allocate: bool = True,
    ) -> CreditBalance:
        credit_kind = _parse_kind(kind)
        if delta == 0:
            raise RequestValidationError("Credit adjustment must be non-zero")
        try:
            await self._require_rto(session, rto_code)
            row = await self._lock_balance(session, credit_kind, rto_code)
            current = int(row.current_credits or 0)
            proposed = current + delta
            if proposed < 0:
                raise InsufficientCreditsError(
                    f"Insufficient {_KIND_LABELS[credit_kind]} credits",
                    details={"current": current, "requested": -delta, "kind": credit_kind},
                )
            row.current_credits = proposed
            if delta > 0 and allocate:
                # Total is a running allocation figure, so only grants move it.
                row.total_credits = int(row.total_credits or 0) + delta
                if subscription:
                    row.subscription_credits = delta
            session.add(
                _TRANSACTION_MODELS[credit_kind](
                    rto_code=rto_code,
                    amount=delta,
                    reason=reason,
                    balance_after=proposed,
                )
            )
            balance = CreditBalance(
                kind=credit_kind,
                rto_code=rto_code,
                current=proposed,
                total=int(row.total_credits or 0),
                subscription=int(row.subscription_credits or 0),
            )
            await session.commit()
        except InsufficientCreditsError:
            await session.rollback()
            logger.info("credits_insufficient kind=%s rto_code=%s delta=%s", credit_kind, rto_code, delta)
            raise
        except Exception:
            await session.rollback()
            raise
        logger.info(
            "credits_adjusted kind=%s rto_code=%s delta=%s balance=%s reason=%s",
            credit_kind,
            rto_code,
            delta,
            balance.current,
            reason,
        )
        return balance

    async def consume(
        self, session: AsyncSession, *, kind: str, rto_code: str, amount: int = 1, reason: str | None = None
    ) -> CreditBalance:
        if amount <= 0:
            raise RequestValidationError("Amount must be a positive integer")
        return await self.adjust(
            session,
            kind=kind,
            rto_code=rto_code,
            delta=-amount,
            reason=reason or f"{kind}_usage",
        )

    async def grant(
        self,
        session: AsyncSession,
        *,
        kind: str,
        rto_code: str,
        amount: int,
        reason: str,
        subscription: bool = False,
    ) -> CreditBalance:
        if amount <= 0:
            raise RequestValidationError("Amount must be a positive integer")
        return await self.adjust(
            session, kind=kind, rto_code=rto_code, delta=amount, reason=reason, subscription=subscription
        )

    async def refund(
        self, session: AsyncSession, *, kind: str, rto_code: str, amount: int = 1, reason: str
    ) -> CreditBalance:
        # Restores consumed credits without counting them as a new allocation.
        if amount <= 0:
            raise RequestValidationError("Amount must be a positive integer")
        return await self.adjust(
            session, kind=kind, rto_code=rto_code, delta=amount, reason=reason, allocate=False
        )

    async def remove(
        self, session: AsyncSession, *, kind: str, rto_code: str, amount: int, reason: str
    ) -> CreditBalance:
        # Removals fail on insufficient balance rather than clamping to zero.
        if amount <= 0:
            raise RequestValidationError("Amount must be a positive integer")
        return await self.adjust(session, kind=kind, rto_code=rto_code, delta=-amount, reason=reason)

    async def get_balance(self, session: AsyncSession, *, kind: str, rto_code: str) -> CreditBalance:
        credit_kind = _parse_kind(kind)
        await self._require_rto(session, rto_code)
        model = _BALANCE_MODELS[credit_kind]
        result = await session.execute(
            select(model).where(model.rto_code == rto_code).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return CreditBalance(kind=credit_kind, rto_code=rto_code, current=0, total=0, subscription=0)
        return CreditBalance(
            kind=credit_kind,
            rto_code=rto_code,
            current=int(row.current_credits or 0),
            total=int(row.total_credits or 0),
            subscription=int(row.subscription_credits or 0),
        )

    async def list_transactions(
        self, session: AsyncSession, *, kind: str, rto_code: str, limit: int = 50
    ) -> list[CreditTransactionRecord]:
        credit_kind = _parse_kind(kind)
        model = _TRANSACTION_MODELS[credit_kind]
        result = await session.execute(
            select(model)
            .where(model.rto_code == rto_code)
            .order_by(model.created_at.desc(), model.id)
            .limit(limit)
        )
        return [
            CreditTransactionRecord(
                id=row.id,
                amount=row.amount,
                reason=row.reason,
                balance_after=row.balance_after,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]


def get_credit_ledger() -> CreditLedger:
    return CreditLedger()
