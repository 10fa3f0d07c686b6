from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import RequestValidationError
from rtocomply.domain.models import PromoCode


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class PromoCodeCheck:
    valid: bool
    code: str
    error: str | None = None
    description: str | None = None
    discount_percent: int | None = None
    discount_amount: int | None = None


async def validate_promo_code(
    session: AsyncSession,
    code: str | None,
    *,
    time_provider: Callable[[], datetime] = _utc_now,
) -> PromoCodeCheck:
    normalized = normalize_code(code)
    if not normalized:
        raise RequestValidationError("Promo code is required")
    result = await session.execute(select(PromoCode).where(PromoCode.code == normalized))
    promo = result.scalar_one_or_none()
    if promo is None:
        return PromoCodeCheck(valid=False, code=normalized, error="Invalid promo code")
    if not promo.is_active:
        return PromoCodeCheck(valid=False, code=normalized, error="This promo code is no longer active")
    now = time_provider()
    valid_from = _as_utc(promo.valid_from)
    valid_until = _as_utc(promo.valid_until)
    if valid_from is not None and now < valid_from:
        return PromoCodeCheck(valid=False, code=normalized, error="This promo code is not yet valid")
    if valid_until is not None and now > valid_until:
        return PromoCodeCheck(valid=False, code=normalized, error="This promo code has expired")
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        return PromoCodeCheck(
            valid=False, code=normalized, error="This promo code has reached its usage limit"
        )
    return PromoCodeCheck(
        valid=True,
        code=normalized,
        description=promo.description,
        discount_percent=promo.discount_percent,
        discount_amount=promo.discount_amount,
    )
