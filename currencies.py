"""
Currency registry and exchange rates.

Rates are directional and dated: ``(from, to, date)`` identifies one rate.
Writing a rate for an existing triple updates it in place.
"""
import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import CurrencyInUseError, NotFoundError, ValidationError
from models import (
    AccountModel,
    BudgetModel,
    CurrencyModel,
    ExchangeRateModel,
    GoalModel,
    TransactionModel,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
RATE_PRECISION = Decimal("0.00000001")
# integer digits that fit NUMERIC(15, 2) and NUMERIC(18, 8)
MAX_MONEY = Decimal(10) ** 13
MAX_RATE = Decimal(10) ** 10


def to_money(value) -> Decimal:
    try:
        money = Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount {value!r}")
    if not money.is_finite() or abs(money) >= MAX_MONEY:
        raise ValidationError(f"Amount {value} is out of range")
    return money


def to_rate(value) -> Decimal:
    try:
        rate = Decimal(str(value)).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Invalid exchange rate {value!r}")
    if not rate.is_finite():
        raise ValidationError(f"Invalid exchange rate {value!r}")
    if rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero")
    if rate >= MAX_RATE:
        raise ValidationError(f"Exchange rate {value} is out of range")
    return rate


async def list_currencies(db: AsyncSession) -> List[CurrencyModel]:
    result = await db.execute(
        select(CurrencyModel).where(CurrencyModel.deleted_at.is_(None)).order_by(CurrencyModel.code)
    )
    return result.scalars().all()


async def get_currency(db: AsyncSession, currency_id: str) -> CurrencyModel:
    result = await db.execute(
        select(CurrencyModel).where(CurrencyModel.id == currency_id, CurrencyModel.deleted_at.is_(None))
    )
    currency = result.scalar_one_or_none()
    if currency is None:
        raise NotFoundError(f"Currency {currency_id} not found")
    return currency


async def get_currency_by_code(db: AsyncSession, code: str) -> Optional[CurrencyModel]:
    result = await db.execute(
        select(CurrencyModel).where(CurrencyModel.code == code.upper(), CurrencyModel.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


def _normalize_code(code: str) -> str:
    code = (code or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code {code!r}")
    return code


async def create_currency(db: AsyncSession, code: str, name: str, symbol: str) -> CurrencyModel:
    currency = CurrencyModel(code=_normalize_code(code), name=name, symbol=symbol)
    db.add(currency)
    await db.commit()
    return currency


async def is_currency_referenced(db: AsyncSession, currency_id: str) -> bool:
    checks = [
        select(func.count()).select_from(ExchangeRateModel).where(
            or_(ExchangeRateModel.from_currency_id == currency_id, ExchangeRateModel.to_currency_id == currency_id)
        ),
        select(func.count()).select_from(AccountModel).where(AccountModel.currency_id == currency_id),
        select(func.count()).select_from(TransactionModel).where(TransactionModel.currency_id == currency_id),
        select(func.count()).select_from(BudgetModel).where(BudgetModel.currency_id == currency_id),
        select(func.count()).select_from(GoalModel).where(GoalModel.currency_id == currency_id),
    ]
    for stmt in checks:
        if (await db.execute(stmt)).scalar_one():
            return True
    return False


async def update_currency(
    db: AsyncSession,
    currency_id: str,
    code: Optional[str] = None,
    name: Optional[str] = None,
    symbol: Optional[str] = None,
) -> CurrencyModel:
    currency = await get_currency(db, currency_id)
    if code is not None:
        new_code = _normalize_code(code)
        if new_code != currency.code:
            if await is_currency_referenced(db, currency.id):
                raise CurrencyInUseError(f"Currency {currency.code} is referenced and its code cannot change")
            currency.code = new_code
    if name is not None:
        currency.name = name
    if symbol is not None:
        currency.symbol = symbol
    await db.commit()
    return currency


# ----------------------------------------------------------------------------
# Exchange rates
# ----------------------------------------------------------------------------
async def upsert_exchange_rate(
    db: AsyncSession, from_currency_id: str, to_currency_id: str, rate, on_date: date
) -> ExchangeRateModel:
    rate = to_rate(rate)
    if from_currency_id == to_currency_id:
        raise ValidationError("Exchange rate currencies must differ")
    await get_currency(db, from_currency_id)
    await get_currency(db, to_currency_id)

    result = await db.execute(
        select(ExchangeRateModel).where(
            ExchangeRateModel.from_currency_id == from_currency_id,
            ExchangeRateModel.to_currency_id == to_currency_id,
            ExchangeRateModel.date == on_date,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        existing.rate = rate
        existing.deleted_at = None
        record = existing
    else:
        record = ExchangeRateModel(
            from_currency_id=from_currency_id, to_currency_id=to_currency_id, rate=rate, date=on_date
        )
        db.add(record)
    await db.commit()
    return record


async def _latest_rate(db: AsyncSession, from_currency_id: str, to_currency_id: str, on_date: date):
    result = await db.execute(
        select(ExchangeRateModel.rate)
        .where(
            ExchangeRateModel.from_currency_id == from_currency_id,
            ExchangeRateModel.to_currency_id == to_currency_id,
            ExchangeRateModel.date <= on_date,
            ExchangeRateModel.deleted_at.is_(None),
        )
        .order_by(ExchangeRateModel.date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_exchange_rate(
    db: AsyncSession, from_currency_id: str, to_currency_id: str, on_date: Optional[date] = None
) -> Decimal:
    """Rate to multiply an amount in ``from`` by to express it in ``to``.

    Uses the latest rate dated on or before ``on_date``; when only the reverse
    pair is recorded its inverse is used.
    """
    if from_currency_id == to_currency_id:
        return Decimal(1)
    on_date = on_date or datetime.utcnow().date()

    rate = await _latest_rate(db, from_currency_id, to_currency_id, on_date)
    if rate is not None:
        return Decimal(rate)
    reverse = await _latest_rate(db, to_currency_id, from_currency_id, on_date)
    if reverse is not None:
        return (Decimal(1) / Decimal(reverse)).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)
    raise NotFoundError(f"No exchange rate from {from_currency_id} to {to_currency_id} on or before {on_date}")


async def convert(
    db: AsyncSession, amount, from_currency_id: str, to_currency_id: str, on_date: Optional[date] = None
) -> Decimal:
    rate = await get_exchange_rate(db, from_currency_id, to_currency_id, on_date)
    return to_money(to_money(amount) * rate)
