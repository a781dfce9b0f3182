"""
Seed reference data: currencies, example exchange rates and, in development,
a demo user with default categories and accounts.

Run with ``python seed.py`` or the ``wisecalk-seed`` console script.
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import currencies
import ledger
from categories import seed_default_categories
from config import APP_ENV, LOG_LEVEL
from database import async_session, dispose, init_models
from models import AccountModel, AccountType, UserModel

logger = logging.getLogger(__name__)

CURRENCIES = [
    ("USD", "US Dollar", "$"),
    ("EUR", "Euro", "€"),
    ("GBP", "British Pound", "£"),
    ("BRL", "Brazilian Real", "R$"),
    ("JPY", "Japanese Yen", "¥"),
    ("CAD", "Canadian Dollar", "C$"),
    ("AUD", "Australian Dollar", "A$"),
    ("CHF", "Swiss Franc", "CHF"),
]

EXAMPLE_RATES = [
    ("USD", "EUR", Decimal("0.92")),
    ("EUR", "USD", Decimal("1.09")),
    ("USD", "BRL", Decimal("5.05")),
    ("BRL", "USD", Decimal("0.20")),
]

DEMO_AUTH0_ID = "auth0|demo123"
DEMO_EMAIL = "demo@wisecalk.com"

DEMO_ACCOUNTS = [
    ("Main Checking", AccountType.CHECKING, "USD", Decimal("5000"), "Primary checking account"),
    ("Savings Account", AccountType.SAVINGS, "USD", Decimal("10000"), "Emergency fund and savings"),
    ("Brazilian Account", AccountType.CHECKING, "BRL", Decimal("5000"), "Brazilian bank account"),
]


async def seed_currencies(db: AsyncSession) -> int:
    created = 0
    for code, name, symbol in CURRENCIES:
        if await currencies.get_currency_by_code(db, code) is None:
            await currencies.create_currency(db, code, name, symbol)
            created += 1
    logger.info("Seeded currencies (%d new)", created)
    return created


async def seed_exchange_rates(db: AsyncSession, on_date=None):
    on_date = on_date or datetime.utcnow().date()
    for from_code, to_code, rate in EXAMPLE_RATES:
        source = await currencies.get_currency_by_code(db, from_code)
        target = await currencies.get_currency_by_code(db, to_code)
        if source is None or target is None:
            logger.warning("Skipping rate %s->%s: currency missing", from_code, to_code)
            continue
        await currencies.upsert_exchange_rate(db, source.id, target.id, rate, on_date)
    logger.info("Seeded exchange rates for %s", on_date)


async def seed_demo_user(db: AsyncSession) -> UserModel:
    result = await db.execute(select(UserModel).where(UserModel.email == DEMO_EMAIL))
    user = result.scalar_one_or_none()
    if user is None:
        user = UserModel(
            auth0_id=DEMO_AUTH0_ID,
            email=DEMO_EMAIL,
            first_name="Demo",
            last_name="User",
            timezone="America/New_York",
            locale="en-US",
        )
        db.add(user)
        await db.flush()
        logger.info("Created demo user: %s", user.email)
    await seed_default_categories(db, user.id, commit=False)

    result = await db.execute(select(AccountModel.name).where(AccountModel.user_id == user.id))
    existing = set(result.scalars().all())
    for name, account_type, code, balance, description in DEMO_ACCOUNTS:
        currency = await currencies.get_currency_by_code(db, code)
        if name in existing or currency is None:
            continue
        await ledger.create_account(
            db, user.id, name, account_type, currency.id, balance=balance, description=description, commit=False
        )
    await db.commit()
    logger.info("Seeded demo accounts")
    return user


async def run():
    await init_models()
    try:
        async with async_session() as db:
            await seed_currencies(db)
            await seed_exchange_rates(db)
            if APP_ENV == "development":
                await seed_demo_user(db)
    finally:
        await dispose()
    logger.info("Seeding completed!")


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    asyncio.run(run())


if __name__ == "__main__":
    main()
