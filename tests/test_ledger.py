from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

import currencies
import ledger
from categories import get_category_by_name
from errors import AccountInUseError, CurrencyMismatchError, NotFoundError, ValidationError
from models import AccountType, TransactionModel, TransactionType

DAY = date(2025, 9, 23)


@pytest_asyncio.fixture
async def checking(db, user, usd):
    return await ledger.create_account(db, user.id, "Checking", AccountType.CHECKING, usd.id, balance="1000")


@pytest_asyncio.fixture
async def savings(db, user, usd):
    return await ledger.create_account(db, user.id, "Savings", AccountType.SAVINGS, usd.id)


async def category(db, user, name):
    return await get_category_by_name(db, user.id, name)


@pytest.mark.asyncio
async def test_income_and_expense_adjust_balance(db, user, checking):
    salary = await category(db, user, "Salary")
    food = await category(db, user, "Food & Dining")

    await ledger.record_transaction(db, user.id, checking.id, salary.id, "2500", TransactionType.INCOME, DAY, "Pay")
    lunch = await ledger.record_transaction(
        db, user.id, checking.id, food.id, "12.345", TransactionType.EXPENSE, DAY, "Lunch"
    )

    assert lunch.amount == Decimal("12.35")
    assert lunch.currency_id == checking.currency_id
    assert checking.balance == Decimal("3487.65")


@pytest.mark.asyncio
async def test_transaction_currency_must_match_account(db, user, checking, eur):
    food = await category(db, user, "Food & Dining")

    with pytest.raises(CurrencyMismatchError):
        await ledger.record_transaction(
            db, user.id, checking.id, food.id, "5", TransactionType.EXPENSE, DAY, "Croissant", currency_id=eur.id
        )
    assert checking.balance == Decimal("1000")


@pytest.mark.asyncio
async def test_category_type_must_match_transaction_type(db, user, checking):
    salary = await category(db, user, "Salary")

    with pytest.raises(ValidationError):
        await ledger.record_transaction(db, user.id, checking.id, salary.id, "5", TransactionType.EXPENSE, DAY, "x")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-3", "0.001", "1e30", "NaN", "Infinity", "ten"])
async def test_amount_must_be_positive(db, user, checking, amount):
    food = await category(db, user, "Food & Dining")

    with pytest.raises(ValidationError):
        await ledger.record_transaction(db, user.id, checking.id, food.id, amount, TransactionType.EXPENSE, DAY, "x")


@pytest.mark.asyncio
async def test_transfer_type_requires_record_transfer(db, user, checking):
    transfer = await category(db, user, "Transfer")

    with pytest.raises(ValidationError):
        await ledger.record_transaction(
            db, user.id, checking.id, transfer.id, "5", TransactionType.TRANSFER, DAY, "x"
        )


@pytest.mark.asyncio
async def test_cannot_use_another_users_account(db, user, other_user, checking):
    food = await category(db, other_user, "Food & Dining")

    with pytest.raises(NotFoundError):
        await ledger.record_transaction(
            db, other_user.id, checking.id, food.id, "5", TransactionType.EXPENSE, DAY, "x"
        )


@pytest.mark.asyncio
async def test_transfer_creates_linked_pair(db, user, checking, savings):
    outgoing, incoming = await ledger.record_transfer(db, user.id, checking.id, savings.id, "250", DAY)

    assert outgoing.type == incoming.type == TransactionType.TRANSFER
    assert outgoing.transfer_to_id == incoming.id
    assert incoming.transfer_to_id is None
    assert (await ledger.get_transfer_partner(db, outgoing)).id == incoming.id
    assert (await ledger.get_transfer_partner(db, incoming)).id == outgoing.id
    assert checking.balance == Decimal("750")
    assert savings.balance == Decimal("250")


@pytest.mark.asyncio
async def test_transfer_to_same_account_rejected(db, user, checking):
    with pytest.raises(ValidationError):
        await ledger.record_transfer(db, user.id, checking.id, checking.id, "10", DAY)


@pytest.mark.asyncio
async def test_cross_currency_transfer_converts_incoming_leg(db, user, usd, eur, checking):
    euros = await ledger.create_account(db, user.id, "Euro account", AccountType.CHECKING, eur.id)
    await currencies.upsert_exchange_rate(db, usd.id, eur.id, "0.92", DAY)

    outgoing, incoming = await ledger.record_transfer(db, user.id, checking.id, euros.id, "100", DAY)

    assert outgoing.amount == Decimal("100")
    assert outgoing.currency_id == usd.id
    assert incoming.amount == Decimal("92.00")
    assert incoming.currency_id == eur.id
    assert euros.balance == Decimal("92")


@pytest.mark.asyncio
async def test_cross_currency_transfer_without_rate_fails(db, user, eur, checking):
    euros = await ledger.create_account(db, user.id, "Euro account", AccountType.CHECKING, eur.id)

    with pytest.raises(NotFoundError):
        await ledger.record_transfer(db, user.id, checking.id, euros.id, "100", DAY)
    assert checking.balance == Decimal("1000")


@pytest.mark.asyncio
async def test_transfer_target_is_one_to_one(db, user, checking, savings):
    outgoing, incoming = await ledger.record_transfer(db, user.id, checking.id, savings.id, "10", DAY)

    db.add(
        TransactionModel(
            user_id=user.id,
            account_id=checking.id,
            category_id=outgoing.category_id,
            currency_id=outgoing.currency_id,
            amount=Decimal("10"),
            type=TransactionType.TRANSFER,
            date=DAY,
            description="second claim on the same incoming leg",
            transfer_to_id=incoming.id,
        )
    )
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
@pytest.mark.parametrize("side", ["outgoing", "incoming"])
async def test_deleting_either_leg_removes_both(db, user, checking, savings, side):
    outgoing, incoming = await ledger.record_transfer(db, user.id, checking.id, savings.id, "300", DAY)
    target = outgoing if side == "outgoing" else incoming

    removed = await ledger.delete_transaction(db, user.id, target.id)

    assert {t.id for t in removed} == {outgoing.id, incoming.id}
    assert checking.balance == Decimal("1000")
    assert savings.balance == Decimal("0")
    assert await ledger.list_transactions(db, user.id) == []
    rows = (await db.execute(select(TransactionModel))).scalars().all()
    assert len(rows) == 2
    assert all(row.deleted_at is not None for row in rows)


@pytest.mark.asyncio
async def test_delete_expense_restores_balance(db, user, checking):
    food = await category(db, user, "Food & Dining")
    txn = await ledger.record_transaction(db, user.id, checking.id, food.id, "40", TransactionType.EXPENSE, DAY, "x")

    await ledger.delete_transaction(db, user.id, txn.id)

    assert checking.balance == Decimal("1000")
    with pytest.raises(NotFoundError):
        await ledger.get_transaction(db, user.id, txn.id)


@pytest.mark.asyncio
async def test_list_transactions_filters(db, user, checking, savings):
    salary = await category(db, user, "Salary")
    food = await category(db, user, "Food & Dining")
    await ledger.record_transaction(
        db, user.id, checking.id, salary.id, "100", TransactionType.INCOME, date(2025, 1, 5), "Jan pay"
    )
    await ledger.record_transaction(
        db, user.id, checking.id, food.id, "20", TransactionType.EXPENSE, date(2025, 2, 5), "Feb food"
    )
    await ledger.record_transfer(db, user.id, checking.id, savings.id, "10", date(2025, 3, 5))

    assert len(await ledger.list_transactions(db, user.id)) == 4
    assert len(await ledger.list_transactions(db, user.id, account_id=savings.id)) == 1
    expenses = await ledger.list_transactions(db, user.id, transaction_type=TransactionType.EXPENSE)
    assert [t.description for t in expenses] == ["Feb food"]
    window = await ledger.list_transactions(db, user.id, from_date=date(2025, 1, 1), to_date=date(2025, 2, 28))
    assert [t.description for t in window] == ["Feb food", "Jan pay"]


@pytest.mark.asyncio
async def test_reconcile_sets_timestamp(db, user, checking):
    food = await category(db, user, "Food & Dining")
    txn = await ledger.record_transaction(db, user.id, checking.id, food.id, "9", TransactionType.EXPENSE, DAY, "x")

    reconciled = await ledger.reconcile_transaction(db, user.id, txn.id)

    assert reconciled.is_reconciled is True
    assert reconciled.reconciled_at is not None


@pytest.mark.asyncio
async def test_deleted_account_is_hidden(db, user, checking, savings):
    await ledger.delete_account(db, user.id, savings.id)

    assert [a.id for a in await ledger.list_accounts(db, user.id, include_inactive=True)] == [checking.id]
    with pytest.raises(NotFoundError):
        await ledger.record_transfer(db, user.id, checking.id, savings.id, "1", DAY)


@pytest.mark.asyncio
async def test_amount_beyond_column_precision_rejected(db, user, checking):
    food = await category(db, user, "Food & Dining")
    salary = await category(db, user, "Salary")

    with pytest.raises(ValidationError):
        await ledger.record_transaction(
            db, user.id, checking.id, food.id, "10000000000000", TransactionType.EXPENSE, DAY, "x"
        )
    # fits on its own but pushes the balance past NUMERIC(15, 2)
    with pytest.raises(ValidationError):
        await ledger.record_transaction(
            db, user.id, checking.id, salary.id, "9999999999999", TransactionType.INCOME, DAY, "x"
        )
    assert checking.balance == Decimal("1000")
    assert await ledger.list_transactions(db, user.id) == []


@pytest.mark.asyncio
async def test_account_with_live_transactions_cannot_be_deleted(db, user, checking):
    food = await category(db, user, "Food & Dining")
    txn = await ledger.record_transaction(db, user.id, checking.id, food.id, "9", TransactionType.EXPENSE, DAY, "x")

    with pytest.raises(AccountInUseError):
        await ledger.delete_account(db, user.id, checking.id)
    assert [t.id for t in await ledger.list_transactions(db, user.id)] == [txn.id]

    await ledger.delete_transaction(db, user.id, txn.id)
    deleted = await ledger.delete_account(db, user.id, checking.id)
    assert deleted.deleted_at is not None
