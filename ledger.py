"""
Accounts, transactions and transfer pairs.

An account's ``balance`` is stored, not derived: every write that records or
removes a transaction adjusts the balance in the same database transaction.
Income adds to the balance, expense subtracts, the outgoing leg of a transfer
subtracts and the incoming leg adds.

A transfer is two TRANSFER rows. The outgoing leg owns ``transfer_to_id``
pointing at the incoming leg; the incoming leg reaches its partner through
the ``transfer_from`` back-reference. Removing either leg removes both.

Transactions are always recorded in their account's currency. Transfers
between accounts of different currencies convert the incoming leg through
the exchange-rate table.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

import currencies
from categories import TRANSFER_CATEGORY_NAME, get_category, get_category_by_name
from errors import AccountInUseError, CurrencyMismatchError, NotFoundError, ValidationError
from models import AccountModel, AccountType, CategoryType, TransactionModel, TransactionType, new_id

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------------
async def create_account(
    db: AsyncSession,
    user_id: str,
    name: str,
    account_type: AccountType,
    currency_id: str,
    balance=0,
    description: Optional[str] = None,
    commit: bool = True,
) -> AccountModel:
    await currencies.get_currency(db, currency_id)
    account = AccountModel(
        user_id=user_id,
        name=name,
        type=account_type,
        currency_id=currency_id,
        balance=currencies.to_money(balance),
        description=description,
    )
    db.add(account)
    if commit:
        await db.commit()
    else:
        await db.flush()
    return account


async def get_account(db: AsyncSession, user_id: str, account_id: str) -> AccountModel:
    result = await db.execute(
        select(AccountModel).where(
            AccountModel.id == account_id,
            AccountModel.user_id == user_id,
            AccountModel.deleted_at.is_(None),
        )
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    return account


async def list_accounts(db: AsyncSession, user_id: str, include_inactive: bool = False) -> List[AccountModel]:
    query = select(AccountModel).where(AccountModel.user_id == user_id, AccountModel.deleted_at.is_(None))
    if not include_inactive:
        query = query.where(AccountModel.is_active.is_(True))
    result = await db.execute(query.order_by(AccountModel.created_at, AccountModel.name))
    return result.scalars().all()


async def delete_account(db: AsyncSession, user_id: str, account_id: str) -> AccountModel:
    """Soft-delete an account that has no live transactions left."""
    account = await get_account(db, user_id, account_id)
    result = await db.execute(
        select(func.count())
        .select_from(TransactionModel)
        .where(TransactionModel.account_id == account.id, TransactionModel.deleted_at.is_(None))
    )
    live = result.scalar_one()
    if live:
        raise AccountInUseError(f"Account {account_id} still has {live} transaction(s)")
    account.deleted_at = datetime.utcnow()
    account.is_active = False
    await db.commit()
    logger.info("Soft-deleted account %s", account_id)
    return account


# ----------------------------------------------------------------------------
# Transactions
# ----------------------------------------------------------------------------
def _positive_amount(amount) -> Decimal:
    value = currencies.to_money(amount)
    if value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return value


def _is_outgoing(txn: TransactionModel) -> bool:
    return txn.type == TransactionType.TRANSFER and txn.transfer_to_id is not None


def balance_effect(txn: TransactionModel) -> Decimal:
    """Signed change a live transaction applies to its account balance."""
    amount = Decimal(txn.amount)
    if txn.type == TransactionType.INCOME:
        return amount
    if txn.type == TransactionType.EXPENSE:
        return -amount
    return -amount if _is_outgoing(txn) else amount


def _moved(account: AccountModel, delta: Decimal) -> Decimal:
    return currencies.to_money(Decimal(account.balance or 0) + delta)


def _apply(account: AccountModel, delta: Decimal):
    account.balance = _moved(account, delta)


async def record_transaction(
    db: AsyncSession,
    user_id: str,
    account_id: str,
    category_id: str,
    amount,
    transaction_type: TransactionType,
    on_date: date,
    description: str,
    currency_id: Optional[str] = None,
    notes: Optional[str] = None,
    receipt_url: Optional[str] = None,
) -> TransactionModel:
    if transaction_type == TransactionType.TRANSFER:
        raise ValidationError("Transfers must be recorded with record_transfer")
    amount = _positive_amount(amount)
    account = await get_account(db, user_id, account_id)
    if not account.is_active:
        raise ValidationError(f"Account {account_id} is inactive")
    if currency_id is not None and currency_id != account.currency_id:
        raise CurrencyMismatchError("Transaction currency must match the account currency")
    category = await get_category(db, user_id, category_id)
    if category.type.value != transaction_type.value:
        raise ValidationError(f"Category {category.name!r} is not a {transaction_type.value} category")

    txn = TransactionModel(
        user_id=user_id,
        account_id=account.id,
        category_id=category.id,
        currency_id=account.currency_id,
        amount=amount,
        type=transaction_type,
        date=on_date,
        description=description,
        notes=notes,
        receipt_url=receipt_url,
    )
    _apply(account, balance_effect(txn))
    db.add(txn)
    await db.commit()
    return txn


async def record_transfer(
    db: AsyncSession,
    user_id: str,
    from_account_id: str,
    to_account_id: str,
    amount,
    on_date: date,
    description: Optional[str] = None,
    category_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Tuple[TransactionModel, TransactionModel]:
    """Move ``amount`` (in the source account's currency) between two accounts.

    Returns the (outgoing, incoming) legs.
    """
    if from_account_id == to_account_id:
        raise ValidationError("Cannot transfer to the same account")
    amount = _positive_amount(amount)
    source = await get_account(db, user_id, from_account_id)
    target = await get_account(db, user_id, to_account_id)
    for account in (source, target):
        if not account.is_active:
            raise ValidationError(f"Account {account.id} is inactive")

    if category_id is not None:
        category = await get_category(db, user_id, category_id)
        if category.type != CategoryType.TRANSFER:
            raise ValidationError(f"Category {category.name!r} is not a TRANSFER category")
    else:
        category = await get_category_by_name(db, user_id, TRANSFER_CATEGORY_NAME)
        if category is None or category.type != CategoryType.TRANSFER:
            raise NotFoundError("No transfer category available")

    incoming_amount = await currencies.convert(db, amount, source.currency_id, target.currency_id, on_date)
    if incoming_amount <= 0:
        raise ValidationError("Converted transfer amount rounds to zero")
    description = description or f"Transfer from {source.name} to {target.name}"

    incoming = TransactionModel(
        id=new_id(),
        user_id=user_id,
        account_id=target.id,
        category_id=category.id,
        currency_id=target.currency_id,
        amount=incoming_amount,
        type=TransactionType.TRANSFER,
        date=on_date,
        description=description,
        notes=notes,
    )
    outgoing = TransactionModel(
        user_id=user_id,
        account_id=source.id,
        category_id=category.id,
        currency_id=source.currency_id,
        amount=amount,
        type=TransactionType.TRANSFER,
        date=on_date,
        description=description,
        notes=notes,
        transfer_to_id=incoming.id,
    )
    source_balance = _moved(source, balance_effect(outgoing))
    target_balance = _moved(target, balance_effect(incoming))
    source.balance, target.balance = source_balance, target_balance
    # the incoming leg is inserted first so the outgoing leg's reference resolves
    db.add(incoming)
    await db.flush()
    db.add(outgoing)
    await db.commit()
    logger.info("Recorded transfer %s -> %s of %s", source.id, target.id, amount)
    return outgoing, incoming


async def get_transaction(db: AsyncSession, user_id: str, transaction_id: str) -> TransactionModel:
    result = await db.execute(
        select(TransactionModel).where(
            TransactionModel.id == transaction_id,
            TransactionModel.user_id == user_id,
            TransactionModel.deleted_at.is_(None),
        )
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


async def get_transfer_partner(db: AsyncSession, txn: TransactionModel) -> Optional[TransactionModel]:
    """The other leg of a transfer, whichever side ``txn`` is."""
    if txn.type != TransactionType.TRANSFER:
        return None
    if txn.transfer_to_id is not None:
        stmt = select(TransactionModel).where(TransactionModel.id == txn.transfer_to_id)
    else:
        stmt = select(TransactionModel).where(TransactionModel.transfer_to_id == txn.id)
    result = await db.execute(stmt.where(TransactionModel.deleted_at.is_(None)))
    return result.scalar_one_or_none()


async def list_transactions(
    db: AsyncSession,
    user_id: str,
    account_id: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    transaction_type: Optional[TransactionType] = None,
) -> List[TransactionModel]:
    query = select(TransactionModel).where(
        TransactionModel.user_id == user_id, TransactionModel.deleted_at.is_(None)
    )
    if account_id:
        query = query.where(TransactionModel.account_id == account_id)
    if from_date:
        query = query.where(TransactionModel.date >= from_date)
    if to_date:
        query = query.where(TransactionModel.date <= to_date)
    if transaction_type:
        query = query.where(TransactionModel.type == transaction_type)
    query = query.order_by(TransactionModel.date.desc(), TransactionModel.created_at.desc())

    result = await db.execute(query)
    return result.scalars().all()


async def _revert(db: AsyncSession, txn: TransactionModel, deleted_at: datetime):
    result = await db.execute(select(AccountModel).where(AccountModel.id == txn.account_id))
    account = result.scalar_one()
    _apply(account, -balance_effect(txn))
    txn.deleted_at = deleted_at


async def delete_transaction(db: AsyncSession, user_id: str, transaction_id: str) -> List[TransactionModel]:
    """Soft-delete a transaction and undo its balance effect.

    For a transfer both legs are removed. Returns every row that was deleted.
    """
    txn = await get_transaction(db, user_id, transaction_id)
    partner = await get_transfer_partner(db, txn)
    now = datetime.utcnow()

    removed = [txn] if partner is None else [txn, partner]
    for row in removed:
        await _revert(db, row, now)
    await db.commit()
    logger.info("Soft-deleted transactions %s", ", ".join(row.id for row in removed))
    return removed


async def reconcile_transaction(db: AsyncSession, user_id: str, transaction_id: str) -> TransactionModel:
    txn = await get_transaction(db, user_id, transaction_id)
    if not txn.is_reconciled:
        txn.is_reconciled = True
        txn.reconciled_at = datetime.utcnow()
        await db.commit()
    return txn
