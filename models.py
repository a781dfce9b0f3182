"""
Relational schema for the ledger.

Every table carries a string UUID key, audit timestamps and a nullable
``deleted_at`` soft-delete marker; rows tied to financial history are never
physically removed. Ownership foreign keys (users, currencies) restrict
deletion.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import backref, relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


# ----------------------------------------------------------------------------
# Enumerations
# ----------------------------------------------------------------------------
class AccountType(str, enum.Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"
    CASH = "CASH"
    CRYPTO = "CRYPTO"
    LOAN = "LOAN"
    OTHER = "OTHER"


class CategoryType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class TransactionType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class BudgetPeriod(str, enum.Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"


class GoalType(str, enum.Enum):
    SAVINGS = "SAVINGS"
    DEBT_PAYOFF = "DEBT_PAYOFF"
    INVESTMENT = "INVESTMENT"
    EMERGENCY_FUND = "EMERGENCY_FUND"
    OTHER = "OTHER"


class AuditMixin:
    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)


# ----------------------------------------------------------------------------
# DB Models
# ----------------------------------------------------------------------------
class UserModel(AuditMixin, Base):
    __tablename__ = "users"
    auth0_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    locale = Column(String(16), nullable=False, default="en-US")


class CurrencyModel(AuditMixin, Base):
    __tablename__ = "currencies"
    code = Column(String(3), unique=True, index=True, nullable=False)
    name = Column(String(120), nullable=False)
    symbol = Column(String(8), nullable=False)


class ExchangeRateModel(AuditMixin, Base):
    __tablename__ = "exchange_rates"
    from_currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    to_currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    rate = Column(Numeric(18, 8), nullable=False)
    date = Column(Date, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("from_currency_id", "to_currency_id", "date", name="exchange_rates_pair_date_key"),
        CheckConstraint("rate > 0", name="exchange_rates_positive_rate"),
        CheckConstraint("from_currency_id <> to_currency_id", name="exchange_rates_distinct_pair"),
    )


class AccountModel(AuditMixin, Base):
    __tablename__ = "accounts"
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(AccountType, name="account_type"), nullable=False, index=True)
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("accounts_user_id_is_active_idx", "user_id", "is_active"),
        Index("accounts_user_id_type_is_active_idx", "user_id", "type", "is_active"),
    )


class CategoryModel(AuditMixin, Base):
    __tablename__ = "categories"
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(16), nullable=True)
    icon = Column(String(64), nullable=True)
    type = Column(Enum(CategoryType, name="category_type"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    parent_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    parent = relationship("CategoryModel", remote_side="CategoryModel.id", backref=backref("children"))

    __table_args__ = (
        UniqueConstraint("user_id", "name", "parent_id", name="categories_user_id_name_parent_id_key"),
        Index("categories_user_id_type_is_active_idx", "user_id", "type", "is_active"),
    )


class TransactionModel(AuditMixin, Base):
    __tablename__ = "transactions"
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    type = Column(Enum(TransactionType, name="transaction_type"), nullable=False)
    date = Column(Date, nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    # owning side of a transfer pair: set on the outgoing leg, points at the incoming leg
    transfer_to_id = Column(String(36), ForeignKey("transactions.id", ondelete="SET NULL"), unique=True, nullable=True)
    receipt_url = Column(Text, nullable=True)
    is_reconciled = Column(Boolean, nullable=False, default=False, index=True)
    reconciled_at = Column(DateTime, nullable=True)

    transfer_to = relationship(
        "TransactionModel",
        remote_side="TransactionModel.id",
        uselist=False,
        backref=backref("transfer_from", uselist=False),
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="transactions_positive_amount"),
        Index("transactions_user_id_date_idx", "user_id", "date"),
        Index("transactions_account_id_date_idx", "account_id", "date"),
        Index("transactions_category_id_date_idx", "category_id", "date"),
        Index("transactions_user_id_type_date_idx", "user_id", "type", "date"),
    )


class BudgetModel(AuditMixin, Base):
    __tablename__ = "budgets"
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    period = Column(Enum(BudgetPeriod, name="budget_period"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    alert_threshold = Column(Numeric(5, 2), nullable=True)

    __table_args__ = (
        Index("budgets_user_id_is_active_idx", "user_id", "is_active"),
        Index("budgets_category_id_start_date_end_date_idx", "category_id", "start_date", "end_date"),
    )


class GoalModel(AuditMixin, Base):
    __tablename__ = "goals"
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(Numeric(15, 2), nullable=False)
    current_amount = Column(Numeric(15, 2), nullable=False, default=0)
    target_date = Column(Date, nullable=True, index=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    currency_id = Column(String(36), ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    type = Column(Enum(GoalType, name="goal_type"), nullable=False, index=True)

    __table_args__ = (
        Index("goals_user_id_is_completed_idx", "user_id", "is_completed"),
    )
