"""
API Schemas

Pydantic models for the HTTP boundary: request bodies, response shapes and
the narrowed identity-provider claims.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from config import AUTH0_ROLES_CLAIM
from models import AccountType, BudgetPeriod, CategoryType, GoalType, TransactionType


# ----------------------------------------------------------------------------
# Identity
# ----------------------------------------------------------------------------
class TokenClaims(BaseModel):
    """Validated subset of an access token payload."""

    sub: str = Field(..., min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    zoneinfo: Optional[str] = None
    locale: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    scope: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _namespaced_roles(cls, data: Any):
        if isinstance(data, dict) and "roles" not in data:
            data = dict(data)
            data["roles"] = data.get(AUTH0_ROLES_CLAIM) or []
        return data


class AuthUser(BaseModel):
    user_id: str
    auth0_id: str
    email: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    scope: Optional[str] = None


class UserOut(BaseModel):
    id: str
    auth0_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    timezone: str
    locale: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ApiKeyIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)


class ApiKeyOut(BaseModel):
    api_key: str
    name: str


# ----------------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------------
class HealthOut(BaseModel):
    status: str
    timestamp: str
    uptime: float
    environment: str
    version: str
    message: str


class DatabaseHealth(BaseModel):
    connected: bool
    users: Optional[int] = None
    currencies: Optional[int] = None
    error: Optional[str] = None


class DatabaseHealthOut(BaseModel):
    status: str
    timestamp: str
    database: DatabaseHealth
    message: str


# ----------------------------------------------------------------------------
# Currencies
# ----------------------------------------------------------------------------
class CurrencyOut(BaseModel):
    id: str
    code: str
    name: str
    symbol: str

    class Config:
        from_attributes = True


class ExchangeRateIn(BaseModel):
    from_currency_id: str
    to_currency_id: str
    rate: Decimal = Field(..., gt=0, max_digits=18, decimal_places=8)
    date: date


class ExchangeRateOut(ExchangeRateIn):
    id: str

    class Config:
        from_attributes = True


class ConversionOut(BaseModel):
    amount: Decimal
    rate: Decimal
    converted: Decimal


# ----------------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------------
class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    currency_id: str
    balance: Decimal = Field(Decimal(0), max_digits=15, decimal_places=2)
    description: Optional[str] = None


class AccountOut(AccountIn):
    id: str
    is_active: bool

    class Config:
        from_attributes = True


# ----------------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------------
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: CategoryType
    parent_id: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class CategoryOut(CategoryIn):
    id: str
    is_active: bool

    class Config:
        from_attributes = True


class CategoryParentIn(BaseModel):
    parent_id: Optional[str] = None


# ----------------------------------------------------------------------------
# Transactions
# ----------------------------------------------------------------------------
class TransactionIn(BaseModel):
    type: TransactionType
    account_id: str
    category_id: str
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    date: date
    description: str = Field(..., min_length=1)
    currency_id: Optional[str] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None


class TransactionOut(BaseModel):
    id: str
    type: TransactionType
    account_id: str
    category_id: str
    currency_id: str
    amount: Decimal
    date: date
    description: str
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    transfer_to_id: Optional[str] = None
    is_reconciled: bool
    reconciled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransferIn(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    date: date
    description: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None


class TransferOut(BaseModel):
    outgoing: TransactionOut
    incoming: TransactionOut


# ----------------------------------------------------------------------------
# Budgets & goals
# ----------------------------------------------------------------------------
class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    period: BudgetPeriod
    start_date: date
    end_date: date
    currency_id: str
    category_id: str
    alert_threshold: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    description: Optional[str] = None


class BudgetOut(BudgetIn):
    id: str
    is_active: bool

    class Config:
        from_attributes = True


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: GoalType
    target_amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    current_amount: Decimal = Field(Decimal(0), ge=0, max_digits=15, decimal_places=2)
    target_date: Optional[date] = None
    currency_id: str
    description: Optional[str] = None


class GoalOut(GoalIn):
    id: str
    is_completed: bool
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GoalProgressIn(BaseModel):
    current_amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
