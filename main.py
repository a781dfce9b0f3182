import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

import categories
import currencies
import health
import ledger
import planning
from auth import generate_api_key, get_current_user, get_user, require_permissions
from config import API_PREFIX, APP_VERSION, CORS_ORIGINS, LOG_LEVEL
from database import dispose, get_db, init_models
from errors import LedgerError, NotFoundError
from models import CategoryType, TransactionType
from schemas import (
    AccountIn,
    AccountOut,
    ApiKeyIn,
    ApiKeyOut,
    AuthUser,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CategoryParentIn,
    ConversionOut,
    CurrencyOut,
    DatabaseHealthOut,
    ExchangeRateIn,
    ExchangeRateOut,
    GoalIn,
    GoalOut,
    GoalProgressIn,
    HealthOut,
    TransactionIn,
    TransactionOut,
    TransferIn,
    TransferOut,
    UserOut,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# App setup
# ----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_models()
    logger.info("Database connection established")
    yield
    await dispose()


app = FastAPI(title="WiseCalK Backend API", version=APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


router = APIRouter(prefix=API_PREFIX)

# ----------------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------------
@router.get("/")
async def read_root():
    return {"message": "WiseCalK Backend API is running!"}


@router.get("/health", response_model=HealthOut)
async def get_health():
    return health.get_health()


@router.get("/health/db", response_model=DatabaseHealthOut, response_model_exclude_none=True)
async def get_db_health(db: AsyncSession = Depends(get_db)):
    return await health.get_db_health(db)

# ----------------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------------
@router.get("/auth/me", response_model=UserOut)
async def me(db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)):
    user = await get_user(db, current_user.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.post("/auth/api-keys", response_model=ApiKeyOut)
async def create_api_key(payload: ApiKeyIn, current_user: AuthUser = Depends(get_current_user)):
    return {"api_key": generate_api_key(current_user.user_id, payload.name), "name": payload.name}

# ----------------------------------------------------------------------------
# Currencies
# ----------------------------------------------------------------------------
@router.get("/currencies", response_model=List[CurrencyOut])
async def list_currencies(db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)):
    return await currencies.list_currencies(db)


@router.put("/exchange-rates", response_model=ExchangeRateOut)
async def put_exchange_rate(
    payload: ExchangeRateIn,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(require_permissions("write:exchange_rates")),
):
    return await currencies.upsert_exchange_rate(
        db, payload.from_currency_id, payload.to_currency_id, payload.rate, payload.date
    )


@router.get("/exchange-rates/convert", response_model=ConversionOut)
async def convert_amount(
    amount: Decimal,
    from_currency_id: str,
    to_currency_id: str,
    on_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    rate = await currencies.get_exchange_rate(db, from_currency_id, to_currency_id, on_date)
    return {"amount": amount, "rate": rate, "converted": currencies.to_money(amount * rate)}

# ----------------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------------
@router.get("/accounts", response_model=List[AccountOut])
async def list_accounts(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    return await ledger.list_accounts(db, current_user.user_id, include_inactive)


@router.post("/accounts", response_model=AccountOut, status_code=201)
async def create_account(
    payload: AccountIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await ledger.create_account(
        db,
        current_user.user_id,
        payload.name,
        payload.type,
        payload.currency_id,
        balance=payload.balance,
        description=payload.description,
    )


@router.delete("/accounts/{account_id}", response_model=AccountOut)
async def delete_account(
    account_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await ledger.delete_account(db, current_user.user_id, account_id)

# ----------------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------------
@router.get("/categories", response_model=List[CategoryOut])
async def list_categories(
    type: Optional[CategoryType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    return await categories.list_categories(db, current_user.user_id, type)


@router.post("/categories", response_model=CategoryOut, status_code=201)
async def create_category(
    payload: CategoryIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await categories.create_category(
        db,
        current_user.user_id,
        payload.name,
        payload.type,
        parent_id=payload.parent_id,
        description=payload.description,
        color=payload.color,
        icon=payload.icon,
    )


@router.put("/categories/{category_id}/parent", response_model=CategoryOut)
async def set_category_parent(
    category_id: str,
    payload: CategoryParentIn,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    return await categories.set_category_parent(db, current_user.user_id, category_id, payload.parent_id)


@router.delete("/categories/{category_id}", response_model=CategoryOut)
async def delete_category(
    category_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await categories.delete_category(db, current_user.user_id, category_id)

# ----------------------------------------------------------------------------
# Transactions
# ----------------------------------------------------------------------------
@router.post("/transactions", response_model=TransactionOut, status_code=201)
async def create_transaction(
    payload: TransactionIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await ledger.record_transaction(
        db,
        current_user.user_id,
        payload.account_id,
        payload.category_id,
        payload.amount,
        payload.type,
        payload.date,
        payload.description,
        currency_id=payload.currency_id,
        notes=payload.notes,
        receipt_url=payload.receipt_url,
    )


@router.get("/transactions", response_model=List[TransactionOut])
async def list_transactions(
    account_id: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    type: Optional[TransactionType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    return await ledger.list_transactions(db, current_user.user_id, account_id, from_date, to_date, type)


@router.delete("/transactions/{transaction_id}", response_model=List[TransactionOut])
async def delete_transaction(
    transaction_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await ledger.delete_transaction(db, current_user.user_id, transaction_id)


@router.post("/transactions/{transaction_id}/reconcile", response_model=TransactionOut)
async def reconcile_transaction(
    transaction_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await ledger.reconcile_transaction(db, current_user.user_id, transaction_id)


@router.post("/transfers", response_model=TransferOut, status_code=201)
async def create_transfer(
    payload: TransferIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    outgoing, incoming = await ledger.record_transfer(
        db,
        current_user.user_id,
        payload.from_account_id,
        payload.to_account_id,
        payload.amount,
        payload.date,
        description=payload.description,
        category_id=payload.category_id,
        notes=payload.notes,
    )
    return {"outgoing": outgoing, "incoming": incoming}

# ----------------------------------------------------------------------------
# Budgets & goals
# ----------------------------------------------------------------------------
@router.get("/budgets", response_model=List[BudgetOut])
async def list_budgets(db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)):
    return await planning.list_budgets(db, current_user.user_id)


@router.post("/budgets", response_model=BudgetOut, status_code=201)
async def create_budget(
    payload: BudgetIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await planning.create_budget(
        db,
        current_user.user_id,
        payload.name,
        payload.amount,
        payload.period,
        payload.start_date,
        payload.end_date,
        payload.currency_id,
        payload.category_id,
        alert_threshold=payload.alert_threshold,
        description=payload.description,
    )


@router.delete("/budgets/{budget_id}", response_model=BudgetOut)
async def delete_budget(
    budget_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await planning.delete_budget(db, current_user.user_id, budget_id)


@router.get("/goals", response_model=List[GoalOut])
async def list_goals(db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)):
    return await planning.list_goals(db, current_user.user_id)


@router.post("/goals", response_model=GoalOut, status_code=201)
async def create_goal(
    payload: GoalIn, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await planning.create_goal(
        db,
        current_user.user_id,
        payload.name,
        payload.type,
        payload.target_amount,
        payload.currency_id,
        current_amount=payload.current_amount,
        target_date=payload.target_date,
        description=payload.description,
    )


@router.put("/goals/{goal_id}/progress", response_model=GoalOut)
async def update_goal_progress(
    goal_id: str,
    payload: GoalProgressIn,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    return await planning.update_goal_progress(db, current_user.user_id, goal_id, payload.current_amount)


@router.post("/goals/{goal_id}/complete", response_model=GoalOut)
async def complete_goal(
    goal_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await planning.complete_goal(db, current_user.user_id, goal_id)


@router.delete("/goals/{goal_id}", response_model=GoalOut)
async def delete_goal(
    goal_id: str, db: AsyncSession = Depends(get_db), current_user: AuthUser = Depends(get_current_user)
):
    return await planning.delete_goal(db, current_user.user_id, goal_id)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3000))
    uvicorn.run(app, host="0.0.0.0", port=port)
