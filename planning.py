"""
Budgets and savings goals.

These are declarative records only; nothing here tracks spending against a
budget or computes goal progress from transactions.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import currencies
from categories import get_category
from errors import NotFoundError, ValidationError
from models import BudgetModel, BudgetPeriod, GoalModel, GoalType

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# Budgets
# ----------------------------------------------------------------------------
async def create_budget(
    db: AsyncSession,
    user_id: str,
    name: str,
    amount,
    period: BudgetPeriod,
    start_date: date,
    end_date: date,
    currency_id: str,
    category_id: str,
    alert_threshold=None,
    description: Optional[str] = None,
) -> BudgetModel:
    amount = currencies.to_money(amount)
    if amount <= 0:
        raise ValidationError("Budget amount must be greater than zero")
    if end_date < start_date:
        raise ValidationError("Budget end date must not be before its start date")
    if alert_threshold is not None:
        alert_threshold = currencies.to_money(alert_threshold)
        if not (Decimal(0) <= alert_threshold <= Decimal(100)):
            raise ValidationError("Alert threshold must be a percentage between 0 and 100")
    await currencies.get_currency(db, currency_id)
    await get_category(db, user_id, category_id)

    budget = BudgetModel(
        user_id=user_id,
        name=name,
        description=description,
        amount=amount,
        period=period,
        start_date=start_date,
        end_date=end_date,
        currency_id=currency_id,
        category_id=category_id,
        alert_threshold=alert_threshold,
    )
    db.add(budget)
    await db.commit()
    return budget


async def list_budgets(db: AsyncSession, user_id: str, active_only: bool = True) -> List[BudgetModel]:
    query = select(BudgetModel).where(BudgetModel.user_id == user_id, BudgetModel.deleted_at.is_(None))
    if active_only:
        query = query.where(BudgetModel.is_active.is_(True))
    result = await db.execute(query.order_by(BudgetModel.start_date.desc()))
    return result.scalars().all()


async def delete_budget(db: AsyncSession, user_id: str, budget_id: str) -> BudgetModel:
    result = await db.execute(
        select(BudgetModel).where(
            BudgetModel.id == budget_id, BudgetModel.user_id == user_id, BudgetModel.deleted_at.is_(None)
        )
    )
    budget = result.scalar_one_or_none()
    if budget is None:
        raise NotFoundError(f"Budget {budget_id} not found")
    budget.deleted_at = datetime.utcnow()
    budget.is_active = False
    await db.commit()
    return budget


# ----------------------------------------------------------------------------
# Goals
# ----------------------------------------------------------------------------
async def create_goal(
    db: AsyncSession,
    user_id: str,
    name: str,
    goal_type: GoalType,
    target_amount,
    currency_id: str,
    current_amount=0,
    target_date: Optional[date] = None,
    description: Optional[str] = None,
) -> GoalModel:
    target_amount = currencies.to_money(target_amount)
    current_amount = currencies.to_money(current_amount)
    if target_amount <= 0:
        raise ValidationError("Goal target must be greater than zero")
    if current_amount < 0:
        raise ValidationError("Goal current amount cannot be negative")
    await currencies.get_currency(db, currency_id)

    goal = GoalModel(
        user_id=user_id,
        name=name,
        description=description,
        type=goal_type,
        target_amount=target_amount,
        current_amount=current_amount,
        target_date=target_date,
        currency_id=currency_id,
    )
    db.add(goal)
    await db.commit()
    return goal


async def get_goal(db: AsyncSession, user_id: str, goal_id: str) -> GoalModel:
    result = await db.execute(
        select(GoalModel).where(GoalModel.id == goal_id, GoalModel.user_id == user_id, GoalModel.deleted_at.is_(None))
    )
    goal = result.scalar_one_or_none()
    if goal is None:
        raise NotFoundError(f"Goal {goal_id} not found")
    return goal


async def list_goals(db: AsyncSession, user_id: str, include_completed: bool = True) -> List[GoalModel]:
    query = select(GoalModel).where(GoalModel.user_id == user_id, GoalModel.deleted_at.is_(None))
    if not include_completed:
        query = query.where(GoalModel.is_completed.is_(False))
    result = await db.execute(query.order_by(GoalModel.created_at))
    return result.scalars().all()


async def update_goal_progress(db: AsyncSession, user_id: str, goal_id: str, current_amount) -> GoalModel:
    current_amount = currencies.to_money(current_amount)
    if current_amount < 0:
        raise ValidationError("Goal current amount cannot be negative")
    goal = await get_goal(db, user_id, goal_id)
    goal.current_amount = current_amount
    await db.commit()
    return goal


async def complete_goal(db: AsyncSession, user_id: str, goal_id: str) -> GoalModel:
    goal = await get_goal(db, user_id, goal_id)
    if not goal.is_completed:
        goal.is_completed = True
        goal.completed_at = datetime.utcnow()
        await db.commit()
        logger.info("Goal %s completed", goal_id)
    return goal


async def delete_goal(db: AsyncSession, user_id: str, goal_id: str) -> GoalModel:
    goal = await get_goal(db, user_id, goal_id)
    goal.deleted_at = datetime.utcnow()
    await db.commit()
    return goal
