import logging
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import CategoryCycleError, NotFoundError, ValidationError
from models import CategoryModel, CategoryType

logger = logging.getLogger(__name__)

TRANSFER_CATEGORY_NAME = "Transfer"

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    # Income
    {"name": "Salary", "type": CategoryType.INCOME, "color": "#4CAF50", "icon": "wallet"},
    {"name": "Freelance", "type": CategoryType.INCOME, "color": "#8BC34A", "icon": "briefcase"},
    {"name": "Investments", "type": CategoryType.INCOME, "color": "#CDDC39", "icon": "trending-up"},
    {"name": "Other Income", "type": CategoryType.INCOME, "color": "#FFC107", "icon": "plus-circle"},
    # Expense
    {"name": "Food & Dining", "type": CategoryType.EXPENSE, "color": "#FF5722", "icon": "utensils"},
    {"name": "Transportation", "type": CategoryType.EXPENSE, "color": "#795548", "icon": "car"},
    {"name": "Shopping", "type": CategoryType.EXPENSE, "color": "#E91E63", "icon": "shopping-cart"},
    {"name": "Entertainment", "type": CategoryType.EXPENSE, "color": "#9C27B0", "icon": "music"},
    {"name": "Bills & Utilities", "type": CategoryType.EXPENSE, "color": "#673AB7", "icon": "receipt"},
    {"name": "Healthcare", "type": CategoryType.EXPENSE, "color": "#3F51B5", "icon": "heart"},
    {"name": "Education", "type": CategoryType.EXPENSE, "color": "#2196F3", "icon": "book"},
    {"name": "Home", "type": CategoryType.EXPENSE, "color": "#00BCD4", "icon": "home"},
    {"name": "Personal", "type": CategoryType.EXPENSE, "color": "#009688", "icon": "user"},
    {"name": "Travel", "type": CategoryType.EXPENSE, "color": "#FF9800", "icon": "plane"},
    {"name": "Subscriptions", "type": CategoryType.EXPENSE, "color": "#03A9F4", "icon": "repeat"},
    {"name": "Other Expenses", "type": CategoryType.EXPENSE, "color": "#607D8B", "icon": "ellipsis"},
    # Transfer
    {"name": TRANSFER_CATEGORY_NAME, "type": CategoryType.TRANSFER, "color": "#9E9E9E", "icon": "exchange"},
]


def _active(user_id: str):
    return select(CategoryModel).where(CategoryModel.user_id == user_id, CategoryModel.deleted_at.is_(None))


async def seed_default_categories(db: AsyncSession, user_id: str, commit: bool = True) -> int:
    """Add the default catalog for a user, skipping any name the user already has.

    Names are matched at every level of the tree, deleted categories included.
    Returns how many categories were inserted.
    """
    result = await db.execute(select(CategoryModel.name).where(CategoryModel.user_id == user_id))
    existing: Set[str] = set(result.scalars().all())

    created = 0
    for item in DEFAULT_CATEGORIES:
        if item["name"] in existing:
            continue
        db.add(
            CategoryModel(
                user_id=user_id,
                description=f"Default {item['name']} category",
                **item,
            )
        )
        existing.add(item["name"])
        created += 1

    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Created %d default categories for user %s", created, user_id)
    return created


async def get_category(db: AsyncSession, user_id: str, category_id: str) -> CategoryModel:
    result = await db.execute(_active(user_id).where(CategoryModel.id == category_id))
    category = result.scalar_one_or_none()
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


async def get_category_by_name(
    db: AsyncSession, user_id: str, name: str, parent_id: Optional[str] = None, include_deleted: bool = False
) -> Optional[CategoryModel]:
    if include_deleted:
        stmt = select(CategoryModel).where(CategoryModel.user_id == user_id)
    else:
        stmt = _active(user_id)
    stmt = stmt.where(CategoryModel.name == name)
    if parent_id is None:
        stmt = stmt.where(CategoryModel.parent_id.is_(None))
    else:
        stmt = stmt.where(CategoryModel.parent_id == parent_id)
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_categories(
    db: AsyncSession, user_id: str, category_type: Optional[CategoryType] = None
) -> List[CategoryModel]:
    stmt = _active(user_id)
    if category_type:
        stmt = stmt.where(CategoryModel.type == category_type)
    result = await db.execute(stmt.order_by(CategoryModel.type, CategoryModel.name))
    return result.scalars().all()


async def _ensure_no_cycle(db: AsyncSession, user_id: str, category_id: str, parent_id: str):
    # walk up from the proposed parent; meeting the category itself means a cycle
    seen = set()
    current = parent_id
    while current is not None:
        if current == category_id:
            raise CategoryCycleError("A category cannot be its own ancestor")
        if current in seen:
            raise CategoryCycleError(f"Category tree already contains a cycle at {current}")
        seen.add(current)
        result = await db.execute(
            select(CategoryModel.parent_id).where(CategoryModel.id == current, CategoryModel.user_id == user_id)
        )
        current = result.scalar_one_or_none()


async def _resolve_parent(db: AsyncSession, user_id: str, parent_id: str, category_type: CategoryType):
    # lookup is scoped to the owner, so a foreign parent is reported as missing
    parent = await get_category(db, user_id, parent_id)
    if parent.type != category_type:
        raise ValidationError("Parent category must have the same type")
    return parent


async def create_category(
    db: AsyncSession,
    user_id: str,
    name: str,
    category_type: CategoryType,
    parent_id: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
    icon: Optional[str] = None,
) -> CategoryModel:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if parent_id is not None:
        await _resolve_parent(db, user_id, parent_id, category_type)
    # soft-deleted rows still hold their (user, name, parent) slot
    existing = await get_category_by_name(db, user_id, name, parent_id, include_deleted=True)
    if existing is not None:
        if existing.deleted_at is None:
            raise ValidationError(f"Category {name!r} already exists")
        if existing.type != category_type:
            raise ValidationError(f"Deleted category {name!r} has type {existing.type.value}")
        existing.deleted_at = None
        existing.is_active = True
        existing.description = description
        existing.color = color
        existing.icon = icon
        await db.commit()
        logger.info("Restored category %s", existing.id)
        return existing

    category = CategoryModel(
        user_id=user_id,
        name=name,
        type=category_type,
        parent_id=parent_id,
        description=description,
        color=color,
        icon=icon,
    )
    db.add(category)
    await db.commit()
    return category


async def set_category_parent(
    db: AsyncSession, user_id: str, category_id: str, parent_id: Optional[str]
) -> CategoryModel:
    category = await get_category(db, user_id, category_id)
    if parent_id is not None:
        await _resolve_parent(db, user_id, parent_id, category.type)
        await _ensure_no_cycle(db, user_id, category.id, parent_id)
    clash = await get_category_by_name(db, user_id, category.name, parent_id, include_deleted=True)
    if clash not in (None, category):
        state = "a deleted" if clash.deleted_at is not None else "a"
        raise ValidationError(f"There is already {state} category {category.name!r} under that parent")
    category.parent_id = parent_id
    await db.commit()
    return category


async def delete_category(db: AsyncSession, user_id: str, category_id: str) -> CategoryModel:
    category = await get_category(db, user_id, category_id)
    category.deleted_at = datetime.utcnow()
    category.is_active = False
    await db.commit()
    logger.info("Soft-deleted category %s", category_id)
    return category
