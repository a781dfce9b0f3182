import logging
import time
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import APP_ENV, APP_VERSION
from models import CurrencyModel, UserModel

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def get_health() -> dict:
    return {
        "status": "ok",
        "timestamp": _timestamp(),
        "uptime": time.monotonic() - STARTED_AT,
        "environment": APP_ENV,
        "version": APP_VERSION,
        "message": "WiseCalK Backend is healthy!",
    }


async def get_db_health(db: AsyncSession) -> dict:
    """Report database connectivity; failures are returned, never raised."""
    try:
        users = (await db.execute(select(func.count()).select_from(UserModel))).scalar_one()
        currencies = (await db.execute(select(func.count()).select_from(CurrencyModel))).scalar_one()
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return {
            "status": "error",
            "timestamp": _timestamp(),
            "database": {"connected": False, "error": str(e)},
            "message": "Database connection failed!",
        }
    return {
        "status": "ok",
        "timestamp": _timestamp(),
        "database": {"connected": True, "users": users, "currencies": currencies},
        "message": "Database connection is healthy!",
    }
