"""
Sync-on-login: map an identity-provider subject to a local user row.

The first login creates the user and seeds the default categories in one
commit. Later logins only refresh the mutable profile fields. Persistence
errors are logged and re-raised; a failed sync fails the request.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from categories import seed_default_categories
from config import PLACEHOLDER_EMAIL_DOMAIN
from errors import InactiveUserError
from models import UserModel
from schemas import TokenClaims

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"
DEFAULT_LOCALE = "en-US"


def split_name(claims: TokenClaims) -> Tuple[Optional[str], Optional[str]]:
    parts = (claims.name or "").split()
    first = claims.given_name or (parts[0] if parts else None)
    last = claims.family_name or (" ".join(parts[1:]) or None)
    return first, last


async def get_user_by_auth0_id(db: AsyncSession, auth0_id: str) -> Optional[UserModel]:
    result = await db.execute(select(UserModel).where(UserModel.auth0_id == auth0_id))
    return result.scalar_one_or_none()


async def sync_user(db: AsyncSession, claims: TokenClaims) -> UserModel:
    try:
        user = await get_user_by_auth0_id(db, claims.sub)
        first_name, last_name = split_name(claims)

        if user is None:
            user = UserModel(
                auth0_id=claims.sub,
                email=claims.email or f"{claims.sub}@{PLACEHOLDER_EMAIL_DOMAIN}",
                first_name=first_name,
                last_name=last_name,
                timezone=claims.zoneinfo or DEFAULT_TIMEZONE,
                locale=claims.locale or DEFAULT_LOCALE,
            )
            db.add(user)
            await db.flush()
            await seed_default_categories(db, user.id, commit=False)
            await db.commit()
            logger.info("Created new user: %s", user.email)
            return user

        if user.deleted_at is not None:
            raise InactiveUserError("User account has been deleted")

        user.email = claims.email or user.email
        user.first_name = first_name or user.first_name
        user.last_name = last_name or user.last_name
        user.timezone = claims.zoneinfo or user.timezone
        user.locale = claims.locale or user.locale
        await db.commit()
        return user
    except InactiveUserError:
        raise
    except Exception:
        logger.exception("Failed to sync user %s", claims.sub)
        await db.rollback()
        raise
