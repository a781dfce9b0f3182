"""
Authentication boundary.

Access tokens are RS256 JWTs issued by Auth0 and verified against the
tenant's published key set. Verified claims are narrowed into
``TokenClaims``, synced to a local user and exposed to routes as an
``AuthUser``. Machine clients may instead send an ``X-API-Key`` header
holding an HS256 token minted by ``generate_api_key``.
"""
import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError as ClaimsError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import (
    ACCESS_TOKEN_ALGORITHM,
    API_KEY_ALGORITHM,
    API_KEY_EXPIRE_DAYS,
    AUTH0_AUDIENCE,
    AUTH0_ISSUER,
    JWKS_CACHE_TTL_SECONDS,
    JWKS_REQUESTS_PER_MINUTE,
    JWKS_URI,
    JWT_SECRET,
)
from database import get_db
from models import UserModel
from schemas import AuthUser, TokenClaims
from user_sync import sync_user

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)
api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


class SigningKeyError(JWTError):
    pass


# ----------------------------------------------------------------------------
# JWKS
# ----------------------------------------------------------------------------
class JWKSClient:
    """Caches the provider's signing keys.

    The key set is downloaded on demand, reused for ``cache_ttl`` seconds and
    refreshed early when a token names an unknown ``kid``. Downloads are
    capped at ``requests_per_minute``; past the cap the cached keys are
    served, even when stale.
    """

    def __init__(
        self,
        jwks_uri: str,
        cache_ttl: float = JWKS_CACHE_TTL_SECONDS,
        requests_per_minute: int = JWKS_REQUESTS_PER_MINUTE,
        fetch: Optional[Callable[[], Awaitable[dict]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_uri = jwks_uri
        self.cache_ttl = cache_ttl
        self.requests_per_minute = requests_per_minute
        self._fetch = fetch or self._download
        self._clock = clock
        self._keys: Dict[str, dict] = {}
        self._fetched_at: Optional[float] = None
        self._requests = deque()
        self._lock = asyncio.Lock()

    async def _download(self) -> dict:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(self.jwks_uri)
            response.raise_for_status()
            return response.json()

    def _may_request(self, now: float) -> bool:
        while self._requests and now - self._requests[0] >= 60:
            self._requests.popleft()
        return len(self._requests) < self.requests_per_minute

    def _is_stale(self, now: float) -> bool:
        return self._fetched_at is None or now - self._fetched_at >= self.cache_ttl

    async def refresh(self):
        now = self._clock()
        if not self._may_request(now):
            logger.warning("JWKS refresh skipped: %d requests in the last minute", len(self._requests))
            return
        self._requests.append(now)
        try:
            jwks = await self._fetch()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("JWKS download from %s failed: %s", self.jwks_uri, e)
            return
        self._keys = {key["kid"]: key for key in jwks.get("keys", []) if key.get("kid")}
        self._fetched_at = now
        logger.info("Fetched %d signing keys from %s", len(self._keys), self.jwks_uri)

    async def get_signing_key(self, kid: str) -> dict:
        async with self._lock:
            if kid not in self._keys or self._is_stale(self._clock()):
                await self.refresh()
            key = self._keys.get(kid)
        if key is None:
            raise SigningKeyError(f"Unable to find a signing key that matches {kid!r}")
        return key


jwks_client = JWKSClient(JWKS_URI)


async def decode_access_token(token: str, client: Optional[JWKSClient] = None) -> dict:
    header = jwt.get_unverified_header(token)
    kid = header.get("kid")
    if not kid:
        raise JWTError("Token header has no key id")
    key = await (client or jwks_client).get_signing_key(kid)
    return jwt.decode(
        token,
        key,
        algorithms=[ACCESS_TOKEN_ALGORITHM],
        audience=AUTH0_AUDIENCE,
        issuer=AUTH0_ISSUER,
    )


# ----------------------------------------------------------------------------
# API keys
# ----------------------------------------------------------------------------
def generate_api_key(user_id: str, name: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": user_id,
        "type": "api_key",
        "name": name,
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=API_KEY_EXPIRE_DAYS)),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=API_KEY_ALGORITHM)


async def get_user(db: AsyncSession, user_id: str) -> Optional[UserModel]:
    result = await db.execute(
        select(UserModel).where(UserModel.id == user_id, UserModel.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def validate_api_key(db: AsyncSession, api_key: str) -> Optional[UserModel]:
    try:
        payload = jwt.decode(api_key, JWT_SECRET, algorithms=[API_KEY_ALGORITHM])
    except JWTError as e:
        logger.warning("Invalid API key: %s", e)
        return None
    if payload.get("type") != "api_key" or not payload.get("sub"):
        return None
    return await get_user(db, payload["sub"])


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------
def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate_claims(db: AsyncSession, payload: dict) -> AuthUser:
    """Narrow a verified token payload, sync its user and build the session object."""
    try:
        claims = TokenClaims.model_validate(payload)
    except ClaimsError:
        raise _unauthorized("Invalid token structure")

    user = await sync_user(db, claims)
    return AuthUser(
        user_id=user.id,
        auth0_id=claims.sub,
        email=claims.email,
        roles=claims.roles,
        permissions=claims.permissions,
        scope=claims.scope,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    api_key: Optional[str] = Depends(api_key_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthUser:
    if credentials is not None:
        try:
            payload = await decode_access_token(credentials.credentials)
        except JWTError as e:
            logger.warning("Rejected access token: %s", e)
            raise _unauthorized()
        return await authenticate_claims(db, payload)

    if api_key:
        user = await validate_api_key(db, api_key)
        if user is not None:
            return AuthUser(user_id=user.id, auth0_id=user.auth0_id, email=user.email, scope="api_key")

    raise _unauthorized()


def require_permissions(*required: str):
    async def checker(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
        missing = set(required) - set(current_user.permissions)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}",
            )
        return current_user

    return checker
