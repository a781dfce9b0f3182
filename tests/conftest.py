import os

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import currencies
from auth import get_current_user
from database import get_db, init_models
from main import app
from schemas import AuthUser, TokenClaims
from user_sync import sync_user


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def usd(db):
    return await currencies.create_currency(db, "USD", "US Dollar", "$")


@pytest_asyncio.fixture
async def eur(db):
    return await currencies.create_currency(db, "EUR", "Euro", "€")


@pytest_asyncio.fixture
async def user(db):
    return await sync_user(db, TokenClaims(sub="auth0|alice", email="alice@example.com", name="Alice Smith"))


@pytest_asyncio.fixture
async def other_user(db):
    return await sync_user(db, TokenClaims(sub="auth0|bob", email="bob@example.com", name="Bob"))


def make_client(session_factory, current_user=None):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    if current_user is not None:
        app.dependency_overrides[get_current_user] = lambda: current_user
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(session_factory, user):
    current_user = AuthUser(
        user_id=user.id,
        auth0_id=user.auth0_id,
        email=user.email,
        permissions=["write:exchange_rates"],
    )
    async with make_client(session_factory, current_user) as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anon_client(session_factory):
    async with make_client(session_factory) as c:
        yield c
    app.dependency_overrides.clear()
