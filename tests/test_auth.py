from datetime import datetime, timedelta

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from jose import JWTError, jwk, jwt
from sqlalchemy import func, select

import auth
from auth import (
    JWKSClient,
    SigningKeyError,
    decode_access_token,
    generate_api_key,
    require_permissions,
    validate_api_key,
)
from config import AUTH0_AUDIENCE, AUTH0_ISSUER, JWT_SECRET
from models import CategoryModel, UserModel
from schemas import AuthUser

KID = "signing-key"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_jwks_client(clock, cache_ttl=600):
    calls = []

    async def fetch():
        calls.append(clock.now)
        return {"keys": [{"kid": "k1", "kty": "RSA", "n": "abc", "e": "AQAB"}]}

    client = JWKSClient("https://tenant.example/.well-known/jwks.json", cache_ttl=cache_ttl,
                        requests_per_minute=5, fetch=fetch, clock=clock)
    return client, calls


@pytest.mark.asyncio
async def test_jwks_keys_are_cached():
    clock = FakeClock()
    client, calls = make_jwks_client(clock)

    first = await client.get_signing_key("k1")
    clock.now = 300
    second = await client.get_signing_key("k1")

    assert first == second
    assert first["kid"] == "k1"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_jwks_refresh_is_rate_limited():
    clock = FakeClock()
    client, calls = make_jwks_client(clock)
    await client.get_signing_key("k1")

    for _ in range(10):
        with pytest.raises(SigningKeyError):
            await client.get_signing_key("unknown")
    assert len(calls) == 5

    clock.now = 61
    with pytest.raises(SigningKeyError):
        await client.get_signing_key("unknown")
    assert len(calls) == 6


@pytest.mark.asyncio
async def test_stale_keys_served_when_rate_limited():
    clock = FakeClock()
    client, calls = make_jwks_client(clock, cache_ttl=10)
    await client.get_signing_key("k1")
    for _ in range(4):
        with pytest.raises(SigningKeyError):
            await client.get_signing_key("unknown")

    clock.now = 30
    key = await client.get_signing_key("k1")

    assert key["kid"] == "k1"
    assert len(calls) == 5


@pytest.mark.asyncio
async def test_access_token_without_key_id_is_rejected():
    clock = FakeClock()
    client, calls = make_jwks_client(clock)
    token = jwt.encode({"sub": "auth0|x"}, "not-the-provider-key", algorithm="HS256")

    with pytest.raises(JWTError):
        await decode_access_token(token, client)
    assert calls == []


@pytest.mark.asyncio
async def test_api_key_round_trip(db, user):
    api_key = generate_api_key(user.id, "ci")

    claims = jwt.get_unverified_claims(api_key)
    assert claims["type"] == "api_key"
    assert claims["name"] == "ci"
    assert (await validate_api_key(db, api_key)).id == user.id


@pytest.mark.asyncio
async def test_expired_api_key_is_rejected(db, user):
    api_key = generate_api_key(user.id, "old", expires_delta=timedelta(seconds=-10))

    assert await validate_api_key(db, api_key) is None


@pytest.mark.asyncio
async def test_non_api_key_token_is_rejected(db, user):
    token = jwt.encode({"sub": user.id, "type": "session"}, JWT_SECRET, algorithm="HS256")

    assert await validate_api_key(db, token) is None
    assert await validate_api_key(db, "garbage") is None


@pytest.mark.asyncio
async def test_require_permissions():
    checker = require_permissions("write:exchange_rates")
    allowed = AuthUser(user_id="u1", auth0_id="auth0|u1", permissions=["write:exchange_rates", "read:all"])
    denied = AuthUser(user_id="u2", auth0_id="auth0|u2", permissions=["read:all"])

    assert await checker(current_user=allowed) is allowed
    with pytest.raises(HTTPException) as exc:
        await checker(current_user=denied)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_undecodable_key_set_keeps_cached_keys():
    clock = FakeClock()
    responses = [{"keys": [{"kid": "k1", "kty": "RSA", "n": "abc", "e": "AQAB"}]}]

    async def fetch():
        if responses:
            return responses.pop()
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    client = JWKSClient("https://tenant.example/.well-known/jwks.json", cache_ttl=10, fetch=fetch, clock=clock)
    await client.get_signing_key("k1")

    clock.now = 30
    assert (await client.get_signing_key("k1"))["kid"] == "k1"
    with pytest.raises(SigningKeyError):
        await client.get_signing_key("k2")


# ----------------------------------------------------------------------------
# RS256 access tokens
# ----------------------------------------------------------------------------
@pytest.fixture(scope="module")
def signing_key():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_jwk = jwk.construct(pem, "RS256").public_key().to_dict()
    public_jwk.update(kid=KID, use="sig")
    return pem, public_jwk


@pytest.fixture
def provider(signing_key):
    _, public_jwk = signing_key

    async def fetch():
        return {"keys": [public_jwk]}

    return JWKSClient("https://tenant.example/.well-known/jwks.json", fetch=fetch)


def access_token(signing_key, **overrides):
    pem, _ = signing_key
    now = datetime.utcnow()
    claims = {
        "sub": "auth0|carol",
        "aud": AUTH0_AUDIENCE,
        "iss": AUTH0_ISSUER,
        "iat": now,
        "exp": now + timedelta(minutes=5),
        "email": "carol@example.com",
        "name": "Carol Jones",
        "permissions": ["write:exchange_rates"],
    }
    claims.update(overrides)
    return jwt.encode(claims, pem, algorithm="RS256", headers={"kid": KID})


@pytest.mark.asyncio
async def test_valid_access_token_is_accepted(signing_key, provider):
    payload = await decode_access_token(access_token(signing_key), provider)

    assert payload["sub"] == "auth0|carol"
    assert payload["permissions"] == ["write:exchange_rates"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "https://some-other-api.example"},
        {"iss": "https://evil.example/"},
        {"exp": datetime.utcnow() - timedelta(minutes=1)},
    ],
    ids=["wrong-audience", "wrong-issuer", "expired"],
)
async def test_access_token_claims_are_enforced(signing_key, provider, overrides):
    with pytest.raises(JWTError):
        await decode_access_token(access_token(signing_key, **overrides), provider)


@pytest.mark.asyncio
async def test_token_signed_by_another_key_is_rejected(signing_key, provider):
    stranger = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = stranger.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    forged = access_token((pem, None))

    with pytest.raises(JWTError):
        await decode_access_token(forged, provider)


@pytest.mark.asyncio
async def test_bearer_token_signs_in_and_syncs_user(anon_client, db, signing_key, provider, monkeypatch):
    monkeypatch.setattr(auth, "jwks_client", provider)
    headers = {"Authorization": f"Bearer {access_token(signing_key)}"}

    res = await anon_client.get("/api/v1/auth/me", headers=headers)

    assert res.status_code == 200
    assert res.json()["email"] == "carol@example.com"
    assert res.json()["first_name"] == "Carol"
    user = (await db.execute(select(UserModel).where(UserModel.auth0_id == "auth0|carol"))).scalar_one()
    count = select(func.count()).select_from(CategoryModel).where(CategoryModel.user_id == user.id)
    assert (await db.execute(count)).scalar_one() == 17

    res = await anon_client.get("/api/v1/auth/me", headers=headers)
    assert res.status_code == 200
    assert res.json()["id"] == user.id


@pytest.mark.asyncio
async def test_bearer_token_for_other_audience_is_401(anon_client, signing_key, provider, monkeypatch):
    monkeypatch.setattr(auth, "jwks_client", provider)
    token = access_token(signing_key, aud="https://some-other-api.example")

    res = await anon_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert res.status_code == 401
