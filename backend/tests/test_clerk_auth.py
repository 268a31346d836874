"""Clerk JWT verification and actor resolution."""
import json

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

from backend.core import clerk_auth
from backend.core.clerk_auth import create_test_jwt, set_jwks_provider_for_tests, verify_jwt_token
from backend.core.config import settings
from backend.features.entitlements.roles import Role
from backend.main import app


client = TestClient(app)


@pytest.fixture
def hs256(monkeypatch):
    monkeypatch.setattr(settings, "CLERK_SECRET_KEY", "test-secret-key")


@pytest.fixture
def rs256(monkeypatch):
    monkeypatch.setattr(settings, "CLERK_SECRET_KEY", None)
    monkeypatch.setattr(settings, "CLERK_ISSUER", "https://clerk.test")
    monkeypatch.setattr(settings, "CLERK_AUDIENCE", None)
    monkeypatch.setattr(settings, "CLERK_JWKS_URL", None)

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(RSAAlgorithm.to_jwk(key.public_key()))
    jwk["kid"] = "kid-1"
    set_jwks_provider_for_tests(lambda issuer, url: {"keys": [jwk]})
    yield key
    set_jwks_provider_for_tests(None)


def test_hs256_token_round_trip(hs256):
    claims = verify_jwt_token(create_test_jwt(sub="user_42"))
    assert claims["sub"] == "user_42"


def test_expired_token_rejected(hs256):
    with pytest.raises(jwt.ExpiredSignatureError):
        verify_jwt_token(create_test_jwt(exp_minutes=-5))


def test_wrong_secret_rejected(hs256):
    with pytest.raises(jwt.PyJWTError):
        verify_jwt_token(create_test_jwt(secret="not-the-secret"))


def test_rs256_via_jwks(rs256):
    token = jwt.encode(
        {"sub": "user_rs", "iss": "https://clerk.test", "exp": 4102444800},
        rs256,
        algorithm="RS256",
        headers={"kid": "kid-1"},
    )
    assert verify_jwt_token(token)["sub"] == "user_rs"


def test_rs256_unknown_kid(rs256):
    token = jwt.encode(
        {"sub": "user_rs", "iss": "https://clerk.test", "exp": 4102444800},
        rs256,
        algorithm="RS256",
        headers={"kid": "rotated"},
    )
    with pytest.raises(jwt.PyJWTError):
        verify_jwt_token(token)


def test_bearer_token_resolves_actor_role_from_store(hs256, make_user):
    make_user("user_42", Role.PREMIUM)
    token = create_test_jwt(sub="user_42")

    resp = client.get("/api/ai/usage", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "premium"


def test_invalid_bearer_token_is_401(hs256):
    resp = client.get("/api/ai/usage", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_dev_header_ignored_in_production(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    resp = client.get("/api/ai/usage", headers={"X-User-Id": "user_1"})
    assert resp.status_code == 401


def test_jwks_cached_per_issuer(monkeypatch):
    calls = []

    def provider(issuer, url):
        calls.append(url)
        return {"keys": []}

    set_jwks_provider_for_tests(provider)
    try:
        clerk_auth.get_jwks("https://clerk.test")
        clerk_auth.get_jwks("https://clerk.test")
    finally:
        set_jwks_provider_for_tests(None)
    assert calls == ["https://clerk.test/.well-known/jwks.json"]
