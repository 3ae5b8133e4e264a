from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from agency_core.core.auth import resolve_identity
from agency_core.core.config import Settings
from agency_core.errors import AuthenticationRequired
from agency_core.main import app


def _token(settings: Settings, claims: dict) -> str:
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def test_plain_user_identity(settings: Settings) -> None:
    identity = resolve_identity(_token(settings, {"sub": "u1", "email": "u1@agency.test"}), settings)

    assert identity.user_id == "u1"
    assert identity.email == "u1@agency.test"
    assert identity.is_platform_operator is False


def test_operator_by_configured_email(settings: Settings) -> None:
    identity = resolve_identity(_token(settings, {"sub": "op", "email": " OPS@Agency.test "}), settings)

    assert identity.is_platform_operator is True


def test_operator_by_explicit_claim(settings: Settings) -> None:
    identity = resolve_identity(_token(settings, {"sub": "op", "platform_operator": True}), settings)

    assert identity.is_platform_operator is True


def test_truthy_non_boolean_claim_is_not_enough(settings: Settings) -> None:
    identity = resolve_identity(_token(settings, {"sub": "op", "platform_operator": "yes"}), settings)

    assert identity.is_platform_operator is False


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_missing_or_invalid_token_is_rejected(settings: Settings, token: str | None) -> None:
    with pytest.raises(AuthenticationRequired):
        resolve_identity(token, settings)


def test_token_without_subject_is_rejected(settings: Settings) -> None:
    with pytest.raises(AuthenticationRequired):
        resolve_identity(_token(settings, {"email": "u1@agency.test"}), settings)


def test_token_signed_with_other_secret_is_rejected(settings: Settings) -> None:
    forged = jwt.encode({"sub": "u1"}, "someone-elses-secret", algorithm="HS256")

    with pytest.raises(AuthenticationRequired):
        resolve_identity(forged, settings)


def test_me_endpoint_requires_bearer_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JWT_SECRET", "endpoint-secret")
    client = TestClient(app)

    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    token = jwt.encode({"sub": "u1", "roles": ["viewer"]}, "endpoint-secret", algorithm="HS256")
    response = client.get("/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"sub": "u1", "roles": ["viewer"]}
