from datetime import timedelta

import pytest

from marketplace.exceptions import AuthenticationError
from marketplace.models import UserRole
from marketplace.security import create_access_token, decode_access_token


def test_token_round_trip():
    token = create_access_token({"sub": "user-1", "tenant_id": "tenant-1", "role": "provider"})

    principal = decode_access_token(token)

    assert principal.user_id == "user-1"
    assert principal.tenant_id == "tenant-1"
    assert principal.role == UserRole.PROVIDER


def test_expired_token():
    token = create_access_token(
        {"sub": "user-1", "tenant_id": "tenant-1", "role": "customer"},
        expires_delta=timedelta(minutes=-1)
    )

    with pytest.raises(AuthenticationError):
        decode_access_token(token)


@pytest.mark.parametrize("claims", [
    {"tenant_id": "tenant-1", "role": "customer"},
    {"sub": "user-1", "role": "customer"},
    {"sub": "user-1", "tenant_id": "tenant-1", "role": "owner"},
])
def test_incomplete_claims_are_rejected(claims):
    with pytest.raises(AuthenticationError):
        decode_access_token(create_access_token(claims))


def test_garbage_token():
    with pytest.raises(AuthenticationError):
        decode_access_token("not-a-jwt")


def test_invalid_bearer_over_http(client):
    response = client.get("/api/wallets/me", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
