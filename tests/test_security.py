# mypy: ignore-errors
"""Tests for bearer token helpers."""

from datetime import UTC, datetime, timedelta

import pytest
from jose import jwt

from clientdesk.core.security import InvalidTokenError, create_access_token, decode_access_token
from clientdesk.core.settings import settings


def test_token_round_trip():
    token = create_access_token("profile-1", {"scope": "chat"})

    assert decode_access_token(token) == "profile-1"
    claims = jwt.get_unverified_claims(token)
    assert claims["scope"] == "chat"


def test_token_signed_with_another_key_is_rejected():
    token = jwt.encode({"sub": "profile-1"}, "not-the-key", algorithm=settings.jwt_algorithm)

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


def test_expired_token_is_rejected():
    token = jwt.encode(
        {"sub": "profile-1", "exp": datetime.now(UTC) - timedelta(minutes=1)},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


@pytest.mark.parametrize("token", ["garbage", ""])
def test_malformed_token_is_rejected(token):
    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


def test_token_without_subject_is_rejected():
    token = jwt.encode({"scope": "chat"}, settings.secret_key, algorithm=settings.jwt_algorithm)

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)
