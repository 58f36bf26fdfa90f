"""Tests for password hashing, session tokens, CSRF and the capability check."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from beammeup.auth.csrf import CSRF_COOKIE, CSRF_HEADER, generate_csrf_token, verify_csrf
from beammeup.auth.roles import EVERYONE, MANAGERS, OPERATORS, OWNERS, has_capability
from beammeup.auth.tokens import (
    create_session_token,
    decode_token,
    get_session_secret,
    get_subject_from_session,
    hash_password,
    verify_password,
)
from beammeup.users.models import Role


@pytest.fixture
def mock_settings(monkeypatch, tmp_path):
    """Provide test settings for session tokens (secret and algorithm)."""
    from beammeup.auth import tokens

    mock = MagicMock()
    mock.session_secret = "test-secret-at-least-32-characters-long"
    mock.session_secret_file = tmp_path / ".session_secret"
    mock.session_algorithm = "HS256"
    mock.session_expire_hours = 24
    monkeypatch.setattr(tokens, "get_settings", lambda: mock)
    return mock


def test_hash_password_returns_bcrypt_hash():
    hashed = hash_password("mySecret123")
    assert hashed != "mySecret123"
    assert hashed.startswith("$2")


def test_verify_password():
    hashed = hash_password("correct-password")
    assert verify_password("correct-password", hashed) is True
    assert verify_password("wrong-password", hashed) is False


def test_verify_password_malformed_hash():
    assert verify_password("anything", "not-a-hash") is False


def test_long_password_is_truncated_consistently():
    long_pw = "p" * 100
    hashed = hash_password(long_pw)
    assert verify_password(long_pw, hashed) is True


def test_session_token_roundtrip(mock_settings):
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    token = create_session_token("user-1", expires)
    assert get_subject_from_session(token) == "user-1"
    assert decode_token(token)["type"] == "session"


def test_session_tokens_are_unique(mock_settings):
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    assert create_session_token("u", expires) != create_session_token("u", expires)


def test_expired_session_token_is_rejected(mock_settings):
    token = create_session_token("user-1", datetime.now(timezone.utc) - timedelta(seconds=5))
    assert get_subject_from_session(token) is None


def test_garbage_token_is_rejected(mock_settings):
    assert get_subject_from_session("not.a.token") is None


def test_short_secret_is_generated_and_persisted(mock_settings):
    mock_settings.session_secret = "short"
    first = get_session_secret()
    assert len(first) >= 32
    assert mock_settings.session_secret_file.read_text(encoding="utf-8") == first
    assert get_session_secret() == first


def test_has_capability():
    assert has_capability(Role.OWNER, OWNERS)
    assert has_capability("ADMIN", MANAGERS)
    assert not has_capability(Role.OPERATOR, MANAGERS)
    assert has_capability(Role.OPERATOR, OPERATORS)
    assert not has_capability(Role.VIEWER, OPERATORS)
    assert has_capability(Role.VIEWER, EVERYONE)
    assert not has_capability("SUPERUSER", EVERYONE)
    assert not has_capability(None, EVERYONE)


def _request(method="POST", header=None, cookie=None):
    request = MagicMock()
    request.method = method
    request.headers = {CSRF_HEADER: header} if header is not None else {}
    request.cookies = {CSRF_COOKIE: cookie} if cookie is not None else {}
    return request


@pytest.mark.asyncio
async def test_verify_csrf_accepts_matching_token():
    token = generate_csrf_token()
    await verify_csrf(_request(header=token, cookie=token))


@pytest.mark.asyncio
async def test_verify_csrf_skips_safe_methods():
    await verify_csrf(_request(method="GET"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header,cookie",
    [(None, None), ("abc", None), (None, "abc"), ("abc", "abd")],
)
async def test_verify_csrf_rejects_missing_or_mismatched(header, cookie):
    with pytest.raises(HTTPException) as exc:
        await verify_csrf(_request(header=header, cookie=cookie))
    assert exc.value.status_code == 403
