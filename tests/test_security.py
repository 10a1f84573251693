from datetime import timedelta

import pytest

from app.api import auth_utils
from app.core import security
from app.core.security import (
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    password_strength_errors,
    verify_password,
)
from app.core.settings import settings


def test_password_hashing_and_verify():
    password = "S0meP@ss!WithLength"
    hashed = get_password_hash(password)
    assert hashed != password
    assert verify_password(password, hashed)
    assert verify_password("S0meP@ss!", hashed) is False


def test_password_hash_rejects_short_password():
    with pytest.raises(ValueError):
        get_password_hash("Ab1!")


def test_password_strength_lists_every_broken_rule():
    errors = password_strength_errors("abc")
    assert any("at least" in error for error in errors)
    assert any("uppercase" in error for error in errors)
    assert any("digit" in error for error in errors)
    assert any("special" in error for error in errors)
    assert password_strength_errors("Str0ng!Pass") == []


def test_access_and_refresh_tokens(monkeypatch, patch_jwt_keys):
    monkeypatch.setattr(settings, "access_token_expire_minutes", 1)
    monkeypatch.setattr(settings, "refresh_token_expire_minutes", 2)

    access = create_access_token("user-xyz", token_version=0, extra_claims={"role": "BORROWER"})
    refresh = create_refresh_token("user-xyz", expires_delta=timedelta(minutes=2), token_version=3)

    decoded_access = decode_token(access, expected_type="access")
    decoded_refresh = decode_token(refresh, expected_type="refresh")

    assert decoded_access["sub"] == "user-xyz"
    assert decoded_access["type"] == "access"
    assert decoded_access["role"] == "BORROWER"
    assert "iat" in decoded_access
    assert decoded_refresh["sub"] == "user-xyz"
    assert decoded_refresh["type"] == "refresh"
    assert decoded_refresh["tv"] == 3
    assert "jti" in decoded_refresh


def test_decode_rejects_wrong_token_type(patch_jwt_keys):
    refresh = create_refresh_token("user-xyz", token_version=0)
    with pytest.raises(ValueError, match="Unexpected token type"):
        decode_token(refresh, expected_type="access")


def test_decode_rejects_expired_token(patch_jwt_keys):
    expired = create_access_token("user-xyz", expires_delta=timedelta(seconds=-5))
    with pytest.raises(ValueError, match="Invalid token"):
        decode_token(expired)


def test_password_reset_token_carries_version(patch_jwt_keys):
    token = create_password_reset_token("user-xyz", token_version=4)
    payload = decode_token(token, expected_type=security.PASSWORD_RESET_TOKEN_TYPE)
    assert payload["tv"] == 4


def test_hs256_uses_secret_key(monkeypatch):
    monkeypatch.setattr(settings, "jwt_algorithm", "HS256")
    monkeypatch.setattr(settings, "secret_key", "unit-test-secret")
    security._load_private_key.cache_clear()
    security._load_public_key.cache_clear()
    try:
        token = create_access_token("abc")
        assert decode_token(token)["sub"] == "abc"
    finally:
        security._load_private_key.cache_clear()
        security._load_public_key.cache_clear()


def test_constant_time_verify_without_user_hash():
    assert auth_utils._dummy_hash().startswith("$2b$")
    assert auth_utils.constant_time_verify(None, "Str0ng!Pass") is False


def test_constant_time_verify_with_user_hash():
    hashed = get_password_hash("Str0ng!Pass")
    assert auth_utils.constant_time_verify(hashed, "Str0ng!Pass") is True
    assert auth_utils.constant_time_verify(hashed, "Wr0ng!Pass") is False
