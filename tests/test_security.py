from datetime import timedelta

import pytest

from app.api.auth_utils import constant_time_verify
from app.core.security import (
    create_access_token,
    create_reset_token,
    decode_token,
    get_password_hash,
    verify_password,
)


def test_password_hashing_and_verify():
    password = "S0meP@ss!WithLength"
    hashed = get_password_hash(password)
    assert hashed != password
    assert verify_password(password, hashed)
    assert verify_password("S0meP@ss!", hashed) is False


def test_short_password_rejected():
    with pytest.raises(ValueError):
        get_password_hash("short")


def test_access_and_reset_tokens():
    access = create_access_token("42", token_version=3)
    reset = create_reset_token("42", token_version=3)

    decoded_access = decode_token(access, expected_type="access")
    decoded_reset = decode_token(reset, expected_type="reset")

    assert decoded_access["sub"] == "42"
    assert decoded_access["type"] == "access"
    assert decoded_access["tv"] == 3
    assert "iat" in decoded_access
    assert decoded_reset["type"] == "reset"


def test_token_type_is_enforced():
    reset = create_reset_token("42")
    with pytest.raises(ValueError):
        decode_token(reset, expected_type="access")


def test_expired_token_rejected():
    token = create_access_token("42", expires_delta=timedelta(seconds=-1))
    with pytest.raises(ValueError):
        decode_token(token)


def test_tampered_token_rejected():
    header, _, signature = create_access_token("42").split(".")
    _, forged_claims, _ = create_access_token("1").split(".")
    with pytest.raises(ValueError):
        decode_token(".".join([header, forged_claims, signature]))


def test_constant_time_verify_without_user():
    assert constant_time_verify(None, "Password123!") is False
    assert constant_time_verify(get_password_hash("Password123!"), "Password123!") is True
