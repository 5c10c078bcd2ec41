"""Unit tests for auth/passwords.py and auth/tokens.py.

Covers:
- Argon2id digests: format, salting, verification, malformed digests
- generate_id() / generate_verification_code() length and alphabet
- Verification JWT: claims, bad signature, expiry, missing claims
"""

import string
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidTokenError
from auth.passwords import DUMMY_HASH, hash_password, needs_rehash, verify_password
from auth.tokens import (
    SESSION_ID_LENGTH,
    create_verification_token,
    decode_verification_token,
    generate_id,
    generate_verification_code,
)

KEY = "unit-test-secret-key-0123456789abcdef"
_ALPHABET = set(string.ascii_lowercase + string.digits)

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def test_hash_is_argon2id_and_not_plaintext():
    digest = hash_password("s3cret-password")
    assert digest.startswith("$argon2id$")
    assert "s3cret-password" not in digest


def test_same_password_hashes_differently():
    """Each digest carries its own random salt."""
    assert hash_password("same-password") != hash_password("same-password")


def test_verify_password_accepts_match_and_rejects_mismatch():
    digest = hash_password("s3cret-password")
    assert verify_password(digest, "s3cret-password") is True
    assert verify_password(digest, "wrong-password") is False


def test_verify_password_malformed_digest_returns_false():
    assert verify_password("not-a-hash", "anything") is False
    assert verify_password("", "anything") is False


def test_dummy_hash_never_matches_user_input():
    assert verify_password(DUMMY_HASH, "correct-horse-battery") is False


def test_needs_rehash():
    assert needs_rehash(hash_password("fresh")) is False
    assert needs_rehash("garbage") is True


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def test_generate_id_length_and_alphabet():
    value = generate_id(SESSION_ID_LENGTH)
    assert len(value) == SESSION_ID_LENGTH
    assert set(value) <= _ALPHABET


def test_generate_id_is_unpredictable():
    assert len({generate_id(15) for _ in range(50)}) == 50


def test_verification_code_is_six_lowercase_alphanumerics():
    code = generate_verification_code()
    assert len(code) == 6
    assert set(code) <= _ALPHABET


# ---------------------------------------------------------------------------
# Verification tokens
# ---------------------------------------------------------------------------


def test_token_carries_email_user_and_code():
    token = create_verification_token("a@example.com", "user123", "abc123", KEY)
    claims = decode_verification_token(token, KEY)
    assert claims.email == "a@example.com"
    assert claims.user_id == "user123"
    assert claims.code == "abc123"


def test_token_exp_is_five_minutes_after_issue():
    issued = datetime.now(timezone.utc).replace(microsecond=0)
    token = create_verification_token("a@example.com", "user123", "abc123", KEY, now=issued)
    payload = jwt.get_unverified_claims(token)
    assert payload["exp"] == int((issued + timedelta(seconds=300)).timestamp())


def test_token_signed_with_other_key_is_rejected():
    token = create_verification_token("a@example.com", "user123", "abc123", "another-key-" + "x" * 32)
    with pytest.raises(InvalidTokenError):
        decode_verification_token(token, KEY)


def test_tampered_token_is_rejected():
    token = create_verification_token("a@example.com", "user123", "abc123", KEY)
    header, payload, signature = token.split(".")
    forged = jwt.encode({"email": "a@example.com", "userId": "victim", "code": "abc123"}, "guess")
    forged_payload = forged.split(".")[1]
    with pytest.raises(InvalidTokenError):
        decode_verification_token(f"{header}.{forged_payload}.{signature}", KEY)


def test_expired_token_is_rejected():
    issued = datetime.now(timezone.utc) - timedelta(seconds=400)
    token = create_verification_token("a@example.com", "user123", "abc123", KEY, now=issued)
    with pytest.raises(InvalidTokenError):
        decode_verification_token(token, KEY)


def test_malformed_token_is_rejected():
    with pytest.raises(InvalidTokenError):
        decode_verification_token("not.a.jwt", KEY)


def test_token_missing_claims_is_rejected():
    exp = datetime.now(timezone.utc) + timedelta(minutes=5)
    token = jwt.encode({"email": "a@example.com", "exp": exp}, KEY, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        decode_verification_token(token, KEY)
