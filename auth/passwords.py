"""
auth/passwords.py -- Argon2id password hashing.

Uses argon2-cffi's PasswordHasher. The digest is a PHC string
($argon2id$v=19$m=...,t=...,p=...$salt$hash) so the salt and cost parameters
travel with the hash; nothing else needs to be stored.

verify_password() never raises. Mismatch, a malformed digest, or any other
argon2 failure all come back as False so callers can treat the result as a
plain boolean.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import Argon2Error, InvalidHashError

_hasher = PasswordHasher()


def hash_password(plain: str) -> str:
    """Return an Argon2id digest of the plaintext password with a fresh random salt."""
    return _hasher.hash(plain)


def verify_password(hashed: str, plain: str) -> bool:
    """Return True if plain matches the digest. Argon2 compares in constant time."""
    try:
        return _hasher.verify(hashed, plain)
    except (Argon2Error, InvalidHashError, ValueError, TypeError):
        return False


def needs_rehash(hashed: str) -> bool:
    """Return True when the digest was produced with outdated cost parameters."""
    try:
        return _hasher.check_needs_rehash(hashed)
    except (InvalidHashError, ValueError):
        return True


# Timing equalization dummy hash [C1].
# Computed once at module load. Sign-in verifies against it when the email is
# unknown so a missing account costs the same Argon2 work as a wrong password.
DUMMY_HASH: str = hash_password("sessiongate_timing_dummy")
