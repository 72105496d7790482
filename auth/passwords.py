"""
auth/passwords.py -- Password hashing, verification, and server-side policy.

Hashing: Argon2id via argon2-cffi. Argon2id is memory-hard, so GPU/ASIC
    brute force of a leaked hash costs memory as well as time.

Legacy hashes: accounts created before the Argon2 switch carry bcrypt hashes
    ($2a$/$2b$/$2y$). verify_password() still accepts them so those users can
    sign in; needs_rehash() flags them and the password login re-hashes
    the plaintext with Argon2id right after a successful verification.

Timing equalization [C1]: verify_dummy() runs a full Argon2 verification
    against a throwaway hash so "unknown email" and "wrong password" cost the
    same wall-clock time.

All functions are pure predicates/transforms -- no store access, no logging
of plaintext.
"""

from __future__ import annotations

import re

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

_hasher = PasswordHasher()


def hash_password(plain: str) -> str:
    """Return an Argon2id hash of the given plaintext password."""
    return _hasher.hash(plain)


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if plain matches hashed. Never raises."""
    if not hashed:
        return False
    if hashed.startswith(_BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return _hasher.verify(hashed, plain)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(hashed: str) -> bool:
    """True for bcrypt hashes and Argon2 hashes made with outdated parameters."""
    if hashed.startswith(_BCRYPT_PREFIXES):
        return True
    try:
        return _hasher.check_needs_rehash(hashed)
    except InvalidHashError:
        return True


# Computed once at import so the first unknown-email login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("permitauth_timing_dummy")


def verify_dummy(plain: str) -> None:
    """Burn one Argon2 verification; always call it when the account does not exist [C1]."""
    verify_password(plain, _DUMMY_HASH)


_POLICY: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one digit"),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain at least one special character"),
)


def password_policy_error(password: str) -> str | None:
    """Return the first violated rule as a message, or None if the password is acceptable."""
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    for pattern, message in _POLICY:
        if not pattern.search(password):
            return message
    return None
