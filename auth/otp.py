"""
auth/otp.py -- Short numeric one-time codes bound to a pre-token and a purpose.

A challenge is a 6-digit code (delivered out of band, by email) plus an
opaque pre-token that travels back to the client as a correlation handle.
Both must be presented together, so guessing the code alone is not enough.

Challenges are scoped by a purpose key, "<purpose>:<user_id>", e.g.
"login_otp:42" or "password_reset:42". Issuing a new challenge for the same
purpose key replaces the previous one.

Single use: a successful validation deletes the record. A failed validation
leaves it in place. When max_attempts > 0 a failure counter is kept and the
challenge is destroyed once it is reached.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from auth import keys
from auth.models import OtpChallenge
from core.errors import token_hint
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.otp")

LOGIN_OTP = "login_otp"
PASSWORD_RESET = "password_reset"


def build_purpose_key(purpose: str, user_id: str) -> str:
    return f"{purpose}:{user_id}"


def generate_code() -> str:
    """Uniform 6-digit code in 100000..999999 drawn from the OS CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


def generate_pre_token() -> str:
    """128 random bits, URL-safe base64 without padding."""
    return secrets.token_urlsafe(16)


class OtpEngine:
    def __init__(
        self,
        store: EphemeralStore,
        ttl_seconds: int = 5 * 60,
        max_attempts: int = 0,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._max_attempts = max_attempts
        self._log = log or logger

    def issue(self, purpose_key: str) -> OtpChallenge:
        challenge = OtpChallenge(code=generate_code(), pre_token=generate_pre_token())
        self._store.set_json(
            keys.otp(purpose_key),
            {"otp": challenge.code, "pre_token": challenge.pre_token},
            ttl=self._ttl,
        )
        self._store.delete(keys.otp_attempts(purpose_key))
        self._log.info("Issued OTP for %s (pre-token %s)", purpose_key, token_hint(challenge.pre_token))
        return challenge

    def validate(self, code: str, pre_token: str, purpose_key: str) -> bool:
        """True only if both the code and the pre-token match the stored challenge.

        Absent or expired challenges return False.
        """
        key = keys.otp(purpose_key)
        data = self._store.get_json(key)
        if not isinstance(data, dict):
            self._log.info("OTP validation for %s: no active challenge", purpose_key)
            return False

        code_ok = hmac.compare_digest(str(data.get("otp", "")).encode(), (code or "").encode())
        token_ok = hmac.compare_digest(str(data.get("pre_token", "")).encode(), (pre_token or "").encode())
        if code_ok and token_ok:
            self._store.delete(key, keys.otp_attempts(purpose_key))
            self._log.info("OTP validated for %s", purpose_key)
            return True

        self._log.warning("OTP mismatch for %s (pre-token %s)", purpose_key, token_hint(pre_token))
        if self._max_attempts > 0:
            failures = self._store.increment(keys.otp_attempts(purpose_key), ttl=self._ttl)
            if failures >= self._max_attempts:
                self._store.delete(key, keys.otp_attempts(purpose_key))
                self._log.warning("OTP for %s destroyed after %d failed attempts", purpose_key, failures)
        return False

    def invalidate(self, purpose_key: str) -> None:
        self._store.delete(keys.otp(purpose_key), keys.otp_attempts(purpose_key))
