"""
auth/totp.py -- Authenticator-app (RFC 6238) enrollment and verification.

Per-user state machine, persisted under totp:<user_id>:

    Unenrolled --begin_enrollment--> PendingConfirmation  (record with TTL)
    PendingConfirmation --confirm--> Enabled               (record, no TTL)
    Enabled --disable--> Unenrolled                        (record deleted)

An abandoned enrollment expires on its own. begin_enrollment() on a user
who is already enabled is refused so a second device cannot silently replace
the working secret.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import pyotp

from auth import keys
from auth.models import TotpEnrollment, TotpSetup, utcnow
from core.errors import ConflictError, NotFoundError, UnauthorizedError
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.totp")

_SECRET_LENGTH = 32


def _manual_key(secret: str) -> str:
    """Group the base32 secret in fours for hand entry ("ABCD EFGH ...")."""
    return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))


class TotpManager:
    def __init__(
        self,
        store: EphemeralStore,
        issuer: str = "AcrePoint",
        enrollment_ttl_seconds: int = 10 * 60,
        valid_window: int = 1,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._enrollment_ttl = enrollment_ttl_seconds
        self._valid_window = valid_window
        self._clock = clock
        self._log = log or logger

    def _load(self, user_id: str) -> TotpEnrollment | None:
        data = self._store.get_json(keys.totp(user_id))
        if not isinstance(data, dict) or not data.get("secret"):
            return None
        return TotpEnrollment.from_dict(data)

    def _verify(self, secret: str, code: str) -> bool:
        code = (code or "").strip().replace(" ", "")
        if not code.isdigit():
            return False
        return pyotp.TOTP(secret).verify(code, for_time=self._clock(), valid_window=self._valid_window)

    def begin_enrollment(self, user_id: str, label: str) -> TotpSetup:
        """Generate a fresh secret and park it unconfirmed for the enrollment TTL."""
        if self.is_enabled(user_id):
            raise ConflictError(f"TOTP already enabled for user {user_id}", "TOTP is already set up for this user.")
        secret = pyotp.random_base32(length=_SECRET_LENGTH)
        enrollment = TotpEnrollment(secret=secret, enabled=False, created_at=self._clock())
        self._store.set_json(keys.totp(user_id), enrollment.to_dict(), ttl=self._enrollment_ttl)
        uri = pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=self._issuer)
        self._log.info("Started TOTP enrollment for user %s", user_id)
        return TotpSetup(secret=secret, provisioning_uri=uri, manual_key=_manual_key(secret))

    def confirm(self, user_id: str, code: str) -> None:
        """Enable TOTP once the user proves their app produces valid codes."""
        enrollment = self._load(user_id)
        if enrollment is None:
            raise NotFoundError(f"no TOTP enrollment for user {user_id}", "TOTP setup not found or expired.")
        if not self._verify(enrollment.secret, code):
            self._log.warning("Invalid TOTP confirmation code for user %s", user_id)
            raise UnauthorizedError(f"bad TOTP confirmation code for user {user_id}", "Invalid TOTP code.")
        enrollment.enabled = True
        self._store.set_json(keys.totp(user_id), enrollment.to_dict(), ttl=None)
        self._log.info("TOTP enabled for user %s", user_id)

    def validate(self, user_id: str, code: str) -> bool:
        """Check a code against the stored secret, pending or enabled."""
        enrollment = self._load(user_id)
        if enrollment is None:
            return False
        ok = self._verify(enrollment.secret, code)
        if not ok:
            self._log.warning("TOTP mismatch for user %s", user_id)
        return ok

    def disable(self, user_id: str) -> bool:
        removed = self._store.delete(keys.totp(user_id)) > 0
        if removed:
            self._log.info("TOTP disabled for user %s", user_id)
        return removed

    def is_enabled(self, user_id: str) -> bool:
        enrollment = self._load(user_id)
        return enrollment is not None and enrollment.enabled

    def status(self, user_id: str) -> dict:
        enrollment = self._load(user_id)
        return {
            "enabled": enrollment is not None and enrollment.enabled,
            "pending": enrollment is not None and not enrollment.enabled,
        }
