"""
auth/tokens.py -- Access/refresh JWTs, single-use refresh rotation, session cookies.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), typ ("access" or "refresh"), iat, exp and a random jti,
       so two tokens minted in the same second are still distinct strings.
       decode() raises typed errors -- the API layer turns them into 401s.

  Refresh tokens: every refresh string is also recorded in the ephemeral
       store (refresh_token:<token> -> user id). A signed, unexpired refresh
       JWT with no record is a revoked session. Rotation deletes the old
       record before the new pair is returned, so each refresh token is good
       for exactly one rotation.

  Rotation race: two requests presenting the same refresh token at the same
       moment could both read the record before either deletes it. With
       rotation_lock enabled the first request takes a short set-if-absent
       mutex on refresh_lock:<token>; the loser gets AlreadyUsedError.

  Cookies: both tokens travel as httpOnly cookies for the browser client;
       API clients may send the access token as a Bearer header instead.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup [M6].

Layer rule: no imports from api/. Import from core/ and ephemeral/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth import keys
from auth.models import TokenPair
from core.config import get_settings
from core.errors import (
    AccountLockedError,
    AlreadyUsedError,
    DependencyError,
    ExpiredError,
    MismatchError,
    UnauthorizedError,
    token_hint,
)
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

_SESSION_INVALID = "Session invalid. Please log in again."


class SessionTokenManager:
    """Mints token pairs and owns the refresh-token records in the store."""

    def __init__(
        self,
        store: EphemeralStore,
        secret_key: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        rotation_lock: bool = True,
        rotation_lock_seconds: int = 5,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds
        self._rotation_lock = rotation_lock
        self._rotation_lock_seconds = rotation_lock_seconds
        self._log = log or logger

    @property
    def refresh_ttl(self) -> int:
        return self._refresh_ttl

    # ------------------------------------------------------------------
    # JWT encode / decode
    # ------------------------------------------------------------------

    def _encode(self, user_id: str, token_type: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "typ": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str, expected_type: str = ACCESS) -> dict:
        """Verify signature, expiry and token type. Returns the payload."""
        if not token:
            raise UnauthorizedError("empty token")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredError(f"{expected_type} token {token_hint(token)} expired", _SESSION_INVALID) from exc
        except JWTError as exc:
            raise UnauthorizedError(f"invalid {expected_type} token {token_hint(token)}: {exc}") from exc
        if payload.get("typ") != expected_type or not payload.get("sub"):
            raise UnauthorizedError(f"token {token_hint(token)} is not a valid {expected_type} token")
        return payload

    # ------------------------------------------------------------------
    # Issue / rotate / revoke
    # ------------------------------------------------------------------

    def issue_pair(self, user_id: str, access_ttl: int | None = None) -> TokenPair:
        """Mint an access/refresh pair and record the refresh token."""
        access_seconds = access_ttl if access_ttl and access_ttl > 0 else self._access_ttl
        pair = TokenPair(
            access_token=self._encode(user_id, ACCESS, access_seconds),
            refresh_token=self._encode(user_id, REFRESH, self._refresh_ttl),
            access_expires_in=access_seconds,
            refresh_expires_in=self._refresh_ttl,
        )
        self._store.set(keys.refresh_token(pair.refresh_token), user_id, ttl=self._refresh_ttl)
        self._log.info("Issued session for user %s (refresh %s)", user_id, token_hint(pair.refresh_token))
        return pair

    def rotate(self, old_refresh: str) -> tuple[str, TokenPair]:
        """Exchange a refresh token for a new pair. Returns (user_id, pair).

        Raises:
            ExpiredError / UnauthorizedError: bad signature, expired, wrong type,
                or no record (revoked or already rotated).
            AlreadyUsedError: another rotation of the same token is in flight.
            MismatchError: the record belongs to a different user than the token.
            AccountLockedError: the owner is under security lockdown.
        """
        payload = self.decode(old_refresh, REFRESH)
        claimed_user = str(payload["sub"])

        if self._rotation_lock:
            acquired = self._store.set_if_absent(
                keys.refresh_lock(old_refresh), claimed_user, ttl=self._rotation_lock_seconds
            )
            if not acquired:
                self._log.warning("Concurrent reuse of refresh token %s", token_hint(old_refresh))
                raise AlreadyUsedError(f"refresh token {token_hint(old_refresh)} is being rotated", _SESSION_INVALID)

        owner = self._store.get(keys.refresh_token(old_refresh))
        if owner is None:
            self._log.warning("Refresh token %s has no session record", token_hint(old_refresh))
            raise UnauthorizedError(f"refresh token {token_hint(old_refresh)} not found", _SESSION_INVALID)
        if owner != claimed_user:
            self._log.error(
                "Refresh token %s owner mismatch: record=%s token=%s", token_hint(old_refresh), owner, claimed_user
            )
            raise MismatchError("refresh token owner mismatch", _SESSION_INVALID)
        if self._store.get(keys.lockdown(owner)) is not None:
            self._log.warning("Refresh rejected for locked user %s", owner)
            raise AccountLockedError(f"user {owner} is locked")

        try:
            self._store.delete(keys.refresh_token(old_refresh))
        except DependencyError:
            self._log.error("Could not delete rotated refresh token %s", token_hint(old_refresh))

        return owner, self.issue_pair(owner)

    def revoke(self, refresh_token: str) -> bool:
        removed = self._store.delete(keys.refresh_token(refresh_token)) > 0
        if removed:
            self._log.info("Revoked session %s", token_hint(refresh_token))
        return removed

    def revoke_all_for_user(self, user_id: str) -> int:
        """Delete every refresh record owned by user_id. Returns the number removed."""
        doomed = [
            key
            for key in self._store.scan(keys.refresh_token_pattern())
            if self._store.get(key) == user_id
        ]
        removed = 0
        for start in range(0, len(doomed), 100):
            removed += self._store.delete(*doomed[start : start + 100])
        self._log.info("Revoked %d session(s) for user %s", removed, user_id)
        return removed

    def active_sessions(self) -> dict[str, list[str]]:
        """Map of user id -> refresh tokens currently on record."""
        prefix = keys.refresh_token("")
        sessions: dict[str, list[str]] = {}
        for key in self._store.scan(keys.refresh_token_pattern()):
            owner = self._store.get(key)
            if owner is None:
                continue
            sessions.setdefault(owner, []).append(key[len(prefix) :])
        return sessions


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(response, pair: TokenPair) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite: from settings, "lax" by default -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each JWT expiry so token and cookie expire together.
    """
    settings = get_settings()
    for name, value, max_age in (
        (ACCESS_COOKIE, pair.access_token, pair.access_expires_in),
        (REFRESH_COOKIE, pair.refresh_token, pair.refresh_expires_in),
    ):
        response.set_cookie(
            name,
            value=value,
            httponly=True,
            samesite=settings.cookie_samesite,
            secure=settings.secure_cookies,
            domain=settings.cookie_domain,
            max_age=max_age,
        )


def clear_session_cookies(response) -> None:
    settings = get_settings()
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            httponly=True,
            samesite=settings.cookie_samesite,
            secure=settings.secure_cookies,
            domain=settings.cookie_domain,
        )
