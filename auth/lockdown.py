"""
auth/lockdown.py -- Account lockdown and the security audit trail.

Lockdown is the big red button for a compromised account. lock() writes a
persistent flag and then tears down everything that lets the account back in
without a fresh login:

    1. security_lockdown:<user_id> written (no TTL)
    2. every trusted device removed
    3. every refresh token revoked
    4. an "account_lockdown" SecurityEvent recorded

Order matters: the flag goes first so that a request racing with the cleanup
is already rejected by the lockdown checks in DeviceTrustStore.is_trusted()
and SessionTokenManager.rotate(). The flag is only ever cleared by unlock().

AuditLog events live for audit_event_ttl_seconds (30 days by default) under
security_event:<user_id>:<unix_ts>:<nonce> and are also emitted at WARNING on
the permitauth.audit logger so they reach the process log.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime
from typing import Any

from auth import keys
from auth.devices import DeviceTrustStore
from auth.models import LockdownFlag, SecurityEvent, utcnow
from auth.tokens import SessionTokenManager
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.lockdown")
audit_logger = logging.getLogger("permitauth.audit")


class AuditLog:
    def __init__(
        self,
        store: EphemeralStore,
        ttl_seconds: int = 30 * 24 * 60 * 60,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._log = log or audit_logger

    def record(
        self,
        user_id: str,
        event_type: str,
        details: dict[str, Any] | None = None,
        ip_address: str = "",
        user_agent: str = "",
    ) -> SecurityEvent:
        event = SecurityEvent(
            user_id=user_id,
            event_type=event_type,
            timestamp=self._clock(),
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        key = keys.security_event(user_id, int(event.timestamp.timestamp()), secrets.token_hex(4))
        self._store.set_json(key, event.to_dict(), ttl=self._ttl)
        self._log.warning("SECURITY EVENT %s user=%s ip=%s details=%s", event_type, user_id, ip_address, event.details)
        return event

    def list(self, user_id: str) -> list[SecurityEvent]:
        """Events for a user, newest first."""
        events = []
        for key in self._store.scan(keys.security_event_pattern(user_id)):
            data = self._store.get_json(key)
            if not isinstance(data, dict):
                continue
            try:
                events.append(SecurityEvent.from_dict(data))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping undecodable security event %s", key)
        return sorted(events, key=lambda e: e.timestamp, reverse=True)


class LockdownManager:
    def __init__(
        self,
        store: EphemeralStore,
        devices: DeviceTrustStore,
        sessions: SessionTokenManager,
        audit: AuditLog,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._devices = devices
        self._sessions = sessions
        self._audit = audit
        self._clock = clock
        self._log = log or logger

    def lock(
        self,
        user_id: str,
        reason: str,
        actor_id: str | None = None,
        ip_address: str = "",
        user_agent: str = "",
    ) -> LockdownFlag:
        flag = LockdownFlag(user_id=user_id, reason=reason, locked_at=self._clock())
        self._store.set_json(keys.lockdown(user_id), flag.to_dict(), ttl=None)
        devices_removed = self._devices.remove_all(user_id)
        sessions_revoked = self._sessions.revoke_all_for_user(user_id)
        self._log.warning(
            "Account %s locked (%s): %d device(s) removed, %d session(s) revoked",
            user_id,
            reason,
            devices_removed,
            sessions_revoked,
        )
        self._audit.record(
            user_id,
            "account_lockdown",
            {
                "reason": reason,
                "actor_id": actor_id,
                "devices_removed": devices_removed,
                "sessions_revoked": sessions_revoked,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return flag

    def unlock(self, user_id: str, admin_id: str) -> bool:
        """Clear the lockdown flag. Returns False if the account was not locked."""
        removed = self._store.delete(keys.lockdown(user_id)) > 0
        if not removed:
            self._log.info("Unlock requested for %s but no lockdown flag was set", user_id)
            return False
        self._log.warning("Account %s unlocked by %s", user_id, admin_id)
        self._audit.record(user_id, "account_unlocked", {"admin_id": admin_id})
        return True

    def is_locked(self, user_id: str) -> bool:
        return self._store.get(keys.lockdown(user_id)) is not None

    def get(self, user_id: str) -> LockdownFlag | None:
        data = self._store.get_json(keys.lockdown(user_id))
        if not isinstance(data, dict):
            # A flag that cannot be decoded still counts as locked.
            if self.is_locked(user_id):
                return LockdownFlag(user_id=user_id, reason="", locked_at=self._clock())
            return None
        return LockdownFlag.from_dict(user_id, data)
