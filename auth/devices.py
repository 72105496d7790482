"""
auth/devices.py -- Trusted-device records in the ephemeral store.

A trusted device lets a returning user skip the email OTP after a correct
password. Records are keyed by (user id, device identity) and carry a sliding
TTL: every successful trust check refreshes last_used_at and re-applies the
TTL, so devices that stop being used age out on their own.

Lockdown is checked before anything else and fails closed: a locked account
has no trusted devices, whatever the store says.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import NamedTuple

from auth import keys
from auth.fingerprint import describe_device, device_id
from auth.models import DeviceFingerprint, TrustedDevice, utcnow
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.devices")


class TrustDecision(NamedTuple):
    trusted: bool
    device: TrustedDevice | None
    locked: bool = False


class DeviceTrustStore:
    """CRUD over trusted devices plus the lockdown read used by every trust check.

    device_ttl_seconds <= 0 stores devices with no expiry.
    """

    def __init__(
        self,
        store: EphemeralStore,
        device_ttl_seconds: int = 30 * 24 * 60 * 60,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._ttl = device_ttl_seconds if device_ttl_seconds > 0 else None
        self._clock = clock
        self._log = log or logger

    def is_locked(self, user_id: str) -> bool:
        return self._store.get(keys.lockdown(user_id)) is not None

    def register(self, user_id: str, fingerprint: DeviceFingerprint) -> TrustedDevice:
        now = self._clock()
        device = TrustedDevice(
            user_id=user_id,
            device_id=device_id(fingerprint),
            device_name=describe_device(fingerprint, now),
            fingerprint=fingerprint,
            registered_at=now,
            last_used_at=now,
            is_active=True,
        )
        self._store.set_json(keys.trusted_device(user_id, device.device_id), device.to_dict(), ttl=self._ttl)
        self._log.info("Registered trusted device %s for user %s", device.device_id[:15], user_id)
        return device

    def is_trusted(self, user_id: str, fingerprint: DeviceFingerprint) -> TrustDecision:
        if self.is_locked(user_id):
            self._log.warning("Trust check for locked user %s -- failing closed", user_id)
            return TrustDecision(trusted=False, device=None, locked=True)

        key = keys.trusted_device(user_id, device_id(fingerprint))
        data = self._store.get_json(key)
        if data is None:
            return TrustDecision(trusted=False, device=None)

        try:
            device = TrustedDevice.from_dict(data)
        except (KeyError, TypeError, ValueError):
            self._log.warning("Corrupt trusted device record at %s -- treating as untrusted", key)
            return TrustDecision(trusted=False, device=None)

        device.last_used_at = self._clock()
        self._store.set_json(key, device.to_dict(), ttl=self._ttl)
        return TrustDecision(trusted=device.is_active, device=device)

    def get(self, user_id: str, device_id_: str) -> TrustedDevice | None:
        data = self._store.get_json(keys.trusted_device(user_id, device_id_))
        if data is None:
            return None
        try:
            return TrustedDevice.from_dict(data)
        except (KeyError, TypeError, ValueError):
            return None

    def list(self, user_id: str) -> list[TrustedDevice]:
        """All devices for a user, most recently used first. Corrupt entries are skipped."""
        devices: dict[str, TrustedDevice] = {}
        for key in self._store.scan(keys.trusted_device_pattern(user_id)):
            raw = self._store.get(key)
            if not raw:
                continue
            try:
                device = TrustedDevice.from_dict(json.loads(raw))
            except (KeyError, TypeError, ValueError):
                self._log.debug("Skipping undecodable device record %s", key)
                continue
            devices[device.device_id] = device
        return sorted(devices.values(), key=lambda d: d.last_used_at, reverse=True)

    def remove(self, user_id: str, device_id_: str) -> bool:
        removed = self._store.delete(keys.trusted_device(user_id, device_id_)) > 0
        if removed:
            self._log.info("Removed trusted device %s for user %s", device_id_[:15], user_id)
        return removed

    def remove_all(self, user_id: str) -> int:
        """Delete every trusted device for user_id. Returns the number removed."""
        # Deleted in batches of 100 while the scan is still running.
        removed = 0
        batch: list[str] = []
        for key in self._store.scan(keys.trusted_device_pattern(user_id)):
            batch.append(key)
            if len(batch) >= 100:
                removed += self._store.delete(*batch)
                batch.clear()
        if batch:
            removed += self._store.delete(*batch)
        self._log.info("Removed %d trusted device(s) for user %s", removed, user_id)
        return removed
