"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores and services do the work. The only behaviour here is
to_dict()/from_dict() so records can round-trip through the ephemeral store
as JSON. Timestamps are timezone-aware UTC datetimes in memory and ISO 8601
strings on the wire.

Layer rule: no imports from api/, ephemeral/, or notify/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AuthMethod(str, Enum):
    password = "password"
    magic_link = "magic_link"
    authenticator = "authenticator"


@dataclass
class User:
    """A credential as seen by this subsystem (owned by the user service).

    hashed_password is None for accounts that only sign in by magic link.
    auth_method is the user's preferred primary login method.
    """

    email: str
    role: str = "user"  # "admin", "user"
    id: str | None = None
    hashed_password: str | None = None
    auth_method: AuthMethod = AuthMethod.password
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    created_at: str | None = None


@dataclass
class DeviceFingerprint:
    """Client-reported device attributes.

    ip_address is kept for audit logging only; neither it nor plugins feed the
    device identity because both churn too often.
    """

    user_agent: str = ""
    screen_resolution: str = ""
    timezone: str = ""
    language: str = ""
    platform: str = ""
    cookie_enabled: bool = False
    ip_address: str = ""
    plugins: str = ""
    canvas_fingerprint: str = ""
    webgl_fingerprint: str = ""
    color_depth: int = 0
    hardware_concurrency: int = 0
    device_memory: float = 0.0
    max_touch_points: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DeviceFingerprint":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TrustedDevice:
    user_id: str
    device_id: str
    device_name: str
    fingerprint: DeviceFingerprint
    registered_at: datetime
    last_used_at: datetime
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "fingerprint": self.fingerprint.to_dict(),
            "registered_at": _iso(self.registered_at),
            "last_used_at": _iso(self.last_used_at),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrustedDevice":
        return cls(
            user_id=data["user_id"],
            device_id=data["device_id"],
            device_name=data.get("device_name", ""),
            fingerprint=DeviceFingerprint.from_dict(data.get("fingerprint")),
            registered_at=_parse_dt(data["registered_at"]),
            last_used_at=_parse_dt(data.get("last_used_at")) or _parse_dt(data["registered_at"]),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class MagicLinkTicket:
    """Server-side state behind a magic link. The token itself is the store key."""

    token: str
    user_id: str
    email: str
    fingerprint: DeviceFingerprint
    created_at: datetime
    expires_at: datetime
    used: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "user_id": self.user_id,
            "email": self.email,
            "device_fingerprint": self.fingerprint.to_dict(),
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "used": self.used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MagicLinkTicket":
        return cls(
            token=data.get("token", ""),
            user_id=data["user_id"],
            email=data.get("email", ""),
            fingerprint=DeviceFingerprint.from_dict(data.get("device_fingerprint")),
            created_at=_parse_dt(data["created_at"]),
            expires_at=_parse_dt(data["expires_at"]),
            used=bool(data.get("used", False)),
        )


@dataclass
class MagicLink:
    """What the issuer hands back: the token and the URLs that embed it."""

    token: str
    url: str
    verification_url: str
    expires_at: datetime


@dataclass
class OtpChallenge:
    """A 6-digit code plus its opaque correlation handle (pre-token)."""

    code: str
    pre_token: str


@dataclass
class TotpEnrollment:
    secret: str
    enabled: bool
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"secret": self.secret, "enabled": self.enabled, "created_at": _iso(self.created_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TotpEnrollment":
        return cls(
            secret=data["secret"],
            enabled=bool(data.get("enabled", False)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class TotpSetup:
    secret: str
    provisioning_uri: str
    manual_key: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


@dataclass
class LockdownFlag:
    user_id: str
    reason: str
    locked_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"locked_at": _iso(self.locked_at), "reason": self.reason, "status": "locked"}

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any]) -> "LockdownFlag":
        return cls(
            user_id=user_id,
            reason=data.get("reason", ""),
            locked_at=_parse_dt(data.get("locked_at")) or utcnow(),
        )


@dataclass
class SecurityEvent:
    """Audit record: who, what, when, plus a free-form detail map."""

    user_id: str
    event_type: str  # "account_lockdown", "account_unlocked", "device_registered", ...
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str = ""
    user_agent: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "event_type": self.event_type,
            "timestamp": _iso(self.timestamp),
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityEvent":
        return cls(
            user_id=data["user_id"],
            event_type=data["event_type"],
            timestamp=_parse_dt(data["timestamp"]),
            details=data.get("details") or {},
            ip_address=data.get("ip_address", ""),
            user_agent=data.get("user_agent", ""),
        )
