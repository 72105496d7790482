"""
API request and response models for permitauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import DeviceFingerprint, SecurityEvent, TrustedDevice, User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuthMethodEnum(str, Enum):
    password = "password"
    magic_link = "magic_link"
    authenticator = "authenticator"


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class FingerprintModel(BaseModel):
    """Client-reported device attributes. Every field is optional; missing means empty."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_agent: str = Field(default="", max_length=1024)
    screen_resolution: str = Field(default="", max_length=32)
    timezone: str = Field(default="", max_length=64)
    language: str = Field(default="", max_length=32)
    platform: str = Field(default="", max_length=64)
    cookie_enabled: bool = False
    ip_address: str = Field(default="", max_length=64)
    plugins: str = Field(default="", max_length=4096)
    canvas_fingerprint: str = Field(default="", max_length=512)
    webgl_fingerprint: str = Field(default="", max_length=512)
    color_depth: int = Field(default=0, ge=0)
    hardware_concurrency: int = Field(default=0, ge=0)
    device_memory: float = Field(default=0.0, ge=0)
    max_touch_points: int = Field(default=0, ge=0)

    def to_domain(self, client_ip: str = "") -> DeviceFingerprint:
        fp = DeviceFingerprint(**self.model_dump())
        # The transport peer address wins over whatever the client claims.
        if client_ip:
            fp.ip_address = client_ip
        return fp


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Login requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    # max_length keeps hashing cost bounded.
    password: Optional[str] = Field(default=None, max_length=255)
    device_fingerprint: FingerprintModel = Field(default_factory=FingerprintModel)


class VerifyOtpRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    otp: str = Field(min_length=1, max_length=12)
    pre_token: str = Field(min_length=1, max_length=128)
    trust_device: bool = False
    device_fingerprint: Optional[FingerprintModel] = None


class VerifyTotpRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    totp_code: str = Field(min_length=1, max_length=12)
    trust_device: bool = False
    device_fingerprint: Optional[FingerprintModel] = None


class MagicLinkVerifyRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    device_fingerprint: FingerprintModel = Field(default_factory=FingerprintModel)
    trust_device: bool = False


class RefreshRequest(BaseModel):
    """Body is optional; the refresh_token cookie is used when absent."""

    refresh_token: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Login responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    id: str
    email: str
    role: str
    auth_method: AuthMethodEnum
    first_name: str
    last_name: str
    is_active: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            auth_method=AuthMethodEnum(user.auth_method.value),
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            created_at=user.created_at or "",
        )


class LoginResponse(BaseModel):
    """Shape shared by every login step. Fields that do not apply stay null/false."""

    message: str
    state: str
    user_id: Optional[str] = None
    auth_method: Optional[AuthMethodEnum] = None
    requires_otp: bool = False
    requires_totp: bool = False
    trusted_device: bool = False
    pre_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    redirect_url: Optional[str] = None
    user: Optional[UserResponse] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


# ---------------------------------------------------------------------------
# TOTP
# ---------------------------------------------------------------------------


class TotpSetupRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class TotpEnableRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    totp_code: str = Field(min_length=1, max_length=12)


class TotpDisableRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=255)


class TotpSetupResponse(BaseModel):
    secret: str
    qr_code_url: str
    manual_key: str


class TotpStatusResponse(BaseModel):
    user_id: str
    enabled: bool
    pending: bool


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class ForgotPasswordResetRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    otp: str = Field(min_length=1, max_length=12)
    pre_token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


class TrustedDeviceResponse(BaseModel):
    device_id: str
    device_name: str
    registered_at: datetime
    last_used_at: datetime
    is_active: bool
    browser_user_agent: str
    platform: str
    ip_address: str

    @classmethod
    def from_device(cls, device: TrustedDevice) -> "TrustedDeviceResponse":
        return cls(
            device_id=device.device_id,
            device_name=device.device_name,
            registered_at=device.registered_at,
            last_used_at=device.last_used_at,
            is_active=device.is_active,
            browser_user_agent=device.fingerprint.user_agent,
            platform=device.fingerprint.platform,
            ip_address=device.fingerprint.ip_address,
        )


class DeviceRemoveRequest(BaseModel):
    """user_id defaults to the caller; only admins may name someone else."""

    device_id: Optional[str] = Field(default=None, max_length=128)
    user_id: Optional[str] = Field(default=None, max_length=64)
    remove_all: bool = False


class DeviceRemoveResponse(BaseModel):
    removed: int


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


class SetAuthMethodRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    method: AuthMethodEnum


class AuthMethodsResponse(BaseModel):
    user_id: str
    current_method: AuthMethodEnum
    available_methods: dict[str, bool]


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class SessionSummary(BaseModel):
    user_id: str
    email: Optional[str] = None
    session_count: int
    refresh_token_hints: list[str]


class SessionListResponse(BaseModel):
    total_sessions: int
    users: list[SessionSummary]


class LockRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class LockResponse(BaseModel):
    user_id: str
    locked: bool
    reason: Optional[str] = None
    locked_at: Optional[datetime] = None


class SecurityEventResponse(BaseModel):
    user_id: str
    event_type: str
    timestamp: datetime
    details: dict
    ip_address: str
    user_agent: str

    @classmethod
    def from_event(cls, event: SecurityEvent) -> "SecurityEventResponse":
        return cls(
            user_id=event.user_id,
            event_type=event.event_type,
            timestamp=event.timestamp,
            details=event.details,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
        )
