"""
auth/login.py -- Login orchestration across password, magic link, email OTP and TOTP.

The orchestrator owns no state of its own. It reads the user's preferred
method, delegates to the credential verifier, magic-link service, OTP engine
and TOTP manager, asks the device trust store whether a second factor is
needed, and on success mints a session.

State machine (LoginOutcome.state):

    START -> METHOD_CHOSEN -> PASSWORD_PENDING -> SECOND_FACTOR_PENDING -> SESSION_ISSUED
                           -> MAGIC_LINK_SENT  ........................ -> SESSION_ISSUED
                           -> SECOND_FACTOR_PENDING (authenticator)    -> SESSION_ISSUED
    any step -> REJECTED

Rejections never say whether the email exists. Unknown accounts still pay
for one password hash verification [C1]. Two shapes are used:
  - a password was supplied: UnauthorizedError, identical to a wrong password;
  - no password: a REJECTED outcome carrying the same generic message a
    real account would get.

Second-factor completion (verify_otp / verify_totp) is bound to a
login_pending:<user_id> record written when the challenge was issued. That
record carries the fingerprint seen at password time so the device can be
trusted afterwards even if the client omits it.

Supplementary flows live here too because they share the same collaborators:
password reset, TOTP setup/teardown, auth-method preferences, logout.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from auth import keys
from auth.devices import DeviceTrustStore
from auth.lockdown import AuditLog
from auth.magic_link import MagicLinkService
from auth.models import AuthMethod, DeviceFingerprint, TokenPair, TotpSetup, TrustedDevice, User, utcnow
from auth.otp import LOGIN_OTP, PASSWORD_RESET, OtpEngine, build_purpose_key
from auth.passwords import hash_password, needs_rehash, password_policy_error, verify_dummy, verify_password
from auth.store import UserStore
from auth.tokens import SessionTokenManager
from auth.totp import TotpManager
from core.errors import (
    AccountLockedError,
    ConflictError,
    DependencyError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ephemeral.store import EphemeralStore
from notify import email as messages
from notify.email import EmailSender
from notify.tasks import TaskPool

logger = logging.getLogger("permitauth.auth.login")

GENERIC_LOGIN_MESSAGE = "If an account exists, login instructions have been sent."
GENERIC_RESET_MESSAGE = "If an account exists, password reset instructions have been sent."
_BAD_CREDENTIALS = "Invalid email or password."


class LoginState(str, Enum):
    START = "start"
    METHOD_CHOSEN = "method_chosen"
    PASSWORD_PENDING = "password_pending"
    MAGIC_LINK_SENT = "magic_link_sent"
    SECOND_FACTOR_PENDING = "second_factor_pending"
    SESSION_ISSUED = "session_issued"
    REJECTED = "rejected"


@dataclass
class LoginOutcome:
    state: LoginState
    message: str
    user: User | None = None
    tokens: TokenPair | None = None
    auth_method: AuthMethod | None = None
    requires_otp: bool = False
    requires_totp: bool = False
    trusted_device: bool = False
    pre_token: str | None = None
    expires_at: datetime | None = None
    redirect_url: str | None = None
    device: TrustedDevice | None = None


class LoginOrchestrator:
    def __init__(
        self,
        users: UserStore,
        store: EphemeralStore,
        devices: DeviceTrustStore,
        otp: OtpEngine,
        totp: TotpManager,
        magic_links: MagicLinkService,
        sessions: SessionTokenManager,
        audit: AuditLog,
        mailer: EmailSender,
        tasks: TaskPool,
        frontend_base_url: str = "http://localhost:5173",
        otp_ttl_seconds: int = 5 * 60,
        magic_link_ttl_seconds: int = 15 * 60,
        magic_link_access_ttl_seconds: int = 24 * 60 * 60,
        login_challenge_ttl_seconds: int = 5 * 60,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._users = users
        self._store = store
        self._devices = devices
        self._otp = otp
        self._totp = totp
        self._magic_links = magic_links
        self._sessions = sessions
        self._audit = audit
        self._mailer = mailer
        self._tasks = tasks
        self._frontend_base_url = frontend_base_url.rstrip("/")
        self._otp_ttl = otp_ttl_seconds
        self._magic_link_ttl = magic_link_ttl_seconds
        self._magic_link_access_ttl = magic_link_access_ttl_seconds
        self._challenge_ttl = login_challenge_ttl_seconds
        self._clock = clock
        self._log = log or logger

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_user(self, user_id: str) -> User:
        user = self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"user {user_id} not found or inactive", "User not found.")
        return user

    def _ensure_unlocked(self, user: User) -> None:
        if self._devices.is_locked(user.id):
            self._log.warning("Login attempt on locked account %s", user.id)
            raise AccountLockedError(f"user {user.id} is locked")

    def _send_now(self, to: str, message: tuple[str, str]) -> None:
        subject, body = message
        try:
            self._mailer.send(to, subject, body)
        except (smtplib.SMTPException, OSError) as exc:
            self._log.error("Failed to send %r email to %s: %s", subject, to, exc)
            raise DependencyError(f"email delivery failed: {exc}") from exc

    def _send_later(self, name: str, to: str, message: tuple[str, str]) -> None:
        subject, body = message
        self._tasks.submit(name, self._mailer.send, to, subject, body)

    def _write_pending(self, user_id: str, method: str, fingerprint: DeviceFingerprint) -> None:
        self._store.set_json(
            keys.login_pending(user_id),
            {"method": method, "fingerprint": fingerprint.to_dict(), "created_at": self._clock().isoformat()},
            ttl=self._challenge_ttl,
        )

    def _pending_fingerprint(self, pending: dict | None, supplied: DeviceFingerprint | None) -> DeviceFingerprint:
        if supplied is not None and supplied != DeviceFingerprint():
            return supplied
        if isinstance(pending, dict):
            return DeviceFingerprint.from_dict(pending.get("fingerprint"))
        return DeviceFingerprint()

    def _issue_session(
        self,
        user: User,
        fingerprint: DeviceFingerprint,
        trust_device: bool,
        access_ttl: int | None = None,
    ) -> LoginOutcome:
        tokens = self._sessions.issue_pair(user.id, access_ttl=access_ttl)
        device = None
        trusted = False
        if trust_device and fingerprint != DeviceFingerprint():
            decision = self._devices.is_trusted(user.id, fingerprint)
            trusted = decision.trusted
            if not decision.trusted and not decision.locked:
                device = self._devices.register(user.id, fingerprint)
                trusted = True
                self._audit.record(
                    user.id,
                    "device_registered",
                    {"device_id": device.device_id, "device_name": device.device_name},
                    ip_address=fingerprint.ip_address,
                    user_agent=fingerprint.user_agent,
                )
                self._send_later(
                    "device_registered_email",
                    user.email,
                    messages.device_registered_message(device.device_name, device.registered_at, fingerprint.ip_address),
                )
        self._log.info("Session issued for user %s", user.id)
        return LoginOutcome(
            state=LoginState.SESSION_ISSUED,
            message="Login successful",
            user=user,
            tokens=tokens,
            auth_method=user.auth_method,
            trusted_device=trusted,
            device=device,
        )

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    def initiate(self, email: str, password: str | None, fingerprint: DeviceFingerprint) -> LoginOutcome:
        """First step of every login. Dispatches on the user's stored method."""
        user = self._users.get_by_email(email)
        if user is None or not user.is_active:
            verify_dummy(password or "")
            self._log.info("Login for unknown or inactive account")
            if password:
                raise UnauthorizedError("unknown or inactive account", _BAD_CREDENTIALS)
            return LoginOutcome(state=LoginState.REJECTED, message=GENERIC_LOGIN_MESSAGE)

        method = user.auth_method
        self._log.info("Login for user %s via %s", user.id, method.value)
        if method is AuthMethod.magic_link:
            return self._initiate_magic_link(user, fingerprint)
        if method is AuthMethod.authenticator:
            return self._initiate_authenticator(user, fingerprint)
        return self._initiate_password(user, password, fingerprint)

    def _initiate_password(self, user: User, password: str | None, fingerprint: DeviceFingerprint) -> LoginOutcome:
        if not password:
            verify_dummy("")
            return LoginOutcome(state=LoginState.REJECTED, message=GENERIC_LOGIN_MESSAGE)
        if user.hashed_password is None:
            verify_dummy(password)
            raise UnauthorizedError(f"user {user.id} has no password", _BAD_CREDENTIALS)
        if not verify_password(password, user.hashed_password):
            self._log.warning("Wrong password for user %s", user.id)
            raise UnauthorizedError(f"wrong password for user {user.id}", _BAD_CREDENTIALS)
        self._ensure_unlocked(user)
        if needs_rehash(user.hashed_password):
            self._users.update_password(user.id, hash_password(password))
            self._log.info("Upgraded password hash for user %s", user.id)

        decision = self._devices.is_trusted(user.id, fingerprint)
        totp_enabled = self._totp.is_enabled(user.id)
        if not decision.trusted or totp_enabled:
            return self._begin_second_factor(user, fingerprint, decision.trusted, totp_enabled)
        return self._issue_session(user, fingerprint, trust_device=False)

    def _begin_second_factor(
        self, user: User, fingerprint: DeviceFingerprint, trusted: bool, totp_enabled: bool
    ) -> LoginOutcome:
        if totp_enabled:
            self._write_pending(user.id, "totp", fingerprint)
            return LoginOutcome(
                state=LoginState.SECOND_FACTOR_PENDING,
                message="TOTP verification required",
                user=user,
                auth_method=user.auth_method,
                requires_totp=True,
                trusted_device=trusted,
            )

        challenge = self._otp.issue(build_purpose_key(LOGIN_OTP, user.id))
        self._write_pending(user.id, "email_otp", fingerprint)
        self._send_now(user.email, messages.login_otp_message(challenge.code, self._otp_ttl // 60))
        return LoginOutcome(
            state=LoginState.SECOND_FACTOR_PENDING,
            message="OTP sent successfully",
            user=user,
            auth_method=user.auth_method,
            requires_otp=True,
            trusted_device=False,
            pre_token=challenge.pre_token,
        )

    def _initiate_magic_link(self, user: User, fingerprint: DeviceFingerprint) -> LoginOutcome:
        if self._devices.is_locked(user.id):
            self._log.warning("Magic link refused for locked account %s", user.id)
            return LoginOutcome(state=LoginState.REJECTED, message=GENERIC_LOGIN_MESSAGE)
        link = self._magic_links.issue(user.id, user.email, fingerprint)
        self._send_now(user.email, messages.magic_link_message(link.url, self._magic_link_ttl // 60))
        return LoginOutcome(
            state=LoginState.MAGIC_LINK_SENT,
            message=GENERIC_LOGIN_MESSAGE,
            user=user,
            auth_method=AuthMethod.magic_link,
            expires_at=link.expires_at,
        )

    def _initiate_authenticator(self, user: User, fingerprint: DeviceFingerprint) -> LoginOutcome:
        if self._devices.is_locked(user.id):
            self._log.warning("Authenticator login refused for locked account %s", user.id)
            return LoginOutcome(state=LoginState.REJECTED, message=GENERIC_LOGIN_MESSAGE)
        if not self._totp.is_enabled(user.id):
            self._log.error("User %s prefers the authenticator but has no TOTP enrolled", user.id)
            return LoginOutcome(state=LoginState.REJECTED, message=GENERIC_LOGIN_MESSAGE)
        decision = self._devices.is_trusted(user.id, fingerprint)
        self._write_pending(user.id, "totp", fingerprint)
        return LoginOutcome(
            state=LoginState.SECOND_FACTOR_PENDING,
            message="Authenticator verification required",
            user=user,
            auth_method=AuthMethod.authenticator,
            requires_totp=True,
            trusted_device=decision.trusted,
        )

    # ------------------------------------------------------------------
    # Second factor / link completion
    # ------------------------------------------------------------------

    def verify_otp(
        self,
        user_id: str,
        code: str,
        pre_token: str,
        trust_device: bool = False,
        fingerprint: DeviceFingerprint | None = None,
    ) -> LoginOutcome:
        if not self._otp.validate(code, pre_token, build_purpose_key(LOGIN_OTP, user_id)):
            raise UnauthorizedError(f"invalid login OTP for user {user_id}", "Invalid OTP.")
        user = self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError(f"OTP verified for missing user {user_id}")
        self._ensure_unlocked(user)
        pending = self._store.get_json(keys.login_pending(user_id))
        self._store.delete(keys.login_pending(user_id))
        return self._issue_session(user, self._pending_fingerprint(pending, fingerprint), trust_device)

    def verify_totp(
        self,
        user_id: str,
        code: str,
        trust_device: bool = False,
        fingerprint: DeviceFingerprint | None = None,
    ) -> LoginOutcome:
        pending = self._store.get_json(keys.login_pending(user_id))
        if not isinstance(pending, dict):
            self._log.warning("TOTP submitted for user %s without a pending login", user_id)
            raise UnauthorizedError(f"no pending login for user {user_id}", "Invalid TOTP code.")
        user = self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError(f"TOTP submitted for missing user {user_id}", "Invalid TOTP code.")
        self._ensure_unlocked(user)
        if not self._totp.is_enabled(user_id) or not self._totp.validate(user_id, code):
            raise UnauthorizedError(f"invalid TOTP for user {user_id}", "Invalid TOTP code.")

        self._store.delete(keys.login_pending(user_id))
        self._otp.invalidate(build_purpose_key(LOGIN_OTP, user_id))
        return self._issue_session(user, self._pending_fingerprint(pending, fingerprint), trust_device)

    def complete_magic_link(self, token: str, fingerprint: DeviceFingerprint, trust_device: bool = False) -> LoginOutcome:
        ticket, redirect_url = self._magic_links.redeem(token, fingerprint)
        user = self._users.get_by_id(ticket.user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"magic link user {ticket.user_id} not found", "Invalid or expired link.")
        self._ensure_unlocked(user)
        outcome = self._issue_session(user, fingerprint, trust_device, access_ttl=self._magic_link_access_ttl)
        outcome.redirect_url = redirect_url
        return outcome

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str:
        """Email a reset code and link if the account exists. Always returns the generic message."""
        user = self._users.get_by_email(email)
        if user is None or not user.is_active:
            self._log.info("Password reset requested for unknown or inactive account")
            return GENERIC_RESET_MESSAGE
        challenge = self._otp.issue(build_purpose_key(PASSWORD_RESET, user.id))
        url = f"{self._frontend_base_url}/reset-password?token={challenge.pre_token}&user_id={user.id}"
        self._send_later(
            "password_reset_email",
            user.email,
            messages.password_reset_message(url, challenge.code, self._otp_ttl // 60),
        )
        return GENERIC_RESET_MESSAGE

    def reset_password(self, user_id: str, code: str, pre_token: str, new_password: str) -> None:
        policy_error = password_policy_error(new_password)
        if policy_error:
            raise ValidationError(f"password policy: {policy_error}", policy_error)
        if not self._otp.validate(code, pre_token, build_purpose_key(PASSWORD_RESET, user_id)):
            raise UnauthorizedError(f"invalid reset OTP for user {user_id}", "Invalid OTP or reset link.")
        user = self._require_user(user_id)
        self._users.update_password(user.id, hash_password(new_password))
        revoked = self._sessions.revoke_all_for_user(user.id)
        self._audit.record(user.id, "password_reset", {"sessions_revoked": revoked})

    # ------------------------------------------------------------------
    # TOTP setup
    # ------------------------------------------------------------------

    def begin_totp_setup(self, user_id: str) -> TotpSetup:
        user = self._require_user(user_id)
        return self._totp.begin_enrollment(user.id, user.email)

    def enable_totp(self, user_id: str, code: str) -> None:
        user = self._require_user(user_id)
        self._totp.confirm(user.id, code)
        self._audit.record(user.id, "totp_enabled")

    def disable_totp(self, user_id: str, password: str) -> None:
        user = self._require_user(user_id)
        if not verify_password(password, user.hashed_password):
            raise UnauthorizedError(f"wrong password on TOTP disable for {user.id}", "Invalid password.")
        if not self._totp.is_enabled(user.id):
            raise ConflictError(f"TOTP not enabled for {user.id}", "TOTP is not enabled for this user.")
        self._totp.disable(user.id)
        if user.auth_method is AuthMethod.authenticator:
            self._users.update_auth_method(user.id, AuthMethod.password)
            self._log.info("User %s auth method reset to password after TOTP disable", user.id)
        self._audit.record(user.id, "totp_disabled")

    def totp_status(self, user_id: str) -> dict:
        user = self._require_user(user_id)
        return self._totp.status(user.id)

    # ------------------------------------------------------------------
    # Preferences / logout
    # ------------------------------------------------------------------

    def set_auth_method(self, user_id: str, method: AuthMethod) -> AuthMethod:
        user = self._require_user(user_id)
        method = AuthMethod(method)
        if method is AuthMethod.password and not user.hashed_password:
            raise ValidationError(f"user {user.id} has no password", "Set a password before using password login.")
        if method is AuthMethod.authenticator and not self._totp.is_enabled(user.id):
            raise ValidationError(
                f"user {user.id} has no authenticator", "Set up an authenticator before enabling this method."
            )
        if method is user.auth_method:
            return method
        self._users.update_auth_method(user.id, method)
        revoked = self._sessions.revoke_all_for_user(user.id)
        self._audit.record(
            user.id,
            "auth_method_changed",
            {"from": user.auth_method.value, "to": method.value, "sessions_revoked": revoked},
        )
        return method

    def auth_methods(self, user_id: str) -> dict:
        user = self._require_user(user_id)
        return {
            "current_method": user.auth_method.value,
            "available_methods": {
                AuthMethod.magic_link.value: True,
                AuthMethod.password.value: bool(user.hashed_password),
                AuthMethod.authenticator.value: self._totp.is_enabled(user.id),
            },
        }

    def logout(self, refresh_token: str | None) -> bool:
        if not refresh_token:
            return False
        return self._sessions.revoke(refresh_token)
