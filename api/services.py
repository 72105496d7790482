"""
api/services.py -- Build the auth service graph and attach it to app.state.

One function, used by the real lifespan in api/main.py and by the test
lifespan in tests/conftest.py, so both run the exact same wiring. Every
service gets its collaborators passed in; nothing reaches for a global.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from auth.devices import DeviceTrustStore
from auth.lockdown import AuditLog, LockdownManager
from auth.login import LoginOrchestrator
from auth.magic_link import MagicLinkService
from auth.models import utcnow
from auth.otp import OtpEngine
from auth.store import UserStore
from auth.tokens import SessionTokenManager
from auth.totp import TotpManager
from core.config import Settings
from ephemeral.store import EphemeralStore
from notify.email import EmailSender
from notify.tasks import TaskPool


def wire_services(
    state: Any,
    settings: Settings,
    store: EphemeralStore,
    user_store: UserStore,
    mailer: EmailSender,
    tasks: TaskPool,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    state.settings = settings
    state.store = store
    state.user_store = user_store
    state.mailer = mailer
    state.tasks = tasks

    state.devices = DeviceTrustStore(store, device_ttl_seconds=settings.device_ttl_seconds, clock=clock)
    state.otp = OtpEngine(store, ttl_seconds=settings.otp_ttl_seconds, max_attempts=settings.otp_max_attempts)
    state.totp = TotpManager(
        store,
        issuer=settings.totp_issuer,
        enrollment_ttl_seconds=settings.totp_enrollment_ttl_seconds,
        valid_window=settings.totp_valid_window,
        clock=clock,
    )
    state.magic_links = MagicLinkService(
        store,
        base_url=settings.base_url,
        frontend_base_url=settings.frontend_base_url,
        ttl_seconds=settings.magic_link_ttl_seconds,
        retention_seconds=settings.magic_link_retention_seconds,
        similarity_threshold=settings.fingerprint_similarity_threshold,
        similarity_weights=settings.fingerprint_similarity_weights,
        clock=clock,
    )
    state.sessions = SessionTokenManager(
        store,
        secret_key=settings.secret_key,
        access_ttl_seconds=settings.access_token_expire_seconds,
        refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        rotation_lock=settings.refresh_rotation_lock,
        rotation_lock_seconds=settings.refresh_rotation_lock_seconds,
    )
    state.audit = AuditLog(store, ttl_seconds=settings.audit_event_ttl_seconds, clock=clock)
    state.lockdown = LockdownManager(store, state.devices, state.sessions, state.audit, clock=clock)
    state.login = LoginOrchestrator(
        users=user_store,
        store=store,
        devices=state.devices,
        otp=state.otp,
        totp=state.totp,
        magic_links=state.magic_links,
        sessions=state.sessions,
        audit=state.audit,
        mailer=mailer,
        tasks=tasks,
        frontend_base_url=settings.frontend_base_url,
        otp_ttl_seconds=settings.otp_ttl_seconds,
        magic_link_ttl_seconds=settings.magic_link_ttl_seconds,
        magic_link_access_ttl_seconds=settings.magic_link_access_token_expire_seconds,
        login_challenge_ttl_seconds=settings.login_challenge_ttl_seconds,
        clock=clock,
    )
