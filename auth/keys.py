"""
auth/keys.py -- Namespaced key layout for auth records in the ephemeral store.

One place for every key format so that writers, readers, and scanners can
never drift apart. Values that come from clients or users are embedded as-is
in point lookups; SCAN patterns escape them first (ephemeral.store.escape_pattern).

    refresh_token:<token>                 -> user id
    refresh_lock:<token>                  -> rotation mutex
    otp:<purpose>:<user_id>               -> {otp, pre_token}
    otp_attempts:<purpose>:<user_id>      -> failure counter
    totp:<user_id>                        -> {secret, enabled, created_at}
    magic_link:<token>                    -> ticket JSON
    trusted_device:<user_id>:<device_id>  -> device JSON
    security_lockdown:<user_id>           -> {locked_at, reason, status}
    security_event:<user_id>:<ts>:<nonce> -> audit event JSON
    login_pending:<user_id>               -> pending second-factor context
"""

from __future__ import annotations

from ephemeral.store import escape_pattern


def refresh_token(token: str) -> str:
    return f"refresh_token:{token}"


def refresh_token_pattern() -> str:
    return "refresh_token:*"


def refresh_lock(token: str) -> str:
    return f"refresh_lock:{token}"


def otp(purpose_key: str) -> str:
    return f"otp:{purpose_key}"


def otp_attempts(purpose_key: str) -> str:
    return f"otp_attempts:{purpose_key}"


def totp(user_id: str) -> str:
    return f"totp:{user_id}"


def magic_link(token: str) -> str:
    return f"magic_link:{token}"


def trusted_device(user_id: str, device_id: str) -> str:
    return f"trusted_device:{user_id}:{device_id}"


def trusted_device_pattern(user_id: str) -> str:
    return f"trusted_device:{escape_pattern(user_id)}:*"


def lockdown(user_id: str) -> str:
    return f"security_lockdown:{user_id}"


def security_event(user_id: str, unix_ts: int, nonce: str) -> str:
    return f"security_event:{user_id}:{unix_ts}:{nonce}"


def security_event_pattern(user_id: str) -> str:
    return f"security_event:{escape_pattern(user_id)}:*"


def login_pending(user_id: str) -> str:
    return f"login_pending:{user_id}"
