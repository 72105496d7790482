"""
auth/magic_link.py -- Single-use, device-bound sign-in links.

Issue: a 256-bit URL-safe token names a ticket holding the user, the email
    it was sent to, and the fingerprint of the device that asked for it.

Redeem: the ticket is checked in a fixed order so each failure has exactly one
    meaning:

        absent               -> NotFoundError
        already used         -> AlreadyUsedError
        past expires_at      -> ticket deleted, ExpiredError
        fingerprint too far  -> MismatchError (ticket left usable)
        otherwise            -> ticket marked used and re-written

The store keeps a ticket for its lifetime plus a retention window, so a link
clicked shortly after expiry reports "expired" rather than "not found".
Used tickets are kept for the remaining retention so a replay still reports
"already used".
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from urllib.parse import quote

from auth import keys
from auth.fingerprint import is_similar, similarity
from auth.models import DeviceFingerprint, MagicLink, MagicLinkTicket, utcnow
from core.errors import AlreadyUsedError, ExpiredError, MismatchError, NotFoundError, token_hint
from ephemeral.store import EphemeralStore

logger = logging.getLogger("permitauth.auth.magic_link")


def generate_token() -> str:
    return secrets.token_urlsafe(32)


class MagicLinkService:
    def __init__(
        self,
        store: EphemeralStore,
        base_url: str,
        frontend_base_url: str,
        ttl_seconds: int = 15 * 60,
        retention_seconds: int = 60 * 60,
        similarity_threshold: float = 0.7,
        similarity_weights: Mapping[str, float] | None = None,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._base_url = base_url.rstrip("/")
        self._frontend_base_url = frontend_base_url.rstrip("/")
        self._ttl = ttl_seconds
        self._retention = max(retention_seconds, 0)
        self._threshold = similarity_threshold
        self._weights = similarity_weights
        self._clock = clock
        self._log = log or logger

    def _store_ticket(self, ticket: MagicLinkTicket, now: datetime) -> None:
        remaining = (ticket.expires_at - now).total_seconds() + self._retention
        self._store.set_json(keys.magic_link(ticket.token), ticket.to_dict(), ttl=remaining)

    def issue(self, user_id: str, email: str, fingerprint: DeviceFingerprint) -> MagicLink:
        now = self._clock()
        token = generate_token()
        ticket = MagicLinkTicket(
            token=token,
            user_id=user_id,
            email=email,
            fingerprint=fingerprint,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl),
        )
        self._store_ticket(ticket, now)
        quoted = quote(token, safe="")
        self._log.info("Issued magic link %s for user %s", token_hint(token), user_id)
        return MagicLink(
            token=token,
            url=f"{self._frontend_base_url}/auth/magic-login?token={quoted}",
            verification_url=f"{self._base_url}/api/v1/auth/magiclink/verify?token={quoted}",
            expires_at=ticket.expires_at,
        )

    def redeem(self, token: str, fingerprint: DeviceFingerprint) -> tuple[MagicLinkTicket, str]:
        """Consume a ticket. Returns it with the frontend callback URL."""
        key = keys.magic_link(token)
        data = self._store.get_json(key)
        if not isinstance(data, dict):
            self._log.warning("Magic link %s not found", token_hint(token))
            raise NotFoundError(f"magic link {token_hint(token)} not found", "Invalid or expired link.")
        ticket = MagicLinkTicket.from_dict(data)
        ticket.token = token

        if ticket.used:
            self._log.warning("Replay of used magic link %s for user %s", token_hint(token), ticket.user_id)
            raise AlreadyUsedError(f"magic link {token_hint(token)} already used")

        now = self._clock()
        if now > ticket.expires_at:
            self._store.delete(key)
            self._log.info("Magic link %s expired at %s", token_hint(token), ticket.expires_at.isoformat())
            raise ExpiredError(f"magic link {token_hint(token)} expired")

        if not is_similar(ticket.fingerprint, fingerprint, self._threshold, self._weights):
            score = similarity(ticket.fingerprint, fingerprint, self._weights)
            self._log.warning(
                "Magic link %s redeemed from a different device (similarity %.2f < %.2f)",
                token_hint(token),
                score,
                self._threshold,
            )
            raise MismatchError(f"fingerprint similarity {score:.2f} below threshold")

        ticket.used = True
        self._store_ticket(ticket, now)
        self._log.info("Magic link %s redeemed by user %s", token_hint(token), ticket.user_id)
        redirect = f"{self._frontend_base_url}/auth/magic-callback?token={quote(token, safe='')}"
        return ticket, redirect

    def invalidate(self, token: str) -> None:
        self._store.delete(keys.magic_link(token))
