"""
ephemeral/store.py -- Redis-backed ephemeral key-value store.

Every short-lived auth record (OTP challenges, magic-link tickets, refresh
tokens, trusted devices, lockdown flags, audit events) lives here under a
namespaced key, optionally with a TTL. The store is the single source of
truth shared across requests; nothing auth-related is cached in-process.

Usage:
    store = EphemeralStore.from_url("redis://localhost:6379/0", timeout=5.0)
    store.set_json("otp:login_otp:42", {"otp": "123456"}, ttl=300)
    store.get_json("otp:login_otp:42")        # returns dict or None
    for key in store.scan("trusted_device:42:*"):
        ...
    store.close()

Error handling:
  Any redis-py failure (connection refused, timeout, protocol error) is
  re-raised as core.errors.DependencyError so services never see driver
  exceptions. No retry is performed here.

Iteration:
  scan() walks the keyspace with cursor-based SCAN in pages of scan_count.
  KEYS is never used -- it blocks the server for the whole keyspace.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

import redis

from core.errors import DependencyError

logger = logging.getLogger("permitauth.store")

_GLOB_SPECIAL = "\\*?[]"


def escape_pattern(value: str) -> str:
    """Escape glob metacharacters so a user id can be embedded in a SCAN pattern."""
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in value)


def _ttl_seconds(ttl: int | float | timedelta | None) -> int | None:
    if ttl is None:
        return None
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
    seconds = int(seconds)
    # Redis rejects EX <= 0; a record whose lifetime is already spent should
    # still be readable for one second rather than fail the write.
    return max(seconds, 1)


class EphemeralStore:
    """Thin adapter over a redis.Redis client with typed errors and JSON helpers.

    The client must be created with decode_responses=True so every value comes
    back as str. Tests pass a fakeredis.FakeRedis instance.
    """

    def __init__(self, client: redis.Redis, scan_count: int = 100, log: logging.Logger | None = None) -> None:
        self._client = client
        self._scan_count = scan_count
        self._log = log or logger

    @classmethod
    def from_url(cls, url: str, timeout: float = 5.0, scan_count: int = 100) -> "EphemeralStore":
        """Build a store from a redis:// URL with a per-call socket timeout."""
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, scan_count=scan_count)

    @contextmanager
    def _guard(self, op: str, key: str = ""):
        try:
            yield
        except redis.RedisError as exc:
            self._log.error("Store %s failed for key %r: %s", op, key, exc)
            raise DependencyError(f"ephemeral store {op} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        with self._guard("get", key):
            return self._client.get(key)

    def set(self, key: str, value: str, ttl: int | float | timedelta | None = None) -> None:
        """Write value under key. ttl=None persists the key with no expiry."""
        with self._guard("set", key):
            self._client.set(key, value, ex=_ttl_seconds(ttl))

    def set_if_absent(self, key: str, value: str, ttl: int | float | timedelta | None = None) -> bool:
        """Atomically write value only if key does not exist. Returns True if written."""
        with self._guard("set_if_absent", key):
            return bool(self._client.set(key, value, ex=_ttl_seconds(ttl), nx=True))

    def delete(self, *keys: str) -> int:
        """Delete one or more keys. Returns the number of keys actually removed."""
        if not keys:
            return 0
        with self._guard("delete", keys[0]):
            return int(self._client.delete(*keys))

    def increment(self, key: str, ttl: int | float | timedelta | None = None) -> int:
        """Atomically add one to an integer counter. ttl is applied when the counter is created."""
        with self._guard("increment", key):
            value = int(self._client.incr(key))
            if value == 1 and ttl is not None:
                self._client.expire(key, _ttl_seconds(ttl))
        return value

    def ttl(self, key: str) -> int | None:
        """Remaining lifetime in seconds; None if the key has no expiry or does not exist."""
        with self._guard("ttl", key):
            remaining = self._client.ttl(key)
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    def scan(self, pattern: str) -> Iterator[str]:
        """Yield keys matching pattern using cursor-based SCAN.

        Keys are yielded page by page; the full result set is never held in
        memory. A key may be yielded more than once if the keyspace is resized
        mid-iteration (SCAN guarantee) -- callers must be idempotent.
        """
        with self._guard("scan", pattern):
            cursor = 0
            while True:
                cursor, keys = self._client.scan(cursor=cursor, match=pattern, count=self._scan_count)
                yield from keys
                if cursor == 0:
                    break

    def ping(self) -> bool:
        with self._guard("ping"):
            return bool(self._client.ping())

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # JSON helpers
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Any | None:
        """Return the decoded JSON value, or None if absent or not valid JSON.

        Corrupt entries are logged and treated as missing -- callers decide
        whether absence is an error.
        """
        raw = self.get(key)
        if raw is None or raw == "":
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self._log.warning("Discarding undecodable JSON value at key %r", key)
            return None

    def set_json(self, key: str, value: Any, ttl: int | float | timedelta | None = None) -> None:
        self.set(key, json.dumps(value, separators=(",", ":")), ttl=ttl)
