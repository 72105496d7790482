"""
tests/helpers.py -- Plain test helpers shared by conftest.py and the test modules.

Nothing here imports the app; fixtures live in conftest.py.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone

from auth.models import DeviceFingerprint

STRONG_PASSWORD = "Correct-Horse-9"

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FrozenClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 2, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingEmailSender:
    """EmailSender that records (to, subject, body) instead of delivering."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, body: str) -> None:
        with self._lock:
            self.sent.append((to, subject, body))

    def last(self, subject: str | None = None) -> tuple[str, str, str]:
        matching = [m for m in self.sent if subject is None or m[1] == subject]
        assert matching, f"no email with subject {subject!r} was sent"
        return matching[-1]


def extract_code(body: str) -> str:
    match = re.search(r"\b(\d{6})\b", body)
    assert match, "no 6-digit code in email body"
    return match.group(1)


def extract_query_param(body: str, name: str) -> str:
    match = re.search(rf"[?&]{name}=([A-Za-z0-9_\-%]+)", body)
    assert match, f"no {name} parameter in email body"
    return match.group(1)


def make_fingerprint(**overrides) -> DeviceFingerprint:
    """A realistic desktop Chrome fingerprint; keyword overrides change single attributes."""
    values = dict(
        user_agent=CHROME_UA,
        screen_resolution="1920x1080",
        timezone="Europe/Berlin",
        language="en-US",
        platform="MacIntel",
        cookie_enabled=True,
        ip_address="203.0.113.7",
        plugins="PDF Viewer,Chrome PDF Viewer",
        canvas_fingerprint="canvas-3f9a",
        webgl_fingerprint="webgl-77c1",
        color_depth=24,
        hardware_concurrency=8,
        device_memory=8.0,
        max_touch_points=0,
    )
    values.update(overrides)
    return DeviceFingerprint(**values)


def fingerprint_json(**overrides) -> dict:
    """make_fingerprint() as a request body fragment."""
    return make_fingerprint(**overrides).to_dict()
