"""
auth/fingerprint.py -- Device fingerprint normalization, identity, and similarity.

Two different questions are answered here:

  "Is this the same device?"  -> device_id()
      A versioned SHA-256 over the *stable* subset of the fingerprint. The
      user agent is reduced to coarse browser x OS families so a browser
      auto-update does not mint a new identity. IP address and plugin list
      are excluded: both churn often enough to cause false negatives.

  "Is this close enough to the device that asked for the link?" -> similarity()
      A weighted match ratio over nine raw attributes, used when a magic link
      is redeemed. Tolerates minor drift (a plugin installed between issuance
      and click) while rejecting a different machine.

No error path: unknown browsers and operating systems land in "other".
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping
from datetime import datetime

from auth.models import DeviceFingerprint

# Bump when the field list or normalization changes; old identities stay
# distinguishable from new ones instead of silently colliding.
DEVICE_ID_VERSION = "v1"

SIMILARITY_ATTRIBUTES: tuple[str, ...] = (
    "user_agent",
    "screen_resolution",
    "timezone",
    "language",
    "platform",
    "cookie_enabled",
    "plugins",
    "canvas_fingerprint",
    "webgl_fingerprint",
)

# Order matters: "edg" and "opr" UAs also contain "chrome", and Chrome UAs
# also contain "safari".
_BROWSER_RULES: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("edge", ("edg",), ()),
    ("opera", ("opr/", "opera"), ()),
    ("chrome", ("chrome", "crios"), ()),
    ("firefox", ("firefox", "fxios"), ()),
    ("safari", ("safari",), ("chrome", "chromium")),
)

_OS_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("android", ("android",)),
    ("ios", ("iphone", "ipad", "ipod")),
    ("windows", ("windows",)),
    ("macos", ("mac os x", "macintosh", "macos")),
    ("linux", ("linux", "x11")),
)

_BROWSER_VERSION = {
    "chrome": re.compile(r"(?:chrome|crios)/(\d+)"),
    "edge": re.compile(r"edg[a-z]*/(\d+)"),
    "firefox": re.compile(r"(?:firefox|fxios)/(\d+)"),
    "safari": re.compile(r"version/(\d+)"),
    "opera": re.compile(r"(?:opera|opr)/(\d+)"),
}


def browser_family(user_agent: str) -> str:
    ua = user_agent.lower()
    for family, needles, excluded in _BROWSER_RULES:
        if any(n in ua for n in needles) and not any(x in ua for x in excluded):
            return family
    return "other"


def os_family(user_agent: str) -> str:
    ua = user_agent.lower()
    for family, needles in _OS_RULES:
        if any(n in ua for n in needles):
            return family
    return "other"


def normalize_user_agent(user_agent: str) -> str:
    """Reduce a user agent to "<browser>_<os>", ignoring version numbers."""
    return f"{browser_family(user_agent)}_{os_family(user_agent)}"


def browser_info(user_agent: str) -> tuple[str, str]:
    """Return a display name and major version, e.g. ("Chrome", "120")."""
    family = browser_family(user_agent)
    if family == "other":
        return "Unknown Browser", ""
    match = _BROWSER_VERSION[family].search(user_agent.lower())
    return family.capitalize(), match.group(1) if match else "Unknown"


def device_id(fp: DeviceFingerprint) -> str:
    """Deterministic, versioned identity for the stable part of a fingerprint."""
    parts = (
        normalize_user_agent(fp.user_agent),
        fp.screen_resolution,
        fp.platform,
        fp.canvas_fingerprint,
        fp.webgl_fingerprint,
        "true" if fp.cookie_enabled else "false",
        fp.timezone,
        fp.language,
        str(int(fp.color_depth)),
        str(int(fp.hardware_concurrency)),
        # Fixed precision so 8 and 8.0 hash identically.
        f"{float(fp.device_memory):.2f}",
        str(int(fp.max_touch_points)),
    )
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"{DEVICE_ID_VERSION}:{digest}"


def similarity(
    stored: DeviceFingerprint,
    current: DeviceFingerprint,
    weights: Mapping[str, float] | None = None,
) -> float:
    """Weighted share of SIMILARITY_ATTRIBUTES that match exactly, in [0, 1]."""
    weights = weights or {name: 1.0 for name in SIMILARITY_ATTRIBUTES}
    total = 0.0
    matched = 0.0
    for name in SIMILARITY_ATTRIBUTES:
        weight = float(weights.get(name, 0.0))
        total += weight
        if getattr(stored, name) == getattr(current, name):
            matched += weight
    if total <= 0:
        return 0.0
    return matched / total


def is_similar(
    stored: DeviceFingerprint,
    current: DeviceFingerprint,
    threshold: float,
    weights: Mapping[str, float] | None = None,
) -> bool:
    return similarity(stored, current, weights) >= threshold


def describe_device(fp: DeviceFingerprint, now: datetime) -> str:
    """Human-readable label, e.g. "MacIntel/Chrome Registered on Jan 2, 2026"."""
    browser, _ = browser_info(fp.user_agent)
    platform = fp.platform or "Unknown"
    return f"{platform}/{browser} Registered on {now.strftime('%b')} {now.day}, {now.year}"
