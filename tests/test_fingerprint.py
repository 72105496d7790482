"""
tests/test_fingerprint.py -- Unit tests for device identity and similarity scoring.

Covers:
  - user agent normalization to browser x OS families (versions ignored)
  - device_id determinism, version prefix, and the excluded attributes
  - similarity ratio over nine attributes and weighted variants
  - describe_device label format
"""

from __future__ import annotations

from datetime import datetime, timezone

from auth.fingerprint import (
    DEVICE_ID_VERSION,
    browser_info,
    describe_device,
    device_id,
    is_similar,
    normalize_user_agent,
    similarity,
)
from tests.helpers import CHROME_UA, make_fingerprint

FIREFOX_WIN = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
EDGE_WIN = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.2210.91"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)


class TestUserAgentNormalization:
    def test_chrome_on_macos(self) -> None:
        assert normalize_user_agent(CHROME_UA) == "chrome_macos"

    def test_edge_is_not_reported_as_chrome(self) -> None:
        assert normalize_user_agent(EDGE_WIN) == "edge_windows"

    def test_safari_on_iphone(self) -> None:
        assert normalize_user_agent(SAFARI_IPHONE) == "safari_ios"

    def test_firefox_on_windows(self) -> None:
        assert normalize_user_agent(FIREFOX_WIN) == "firefox_windows"

    def test_unknown_agent_falls_back_to_other(self) -> None:
        assert normalize_user_agent("curl/8.4.0") == "other_other"

    def test_browser_info_extracts_major_version(self) -> None:
        assert browser_info(CHROME_UA) == ("Chrome", "120")
        assert browser_info("") == ("Unknown Browser", "")


class TestDeviceId:
    def test_same_fingerprint_same_id(self) -> None:
        assert device_id(make_fingerprint()) == device_id(make_fingerprint())

    def test_id_is_versioned_sha256(self) -> None:
        did = device_id(make_fingerprint())
        prefix, digest = did.split(":")
        assert prefix == DEVICE_ID_VERSION
        assert len(digest) == 64

    def test_browser_update_keeps_identity(self) -> None:
        """A Chrome minor/major bump must not mint a new device."""
        updated = CHROME_UA.replace("Chrome/120.0.0.0", "Chrome/121.0.6167.85")
        assert device_id(make_fingerprint()) == device_id(make_fingerprint(user_agent=updated))

    def test_ip_and_plugins_are_excluded(self) -> None:
        base = device_id(make_fingerprint())
        assert device_id(make_fingerprint(ip_address="198.51.100.1")) == base
        assert device_id(make_fingerprint(plugins="")) == base

    def test_device_memory_precision_is_normalized(self) -> None:
        assert device_id(make_fingerprint(device_memory=8)) == device_id(make_fingerprint(device_memory=8.0))

    def test_stable_attribute_change_changes_identity(self) -> None:
        assert device_id(make_fingerprint()) != device_id(make_fingerprint(screen_resolution="2560x1440"))
        assert device_id(make_fingerprint()) != device_id(make_fingerprint(user_agent=FIREFOX_WIN))


class TestSimilarity:
    def test_identical_fingerprints_score_one(self) -> None:
        assert similarity(make_fingerprint(), make_fingerprint()) == 1.0

    def test_two_of_nine_differ(self) -> None:
        current = make_fingerprint(plugins="", screen_resolution="1280x720")
        assert abs(similarity(make_fingerprint(), current) - 7 / 9) < 1e-9
        assert is_similar(make_fingerprint(), current, 0.7)

    def test_three_of_nine_differ_is_below_threshold(self) -> None:
        current = make_fingerprint(plugins="", screen_resolution="1280x720", timezone="UTC")
        assert abs(similarity(make_fingerprint(), current) - 6 / 9) < 1e-9
        assert not is_similar(make_fingerprint(), current, 0.7)

    def test_ip_address_does_not_count(self) -> None:
        assert similarity(make_fingerprint(), make_fingerprint(ip_address="10.0.0.1")) == 1.0

    def test_weights_shift_the_score(self) -> None:
        weights = {"canvas_fingerprint": 3.0, "webgl_fingerprint": 1.0}
        current = make_fingerprint(canvas_fingerprint="other")
        assert similarity(make_fingerprint(), current, weights) == 0.25

    def test_zero_total_weight_scores_zero(self) -> None:
        assert similarity(make_fingerprint(), make_fingerprint(), {"user_agent": 0.0}) == 0.0


def test_describe_device_label() -> None:
    when = datetime(2026, 1, 2, 9, 30, tzinfo=timezone.utc)
    assert describe_device(make_fingerprint(), when) == "MacIntel/Chrome Registered on Jan 2, 2026"
    assert describe_device(make_fingerprint(platform="", user_agent=""), when).startswith("Unknown/Unknown Browser")
