"""
tests/test_totp.py -- Unit tests for TotpManager enrollment and verification.

Codes are generated with pyotp at the injected clock's time so the tests do
not depend on wall-clock 30-second windows.
"""

from __future__ import annotations

from datetime import timedelta

import pyotp
import pytest

from auth import keys
from auth.totp import TotpManager
from core.errors import ConflictError, NotFoundError, UnauthorizedError


@pytest.fixture
def totp(store, clock) -> TotpManager:
    return TotpManager(store, issuer="AcrePoint", enrollment_ttl_seconds=600, valid_window=1, clock=clock)


def _code(secret: str, when) -> str:
    return pyotp.TOTP(secret).at(when)


class TestEnrollment:
    def test_begin_returns_secret_uri_and_manual_key(self, totp) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        assert len(setup.secret) == 32
        assert setup.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=AcrePoint" in setup.provisioning_uri
        assert setup.manual_key.replace(" ", "") == setup.secret
        assert len(setup.manual_key.split(" ")) == 8

    def test_pending_enrollment_has_ttl(self, totp, store) -> None:
        totp.begin_enrollment("u1", "alice@example.com")
        assert 590 <= store.ttl(keys.totp("u1")) <= 600
        assert totp.status("u1") == {"enabled": False, "pending": True}
        assert totp.is_enabled("u1") is False

    def test_confirm_enables_and_persists(self, totp, store, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        totp.confirm("u1", _code(setup.secret, clock()))
        assert totp.is_enabled("u1") is True
        assert store.ttl(keys.totp("u1")) is None
        assert totp.status("u1") == {"enabled": True, "pending": False}

    def test_confirm_with_wrong_code(self, totp, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        wrong = _code(setup.secret, clock() + timedelta(minutes=10))
        with pytest.raises(UnauthorizedError):
            totp.confirm("u1", wrong)
        assert totp.is_enabled("u1") is False

    def test_confirm_without_enrollment(self, totp) -> None:
        with pytest.raises(NotFoundError):
            totp.confirm("u1", "123456")

    def test_begin_refused_when_enabled(self, totp, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        totp.confirm("u1", _code(setup.secret, clock()))
        with pytest.raises(ConflictError):
            totp.begin_enrollment("u1", "alice@example.com")

    def test_restart_pending_enrollment_replaces_secret(self, totp) -> None:
        first = totp.begin_enrollment("u1", "alice@example.com")
        second = totp.begin_enrollment("u1", "alice@example.com")
        assert first.secret != second.secret


class TestValidate:
    def test_adjacent_window_accepted(self, totp, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        totp.confirm("u1", _code(setup.secret, clock()))
        assert totp.validate("u1", _code(setup.secret, clock() - timedelta(seconds=30)))
        assert totp.validate("u1", _code(setup.secret, clock() + timedelta(seconds=30)))

    def test_distant_window_rejected(self, totp, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        totp.confirm("u1", _code(setup.secret, clock()))
        assert not totp.validate("u1", _code(setup.secret, clock() + timedelta(minutes=5)))

    @pytest.mark.parametrize("code", ["", "abcdef", "12 34"])
    def test_malformed_codes(self, totp, code: str) -> None:
        totp.begin_enrollment("u1", "alice@example.com")
        assert totp.validate("u1", code) is False

    def test_spaces_are_ignored(self, totp, clock) -> None:
        setup = totp.begin_enrollment("u1", "alice@example.com")
        code = _code(setup.secret, clock())
        assert totp.validate("u1", f"{code[:3]} {code[3:]}")

    def test_unknown_user(self, totp) -> None:
        assert totp.validate("nobody", "123456") is False


def test_disable(totp, clock) -> None:
    setup = totp.begin_enrollment("u1", "alice@example.com")
    totp.confirm("u1", _code(setup.secret, clock()))
    assert totp.disable("u1") is True
    assert totp.disable("u1") is False
    assert totp.status("u1") == {"enabled": False, "pending": False}
