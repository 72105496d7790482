"""
tests/test_devices.py -- Unit tests for DeviceTrustStore.

Covers:
  - register/is_trusted round trip keyed by device identity
  - sliding TTL: a trust check refreshes last_used_at
  - lockdown fails closed even for a registered device
  - list ordering, corrupt-record handling, remove and remove_all
"""

from __future__ import annotations

from auth import keys
from auth.devices import DeviceTrustStore
from auth.fingerprint import device_id
from tests.helpers import make_fingerprint


class TestTrust:
    def test_unknown_device_is_untrusted(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        decision = devices.is_trusted("u1", make_fingerprint())
        assert decision.trusted is False
        assert decision.device is None
        assert decision.locked is False

    def test_registered_device_is_trusted(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        registered = devices.register("u1", make_fingerprint())
        assert registered.device_name == "MacIntel/Chrome Registered on Jan 2, 2026"

        decision = devices.is_trusted("u1", make_fingerprint(ip_address="198.51.100.9"))
        assert decision.trusted is True
        assert decision.device.device_id == registered.device_id

    def test_device_is_scoped_to_user(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        devices.register("u1", make_fingerprint())
        assert devices.is_trusted("u2", make_fingerprint()).trusted is False

    def test_trust_check_refreshes_last_used_and_ttl(self, store, clock) -> None:
        devices = DeviceTrustStore(store, device_ttl_seconds=3600, clock=clock)
        registered = devices.register("u1", make_fingerprint())
        clock.advance(minutes=30)

        devices.is_trusted("u1", make_fingerprint())

        stored = devices.get("u1", registered.device_id)
        assert stored.last_used_at == clock()
        assert stored.registered_at == registered.registered_at
        assert 3500 < store.ttl(keys.trusted_device("u1", registered.device_id)) <= 3600

    def test_zero_ttl_means_no_expiry(self, store, clock) -> None:
        devices = DeviceTrustStore(store, device_ttl_seconds=0, clock=clock)
        registered = devices.register("u1", make_fingerprint())
        assert store.ttl(keys.trusted_device("u1", registered.device_id)) is None

    def test_lockdown_fails_closed(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        devices.register("u1", make_fingerprint())
        store.set_json(keys.lockdown("u1"), {"status": "locked"})

        decision = devices.is_trusted("u1", make_fingerprint())
        assert decision.trusted is False
        assert decision.locked is True

    def test_corrupt_record_is_untrusted(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        store.set_json(keys.trusted_device("u1", device_id(make_fingerprint())), {"device_name": "x"})
        assert devices.is_trusted("u1", make_fingerprint()).trusted is False


class TestListAndRemove:
    def test_list_most_recent_first(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        laptop = devices.register("u1", make_fingerprint())
        clock.advance(minutes=5)
        phone = devices.register("u1", make_fingerprint(screen_resolution="390x844", max_touch_points=5))

        assert [d.device_id for d in devices.list("u1")] == [phone.device_id, laptop.device_id]
        assert devices.list("u2") == []

    def test_list_skips_corrupt_entries(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        devices.register("u1", make_fingerprint())
        store.set(keys.trusted_device("u1", "v1:broken"), "{not json")
        assert len(devices.list("u1")) == 1

    def test_remove_single_device(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        registered = devices.register("u1", make_fingerprint())
        assert devices.remove("u1", registered.device_id) is True
        assert devices.remove("u1", registered.device_id) is False
        assert devices.is_trusted("u1", make_fingerprint()).trusted is False

    def test_remove_all_only_touches_one_user(self, store, clock) -> None:
        devices = DeviceTrustStore(store, clock=clock)
        for n in range(3):
            devices.register("u1", make_fingerprint(screen_resolution=f"{1000 + n}x800"))
        devices.register("u2", make_fingerprint())

        assert devices.remove_all("u1") == 3
        assert devices.list("u1") == []
        assert len(devices.list("u2")) == 1
