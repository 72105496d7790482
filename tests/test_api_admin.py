"""
tests/test_api_admin.py -- Integration tests for trusted-device and admin routes.

Covers:
  - device listing/removal for the caller, IDOR guard on other users
  - admin session listing shows token hints only
  - admin revocation, lockdown/unlock, security event trail
  - non-admins get 403 on every admin route
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.helpers import make_fingerprint


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _user_token(client: TestClient, user_id: str) -> str:
    return client.app.state.sessions.issue_pair(user_id).access_token


class TestDevices:
    def test_list_and_remove_own_device(self, api_client, create_user) -> None:
        client, _, _ = api_client
        user = create_user()
        device = client.app.state.devices.register(user.id, make_fingerprint())
        headers = _bearer(_user_token(client, user.id))

        listed = client.get("/api/v1/auth/devices", headers=headers)
        assert listed.status_code == 200
        [entry] = listed.json()
        assert entry["device_id"] == device.device_id
        assert entry["platform"] == "MacIntel"

        resp = client.request("DELETE", "/api/v1/auth/devices", json={"device_id": device.device_id}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"removed": 1}
        assert client.app.state.devices.list(user.id) == []
        assert client.app.state.audit.list(user.id)[0].event_type == "device_removed"

    def test_remove_missing_device(self, api_client, create_user) -> None:
        client, _, _ = api_client
        user = create_user()
        resp = client.request(
            "DELETE",
            "/api/v1/auth/devices",
            json={"device_id": "v1:nope"},
            headers=_bearer(_user_token(client, user.id)),
        )
        assert resp.status_code == 404

    def test_remove_requires_a_target(self, api_client, create_user) -> None:
        client, _, _ = api_client
        user = create_user()
        resp = client.request("DELETE", "/api/v1/auth/devices", json={}, headers=_bearer(_user_token(client, user.id)))
        assert resp.status_code == 400

    def test_cannot_touch_another_users_devices(self, api_client, create_user) -> None:
        client, _, _ = api_client
        alice = create_user()
        bob = create_user("bob@example.com")
        client.app.state.devices.register(bob.id, make_fingerprint())
        headers = _bearer(_user_token(client, alice.id))

        listed = client.get(f"/api/v1/auth/trusted-devices/{bob.id}", headers=headers)
        assert listed.status_code == 403
        removed = client.request(
            "DELETE", "/api/v1/auth/devices", json={"user_id": bob.id, "remove_all": True}, headers=headers
        )
        assert removed.status_code == 403
        assert len(client.app.state.devices.list(bob.id)) == 1

    def test_admin_removes_all_devices_of_a_user(self, api_client, create_user) -> None:
        client, admin_token, _ = api_client
        user = create_user()
        client.app.state.devices.register(user.id, make_fingerprint())
        client.app.state.devices.register(user.id, make_fingerprint(screen_resolution="390x844"))

        listed = client.get(f"/api/v1/auth/trusted-devices/{user.id}", headers=_bearer(admin_token))
        assert len(listed.json()) == 2
        resp = client.request(
            "DELETE",
            "/api/v1/auth/devices",
            json={"user_id": user.id, "remove_all": True},
            headers=_bearer(admin_token),
        )
        assert resp.json() == {"removed": 2}


class TestAdminSessions:
    def test_listing_shows_hints_only(self, api_client, create_user) -> None:
        client, admin_token, admin_id = api_client
        user = create_user()
        pair = client.app.state.sessions.issue_pair(user.id)

        resp = client.get("/api/v1/admin/sessions", headers=_bearer(admin_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_sessions"] == 2
        by_user = {u["user_id"]: u for u in data["users"]}
        assert set(by_user) == {admin_id, user.id}
        assert by_user[user.id]["email"] == user.email
        assert by_user[user.id]["refresh_token_hints"] == [pair.refresh_token[:8] + "..."]
        assert pair.refresh_token not in resp.text

    def test_revoke_one_session(self, api_client, create_user) -> None:
        client, admin_token, _ = api_client
        user = create_user()
        pair = client.app.state.sessions.issue_pair(user.id)

        resp = client.delete(f"/api/v1/admin/sessions/{pair.refresh_token}", headers=_bearer(admin_token))
        assert resp.status_code == 200
        again = client.delete(f"/api/v1/admin/sessions/{pair.refresh_token}", headers=_bearer(admin_token))
        assert again.status_code == 404

    def test_revoke_all_sessions_of_a_user(self, api_client, create_user) -> None:
        client, admin_token, _ = api_client
        user = create_user()
        for _ in range(2):
            client.app.state.sessions.issue_pair(user.id)

        resp = client.delete(f"/api/v1/admin/users/{user.id}/sessions", headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Revoked 2 session(s)."
        none_left = client.delete(f"/api/v1/admin/users/{user.id}/sessions", headers=_bearer(admin_token))
        assert none_left.status_code == 404

    def test_unknown_user(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.delete("/api/v1/admin/users/nobody/sessions", headers=_bearer(admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "User not found."


class TestAdminLockdown:
    def test_lock_and_unlock(self, api_client, clock, create_user) -> None:
        client, admin_token, admin_id = api_client
        user = create_user()
        client.app.state.devices.register(user.id, make_fingerprint())
        user_token = _user_token(client, user.id)

        locked = client.post(
            f"/api/v1/admin/users/{user.id}/lock", json={"reason": "phishing report"}, headers=_bearer(admin_token)
        )
        assert locked.status_code == 200
        assert locked.json()["locked"] is True
        assert locked.json()["reason"] == "phishing report"
        assert client.app.state.devices.list(user.id) == []
        assert client.get("/api/v1/auth/me", headers=_bearer(user_token)).status_code == 403

        clock.advance(seconds=5)
        unlocked = client.post(f"/api/v1/admin/users/{user.id}/unlock", headers=_bearer(admin_token))
        assert unlocked.status_code == 200
        assert unlocked.json()["locked"] is False
        assert client.get("/api/v1/auth/me", headers=_bearer(user_token)).status_code == 200

        events = client.get(f"/api/v1/admin/users/{user.id}/security-events", headers=_bearer(admin_token)).json()
        assert [e["event_type"] for e in events] == ["account_unlocked", "account_lockdown"]
        assert events[1]["details"]["actor_id"] == admin_id

    def test_unlock_when_not_locked(self, api_client, create_user) -> None:
        client, admin_token, _ = api_client
        user = create_user()
        resp = client.post(f"/api/v1/admin/users/{user.id}/unlock", headers=_bearer(admin_token))
        assert resp.status_code == 404

    def test_admin_cannot_lock_self(self, api_client) -> None:
        client, admin_token, admin_id = api_client
        resp = client.post(
            f"/api/v1/admin/users/{admin_id}/lock", json={"reason": "oops"}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 400


class TestAdminAuthorization:
    def test_non_admin_is_forbidden(self, api_client, create_user) -> None:
        client, _, admin_id = api_client
        user = create_user()
        headers = _bearer(_user_token(client, user.id))
        assert client.get("/api/v1/admin/sessions", headers=headers).status_code == 403
        assert (
            client.post(f"/api/v1/admin/users/{admin_id}/lock", json={"reason": "x"}, headers=headers).status_code
            == 403
        )
        assert client.get(f"/api/v1/admin/users/{admin_id}/security-events", headers=headers).status_code == 403

    def test_anonymous_is_unauthorized(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/admin/sessions").status_code == 401
