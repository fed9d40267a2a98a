"""
Auth API tests — login, refresh rotation, logout, /me, API keys, token blacklist.

Test blocks:
  1. Login — credentials, site choice, failure trail
  2. Refresh & logout — rotation and revocation
  3. /me — principal, permissions, sites
  4. API keys — creation limits, key authentication, revocation
  5. Token blacklist — expiry-bound entries
"""

import pytest

from sitecms.models import db as _db
from sitecms.models.audit import ActivityLog
from sitecms.services import site_service
from sitecms.services.jwt_service import TokenBlacklist
from conftest import TEST_PASSWORD, auth_headers, make_user


def _login(client, **body):
    return client.post("/api/v1/auth/login", json=body)


# ═════════════════════════════════════════════════════════════════════════════
# 1. LOGIN
# ═════════════════════════════════════════════════════════════════════════════


class TestLogin:
    def test_login_by_username(self, client, site, editor):
        res = _login(client, username="eddie", password=TEST_PASSWORD)
        assert res.status_code == 200
        body = res.get_json()
        assert body["token_type"] == "Bearer"
        assert body["principal"]["site_id"] == site.id
        assert body["principal"]["role"] == "editor"
        assert body["user"]["username"] == "eddie"

    def test_login_by_email(self, client, site, editor):
        res = _login(client, email="EDDIE@example.com", password=TEST_PASSWORD)
        assert res.status_code == 200

    def test_wrong_password_is_401_and_recorded(self, client, site, editor):
        res = _login(client, username="eddie", password="nope-nope")
        assert res.status_code == 401
        entry = ActivityLog.query.filter_by(action="login_failed").one()
        assert entry.actor_id == editor.id
        assert entry.site_id is None

    def test_unknown_user_is_401(self, client):
        res = _login(client, username="nobody", password=TEST_PASSWORD)
        assert res.status_code == 401
        assert ActivityLog.query.filter_by(action="login_failed").count() == 1

    def test_inactive_user_cannot_login(self, client, site):
        make_user("idle", role="author", site=site, status="inactive")
        assert _login(client, username="idle", password=TEST_PASSWORD).status_code == 401

    def test_missing_fields_is_400(self, client):
        assert _login(client, username="eddie").status_code == 400

    def test_login_to_chosen_site(self, client, site, other_site):
        user = make_user("multi", role="author", site=site)
        res = _login(client, username="multi", password=TEST_PASSWORD, site_id=other_site.id)
        assert res.status_code == 403

        site_service.add_member(other_site.id, {"user_id": user.id, "role": "editor"})
        _db.session.commit()
        res = _login(client, username="multi", password=TEST_PASSWORD, site_id=other_site.id)
        assert res.status_code == 200
        assert res.get_json()["principal"]["role"] == "editor"

    def test_successful_login_is_recorded(self, client, site, editor):
        _login(client, username="eddie", password=TEST_PASSWORD)
        entry = ActivityLog.query.filter_by(action="login").one()
        assert entry.actor_id == editor.id


# ═════════════════════════════════════════════════════════════════════════════
# 2. REFRESH & LOGOUT
# ═════════════════════════════════════════════════════════════════════════════


class TestRefreshAndLogout:
    def test_refresh_rotates(self, client, site, editor):
        tokens = _login(client, username="eddie", password=TEST_PASSWORD).get_json()
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 200
        assert res.get_json()["principal"]["user_id"] == editor.id

        again = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == 401

    def test_access_token_is_not_a_refresh_token(self, client, site, editor):
        tokens = _login(client, username="eddie", password=TEST_PASSWORD).get_json()
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert res.status_code == 401

    def test_refresh_token_cannot_call_api(self, client, site, editor):
        tokens = _login(client, username="eddie", password=TEST_PASSWORD).get_json()
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
        assert res.status_code == 401

    def test_refresh_requires_token(self, client):
        res = client.post("/api/v1/auth/refresh", json={})
        assert res.status_code == 400
        assert res.get_json()["field"] == "refresh_token"

    def test_logout_revokes_access_and_refresh(self, client, site, editor):
        tokens = _login(client, username="eddie", password=TEST_PASSWORD).get_json()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        res = client.post("/api/v1/auth/logout", headers=headers,
                          json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 200
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 401

    def test_logout_without_auth_is_401(self, client):
        assert client.post("/api/v1/auth/logout").status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# 3. /me
# ═════════════════════════════════════════════════════════════════════════════


class TestMe:
    def test_me(self, client, site, author):
        res = client.get("/api/v1/auth/me", headers=auth_headers(author, site))
        assert res.status_code == 200
        body = res.get_json()
        assert body["principal"]["username"] == "annie"
        assert body["principal"]["is_switched"] is False
        assert body["permissions"]["kind"] == "role_based"
        assert "can_publish" in body["permissions"]["permissions"]
        assert [s["site_id"] for s in body["sites"]] == [site.id]

    def test_me_for_super_admin(self, client, site, super_admin):
        body = client.get("/api/v1/auth/me", headers=auth_headers(super_admin, site)).get_json()
        assert body["permissions"]["kind"] == "super_admin"

    def test_me_without_token_is_401(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# 4. API KEYS
# ═════════════════════════════════════════════════════════════════════════════


class TestApiKeys:
    def _create(self, client, user, site, **body):
        body.setdefault("name", "ci")
        return client.post("/api/v1/api-keys", headers=auth_headers(user, site), json=body)

    def test_create_returns_raw_key_once(self, client, site, admin):
        res = self._create(client, admin, site, site_id=site.id, permissions={"view_dashboard": True})
        assert res.status_code == 201
        body = res.get_json()
        assert body["key"].startswith(body["key_prefix"])

        listed = client.get("/api/v1/api-keys", headers=auth_headers(admin, site)).get_json()["items"]
        assert [k["id"] for k in listed] == [body["id"]]
        assert "key" not in listed[0]

    def test_key_authenticates_requests(self, client, site, admin):
        raw = self._create(client, admin, site, site_id=site.id,
                           permissions={"view_dashboard": True}).get_json()["key"]
        res = client.get("/api/v1/menus", headers={"X-API-Key": raw})
        assert res.status_code == 200

        res = client.post("/api/v1/menus", headers={"X-API-Key": raw}, json={"name": "main"})
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_menus"

    def test_key_bound_to_site(self, client, site, other_site, admin):
        raw = self._create(client, admin, site, site_id=site.id,
                           permissions={"view_dashboard": True}).get_json()["key"]
        res = client.get("/api/v1/menus", headers={"X-API-Key": raw, "X-Site-ID": str(other_site.id)})
        assert res.status_code == 403

    def test_cannot_grant_more_than_held(self, client, site, editor):
        res = self._create(client, editor, site, site_id=site.id, permissions={"manage_menus": True})
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_menus"

    def test_unknown_permission_is_400(self, client, site, admin):
        res = self._create(client, admin, site, permissions={"fly": True})
        assert res.status_code == 400
        assert res.get_json()["field"] == "permissions"

    def test_past_expiry_is_400(self, client, site, admin):
        res = self._create(client, admin, site, expires_at="2001-01-01T00:00:00Z")
        assert res.status_code == 400
        assert res.get_json()["field"] == "expires_at"

    def test_revoked_key_is_401(self, client, site, admin):
        body = self._create(client, admin, site, site_id=site.id,
                            permissions={"view_dashboard": True}).get_json()
        res = client.delete(f"/api/v1/api-keys/{body['id']}", headers=auth_headers(admin, site))
        assert res.status_code == 200
        assert client.get("/api/v1/menus", headers={"X-API-Key": body["key"]}).status_code == 401

    def test_unknown_key_is_401(self, client, site):
        res = client.get("/api/v1/menus", headers={"X-API-Key": "sk_nope", "X-Site-ID": str(site.id)})
        assert res.status_code == 401

    def test_key_cannot_create_keys(self, client, site, admin):
        raw = self._create(client, admin, site, site_id=site.id,
                           permissions={"view_dashboard": True}).get_json()["key"]
        res = client.post("/api/v1/api-keys", headers={"X-API-Key": raw}, json={"name": "nested"})
        assert res.status_code == 403

    def test_others_key_cannot_be_revoked(self, client, site, admin, editor):
        body = self._create(client, admin, site).get_json()
        res = client.delete(f"/api/v1/api-keys/{body['id']}", headers=auth_headers(editor, site))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 5. TOKEN BLACKLIST
# ═════════════════════════════════════════════════════════════════════════════


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestTokenBlacklist:
    def test_revoked_until_expiry(self):
        clock = FakeClock()
        blacklist = TokenBlacklist(sweep_interval=60, clock=clock)
        blacklist.revoke("abc", expires_at=1100)
        assert blacklist.is_revoked("abc")
        assert not blacklist.is_revoked("other")
        clock.now = 1101
        assert not blacklist.is_revoked("abc")

    def test_sweep_evicts_expired(self):
        clock = FakeClock()
        blacklist = TokenBlacklist(sweep_interval=60, clock=clock)
        blacklist.revoke("old", expires_at=1010)
        blacklist.revoke("new", expires_at=5000)
        clock.now = 1020
        assert blacklist.sweep() == 1
        assert len(blacklist) == 1

    @pytest.mark.parametrize("interval,expected", [(10, 0), (1000, 1)])
    def test_sweep_runs_lazily(self, interval, expected):
        clock = FakeClock()
        blacklist = TokenBlacklist(sweep_interval=interval, clock=clock)
        blacklist.revoke("old", expires_at=1005)
        clock.now = 1050
        blacklist.is_revoked("anything")
        assert len(blacklist) == expected
