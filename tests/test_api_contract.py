"""
API contract tests — error body shape, HTTP-level errors, request guards,
pagination bounds, health probes, request ids and log formatting.
"""

import json
import logging

import pytest

from sitecms.config import ProductionConfig
from sitecms.middleware.logging_config import JSONFormatter
from sitecms.models import db as _db
from sitecms.services import post_service
from sitecms.services.permission_service import build_principal, resolve
from conftest import auth_headers


# ═════════════════════════════════════════════════════════════════════════════
# Error shape
# ═════════════════════════════════════════════════════════════════════════════


class TestErrorShape:
    def test_unknown_route_is_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404

    def test_unknown_route_with_auth_is_404(self, client, site, editor):
        res = client.get("/api/v1/nothing-here", headers=auth_headers(editor, site))
        assert res.status_code == 404
        body = res.get_json()
        assert body["code"] == "NOT_FOUND"
        assert "error" in body

    def test_wrong_method_is_405(self, client, site, editor):
        res = client.patch("/api/v1/menus", headers=auth_headers(editor, site), json={})
        assert res.status_code == 405
        assert res.get_json()["code"] == "METHOD_NOT_ALLOWED"

    def test_non_json_body_is_415(self, client):
        res = client.post("/api/v1/auth/login", data="username=x", content_type="text/plain")
        assert res.status_code == 415
        assert res.get_json()["code"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_json_array_body_is_400(self, client, site, admin):
        res = client.post("/api/v1/menus", headers=auth_headers(admin, site), json=[1, 2])
        assert res.status_code == 400
        assert res.get_json()["field"] == "body"

    def test_validation_error_names_field(self, client, site, author):
        res = client.post("/api/v1/posts", headers=auth_headers(author, site), json={"title": 5})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["field"] == "title"

    def test_forbidden_only_names_permission(self, client, site, subscriber):
        res = client.post("/api/v1/media", headers=auth_headers(subscriber, site),
                          json={"filename": "a.png", "mime_type": "image/png", "url": "/a.png"})
        assert res.status_code == 403
        assert set(res.get_json()) == {"error", "code", "required"}

    def test_conflict_names_field(self, client, site, admin):
        headers = auth_headers(admin, site)
        client.post("/api/v1/menus", headers=headers, json={"name": "main"})
        res = client.post("/api/v1/menus", headers=headers, json={"name": "main"})
        assert res.status_code == 409
        assert res.get_json() == {
            "error": "Menu with name='main' already exists", "code": "CONFLICT", "field": "name",
        }


# ═════════════════════════════════════════════════════════════════════════════
# Pagination
# ═════════════════════════════════════════════════════════════════════════════


class TestPagination:
    @pytest.fixture()
    def posts(self, site, author):
        principal = build_principal(author, site.id)
        perms = resolve(principal, site.id)
        for i in range(5):
            post_service.create_post(site.id, principal, perms, {"title": f"Post {i}"})
        _db.session.commit()

    def test_page_meta(self, client, site, author, posts):
        res = client.get("/api/v1/posts?per_page=2&page=3", headers=auth_headers(author, site))
        assert res.status_code == 200
        body = res.get_json()
        assert len(body["items"]) == 1
        assert body["pagination"] == {
            "total": 5, "count": 1, "per_page": 2, "current_page": 3, "total_pages": 3,
        }

    def test_page_past_end_is_empty(self, client, site, author, posts):
        body = client.get("/api/v1/posts?page=9", headers=auth_headers(author, site)).get_json()
        assert body["items"] == []
        assert body["pagination"]["total"] == 5

    @pytest.mark.parametrize("query,field", [
        ("page=0", "page"),
        ("page=abc", "page"),
        ("per_page=0", "per_page"),
        ("per_page=101", "per_page"),
        ("page=%C2%B2", "page"),
        ("page=99999999999999999999999999", "page"),
        ("page=300000000", "page"),
        ("per_page=-99999999999999999999999", "per_page"),
        ("author_id=99999999999999999999999", "author_id"),
    ])
    def test_bounds(self, client, site, author, query, field):
        res = client.get(f"/api/v1/posts?{query}", headers=auth_headers(author, site))
        assert res.status_code == 400
        assert res.get_json()["field"] == field


# ═════════════════════════════════════════════════════════════════════════════
# Integer inputs — non-ASCII digits and values past the INTEGER range
# ═════════════════════════════════════════════════════════════════════════════


class TestOversizedIntegers:
    def test_switch_user_to_huge_id_is_400(self, client, site, admin):
        res = client.post("/api/v1/auth/switch-user", headers=auth_headers(admin, site),
                          json={"user_id": 10**25})
        assert res.status_code == 400
        assert res.get_json()["field"] == "user_id"

    def test_switch_site_to_unicode_digit_is_400(self, client, site, super_admin):
        res = client.post("/api/v1/auth/switch-site", headers=auth_headers(super_admin, site),
                          json={"site_id": "²"})
        assert res.status_code == 400
        assert res.get_json()["field"] == "site_id"

    def test_add_member_with_huge_user_id_is_400(self, client, site, super_admin):
        res = client.post(f"/api/v1/sites/{site.id}/members", headers=auth_headers(super_admin, site),
                          json={"user_id": 10**25, "role": "author"})
        assert res.status_code == 400
        assert res.get_json()["field"] == "user_id"

    def test_post_menu_order_out_of_range_is_400(self, client, site, editor):
        res = client.post("/api/v1/posts", headers=auth_headers(editor, site),
                          json={"title": "Ordered", "menu_order": 2**40})
        assert res.status_code == 400
        assert res.get_json()["field"] == "menu_order"

    def test_reorder_with_huge_id_fails_the_entry(self, client, site, admin):
        headers = auth_headers(admin, site)
        menu = client.post("/api/v1/menus", headers=headers, json={"name": "main"}).get_json()
        res = client.put(f"/api/v1/menus/{menu['id']}/items/reorder", headers=headers,
                         json={"items": [{"id": 10**25, "menu_order": 0}]})
        assert res.status_code == 400
        assert res.get_json()["failed"][0]["id"] == 10**25

    def test_huge_path_id_is_404(self, client, site, editor):
        res = client.get(f"/api/v1/posts/{10**25}", headers=auth_headers(editor, site))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Health & request ids
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_live_needs_no_auth(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_ready_reports_checks(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["store_registry"] == {"status": "ok", "strategy": "shared"}

    def test_request_id_is_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_request_id_generated(self, client):
        res = client.get("/api/v1/health")
        assert len(res.headers["X-Request-ID"]) == 12


# ═════════════════════════════════════════════════════════════════════════════
# Config & logging
# ═════════════════════════════════════════════════════════════════════════════


class TestConfigAndLogging:
    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["RATELIMIT_ENABLED"] is False
        assert app.config["TENANT_STORE_STRATEGY"] == "shared"

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()

    def test_json_formatter_includes_request_fields(self):
        record = logging.LogRecord("sitecms.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        record.site_id = 3
        record.request_id = "r1"
        line = json.loads(JSONFormatter().format(record))
        assert line["message"] == "hello world"
        assert line["level"] == "INFO"
        assert line["site_id"] == 3
        assert line["request_id"] == "r1"
        assert "user_id" not in line
