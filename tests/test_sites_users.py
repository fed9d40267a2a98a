"""
Administration API tests — sites, memberships, users, roles, settings, media.

Test blocks:
  1. Sites — super-admin lifecycle, visibility, deletion
  2. Members — site-admin checks, duplicates
  3. Users — creation rules, deactivation
  4. Roles — custom roles, built-in protection, in-use guard
  5. Settings — groups and value checks
  6. Media — CRUD, trash, restore and permanent deletion
"""

from datetime import datetime, timezone

from sitecms.models import db as _db
from sitecms.models.auth import Role, Site, SiteMembership, User
from sitecms.tenant import store_for
from conftest import auth_headers, make_user


# ═════════════════════════════════════════════════════════════════════════════
# 1. SITES
# ═════════════════════════════════════════════════════════════════════════════


class TestSites:
    def test_super_admin_creates_provisioned_site(self, client, super_admin):
        res = client.post("/api/v1/sites", headers=auth_headers(super_admin),
                          json={"name": "gamma", "display_name": "Gamma", "domain": "Gamma.example.com"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["domain"] == "gamma.example.com"
        names = {pt["name"] for pt in store_for("post_types", body["id"]).find_all()}
        assert names == {"post", "page"}

    def test_site_admin_cannot_create_sites(self, client, site, admin):
        res = client.post("/api/v1/sites", headers=auth_headers(admin, site),
                          json={"name": "gamma", "display_name": "Gamma"})
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_sites"

    def test_duplicate_name_is_409(self, client, site, super_admin):
        res = client.post("/api/v1/sites", headers=auth_headers(super_admin),
                          json={"name": "alpha", "display_name": "Again"})
        assert res.status_code == 409

    def test_list_shows_memberships_only(self, client, site, other_site, editor, super_admin):
        body = client.get("/api/v1/sites", headers=auth_headers(editor, site)).get_json()
        assert [s["name"] for s in body["items"]] == ["alpha"]
        body = client.get("/api/v1/sites", headers=auth_headers(super_admin)).get_json()
        assert [s["name"] for s in body["items"]] == ["alpha", "beta"]

    def test_foreign_site_is_404(self, client, site, other_site, editor):
        res = client.get(f"/api/v1/sites/{other_site.id}", headers=auth_headers(editor, site))
        assert res.status_code == 404
        assert client.get(f"/api/v1/sites/{site.id}", headers=auth_headers(editor, site)).status_code == 200

    def test_deactivate_site(self, client, site, super_admin, editor):
        res = client.put(f"/api/v1/sites/{site.id}", headers=auth_headers(super_admin),
                         json={"is_active": False})
        assert res.status_code == 200
        res = client.get("/api/v1/menus", headers=auth_headers(editor, site))
        assert res.status_code == 400
        assert res.get_json()["code"] == "TENANT_INACTIVE"

    def test_delete_removes_content_and_memberships(self, client, site, other_site, super_admin, editor):
        site_id, editor_id = site.id, editor.id
        store_for("posts", site_id).create({"post_type": "post", "title": "Hi", "slug": "hi"})
        _db.session.commit()
        res = client.delete(f"/api/v1/sites/{site_id}", headers=auth_headers(super_admin))
        assert res.status_code == 200
        assert _db.session.get(Site, site_id) is None
        assert SiteMembership.query.filter_by(user_id=editor_id).count() == 0
        assert store_for("post_types", other_site.id).count() == 2


# ═════════════════════════════════════════════════════════════════════════════
# 2. MEMBERS
# ═════════════════════════════════════════════════════════════════════════════


class TestMembers:
    def test_site_admin_adds_member(self, client, site, admin):
        newcomer = make_user("nina", role="subscriber")
        res = client.post(f"/api/v1/sites/{site.id}/members", headers=auth_headers(admin, site),
                          json={"user_id": newcomer.id, "role": "author"})
        assert res.status_code == 201
        assert res.get_json()["role"] == "author"

    def test_duplicate_member_is_409(self, client, site, admin, editor):
        res = client.post(f"/api/v1/sites/{site.id}/members", headers=auth_headers(admin, site),
                          json={"user_id": editor.id})
        assert res.status_code == 409

    def test_editor_cannot_manage_members(self, client, site, editor, author):
        res = client.get(f"/api/v1/sites/{site.id}/members", headers=auth_headers(editor, site))
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_users"

    def test_admin_of_one_site_cannot_touch_another(self, client, site, other_site, admin):
        res = client.get(f"/api/v1/sites/{other_site.id}/members", headers=auth_headers(admin, site))
        assert res.status_code == 403

    def test_change_and_remove_member(self, client, site, admin, author):
        headers = auth_headers(admin, site)
        res = client.put(f"/api/v1/sites/{site.id}/members/{author.id}", headers=headers,
                         json={"role": "editor"})
        assert res.status_code == 200
        assert res.get_json()["role"] == "editor"

        res = client.delete(f"/api/v1/sites/{site.id}/members/{author.id}", headers=headers)
        assert res.status_code == 200
        members = client.get(f"/api/v1/sites/{site.id}/members", headers=headers).get_json()["items"]
        assert author.id not in [m["user_id"] for m in members]

    def test_unknown_role_is_400(self, client, site, admin, author):
        res = client.put(f"/api/v1/sites/{site.id}/members/{author.id}", headers=auth_headers(admin, site),
                         json={"role": "overlord"})
        assert res.status_code == 400
        assert res.get_json()["field"] == "role"


# ═════════════════════════════════════════════════════════════════════════════
# 3. USERS
# ═════════════════════════════════════════════════════════════════════════════


class TestUsers:
    def _new(self, **extra):
        return {"username": "newbie", "email": "newbie@example.com", "password": "long-enough-1", **extra}

    def test_admin_creates_user(self, client, site, admin):
        res = client.post("/api/v1/users", headers=auth_headers(admin, site), json=self._new(role="author"))
        assert res.status_code == 201
        body = res.get_json()
        assert body["role"] == "author"
        assert body["sites"] == []
        assert "password_hash" not in body
        assert _db.session.get(User, body["id"]).password_hash.startswith("$2b$")

    def test_editor_cannot_list_users(self, client, site, editor):
        res = client.get("/api/v1/users", headers=auth_headers(editor, site))
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_users"

    def test_invalid_email_is_400(self, client, site, admin):
        res = client.post("/api/v1/users", headers=auth_headers(admin, site),
                          json=self._new(email="not-an-email"))
        assert res.status_code == 400
        assert res.get_json()["field"] == "email"

    def test_short_password_is_400(self, client, site, admin):
        res = client.post("/api/v1/users", headers=auth_headers(admin, site), json=self._new(password="short"))
        assert res.status_code == 400
        assert res.get_json()["field"] == "password"

    def test_duplicate_username_is_409(self, client, site, admin, editor):
        res = client.post("/api/v1/users", headers=auth_headers(admin, site),
                          json=self._new(username="eddie"))
        assert res.status_code == 409
        assert res.get_json()["field"] == "username"

    def test_only_super_admin_creates_super_admin(self, client, site, admin, super_admin):
        res = client.post("/api/v1/users", headers=auth_headers(admin, site),
                          json=self._new(is_super_admin=True))
        assert res.status_code == 403
        res = client.post("/api/v1/users", headers=auth_headers(super_admin),
                          json=self._new(is_super_admin=True))
        assert res.status_code == 201
        assert res.get_json()["is_super_admin"] is True

    def test_deactivated_user_token_stops_working(self, client, site, admin, editor):
        editor_headers = auth_headers(editor, site)
        res = client.put(f"/api/v1/users/{editor.id}", headers=auth_headers(admin, site),
                         json={"status": "inactive"})
        assert res.status_code == 200
        assert client.get("/api/v1/auth/me", headers=editor_headers).status_code == 401

    def test_cannot_deactivate_self(self, client, site, admin):
        res = client.put(f"/api/v1/users/{admin.id}", headers=auth_headers(admin, site),
                         json={"status": "inactive"})
        assert res.status_code == 400

    def test_search_users(self, client, site, admin, editor, author):
        res = client.get("/api/v1/users?search=edd", headers=auth_headers(admin, site))
        assert [u["username"] for u in res.get_json()["items"]] == ["eddie"]


# ═════════════════════════════════════════════════════════════════════════════
# 4. ROLES
# ═════════════════════════════════════════════════════════════════════════════


class TestRoles:
    def test_list_needs_manage_users(self, client, site, admin, editor):
        res = client.get("/api/v1/roles", headers=auth_headers(admin, site))
        assert res.status_code == 200
        assert "guest" in [r["name"] for r in res.get_json()["items"]]
        assert client.get("/api/v1/roles", headers=auth_headers(editor, site)).status_code == 403

    def test_site_admin_cannot_write_roles(self, client, site, admin):
        res = client.post("/api/v1/roles", headers=auth_headers(admin, site),
                          json={"name": "reviewer", "label": "Reviewer"})
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_roles"

    def test_custom_role_lifecycle(self, client, super_admin):
        headers = auth_headers(super_admin)
        res = client.post("/api/v1/roles", headers=headers, json={
            "name": "reviewer", "label": "Reviewer",
            "permissions": {"view_dashboard": True, "view_others_posts": True},
        })
        assert res.status_code == 201
        role_id = res.get_json()["id"]

        res = client.put(f"/api/v1/roles/{role_id}", headers=headers, json={"name": "checker"})
        assert res.status_code == 200
        assert res.get_json()["name"] == "checker"

        assert client.delete(f"/api/v1/roles/{role_id}", headers=headers).status_code == 200
        assert _db.session.get(Role, role_id) is None

    def test_unknown_permission_is_400(self, client, super_admin):
        res = client.post("/api/v1/roles", headers=auth_headers(super_admin), json={
            "name": "reviewer", "label": "Reviewer", "permissions": {"teleport": True},
        })
        assert res.status_code == 400
        assert res.get_json()["field"] == "permissions"

    def test_builtin_role_is_immutable(self, client, super_admin):
        editor_role = Role.query.filter_by(name="editor").one()
        headers = auth_headers(super_admin)
        res = client.put(f"/api/v1/roles/{editor_role.id}", headers=headers, json={"name": "redactor"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "IMMUTABLE_BUILTIN"
        res = client.delete(f"/api/v1/roles/{editor_role.id}", headers=headers)
        assert res.status_code == 400

    def test_builtin_role_permissions_editable(self, client, super_admin):
        guest = Role.query.filter_by(name="guest").one()
        res = client.put(f"/api/v1/roles/{guest.id}", headers=auth_headers(super_admin),
                         json={"permissions": {"view_dashboard": True}})
        assert res.status_code == 200
        assert res.get_json()["permissions"] == {"view_dashboard": True}

    def test_role_in_use_is_409(self, client, site, super_admin):
        role = Role(name="reviewer", label="Reviewer", permissions={"view_dashboard": True})
        _db.session.add(role)
        _db.session.commit()
        make_user("rita", role="reviewer", site=site)
        res = client.delete(f"/api/v1/roles/{role.id}", headers=auth_headers(super_admin))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "IN_USE"
        assert body["count"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# 5. SETTINGS
# ═════════════════════════════════════════════════════════════════════════════


class TestSettings:
    def test_defaults_and_group_filter(self, client, site, subscriber):
        headers = auth_headers(subscriber, site)
        body = client.get("/api/v1/settings", headers=headers).get_json()
        assert body["site_title"] == "My Site"
        assert body["posts_per_page"] == 10
        reading = client.get("/api/v1/settings?group=reading", headers=headers).get_json()
        assert reading == {"posts_per_page": 10}

    def test_admin_updates(self, client, site, admin):
        res = client.put("/api/v1/settings", headers=auth_headers(admin, site),
                         json={"site_title": "Alpha", "footer_note": "hi"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["site_title"] == "Alpha"
        assert body["footer_note"] == "hi"

    def test_editor_cannot_update(self, client, site, editor):
        res = client.put("/api/v1/settings", headers=auth_headers(editor, site), json={"site_title": "X"})
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_settings"

    def test_posts_per_page_bounds(self, client, site, admin):
        headers = auth_headers(admin, site)
        for value in (0, 101, "20", True):
            res = client.put("/api/v1/settings", headers=headers, json={"posts_per_page": value})
            assert res.status_code == 400
            assert res.get_json()["field"] == "posts_per_page"

    def test_max_revisions_bounds(self, client, site, admin):
        headers = auth_headers(admin, site)
        assert client.get("/api/v1/settings?group=writing", headers=headers).get_json() == {
            "max_revisions": 10,
        }
        for value in (-1, 101, "5", False):
            res = client.put("/api/v1/settings", headers=headers, json={"max_revisions": value})
            assert res.status_code == 400
            assert res.get_json()["field"] == "max_revisions"
        res = client.put("/api/v1/settings", headers=headers, json={"max_revisions": 0})
        assert res.status_code == 200

    def test_settings_are_per_site(self, client, site, other_site, admin):
        client.put("/api/v1/settings", headers=auth_headers(admin, site), json={"site_title": "Alpha"})
        other = store_for("settings", other_site.id).find_one(key="site_title")
        assert other["value"] == "My Site"


# ═════════════════════════════════════════════════════════════════════════════
# 6. MEDIA
# ═════════════════════════════════════════════════════════════════════════════


class TestMedia:
    _file = {"filename": "cat.png", "mime_type": "image/png", "url": "/uploads/cat.png", "size": 1024}

    def test_crud(self, client, site, author):
        headers = auth_headers(author, site)
        res = client.post("/api/v1/media", headers=headers, json={**self._file, "alt_text": "A cat"})
        assert res.status_code == 201
        media_id = res.get_json()["id"]
        assert res.get_json()["uploaded_by"] == author.id

        res = client.put(f"/api/v1/media/{media_id}", headers=headers, json={"caption": "Sleepy"})
        assert res.get_json()["caption"] == "Sleepy"

        listed = client.get("/api/v1/media?search=CAT", headers=headers).get_json()
        assert listed["pagination"]["total"] == 1

        res = client.delete(f"/api/v1/media/{media_id}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["trashed_at"] is not None
        res = client.get(f"/api/v1/media/{media_id}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["trashed_at"] is not None
        assert client.get("/api/v1/media", headers=headers).get_json()["pagination"]["total"] == 0

    def test_missing_url_is_400(self, client, site, author):
        res = client.post("/api/v1/media", headers=auth_headers(author, site),
                          json={"filename": "cat.png", "mime_type": "image/png"})
        assert res.status_code == 400
        assert res.get_json()["field"] == "url"

    def test_delete_clears_featured_image(self, client, site, admin):
        headers = auth_headers(admin, site)
        media_id = client.post("/api/v1/media", headers=headers, json=self._file).get_json()["id"]
        post = store_for("posts", site.id).create({
            "post_type": "post", "title": "Hi", "slug": "hi", "featured_image_id": media_id,
        })
        term = store_for("terms", site.id).create({
            "taxonomy": "category", "name": "Cats", "slug": "cats", "image_id": media_id,
        })
        _db.session.commit()

        client.delete(f"/api/v1/media/{media_id}", headers=headers)
        assert store_for("posts", site.id).get(post["id"])["featured_image_id"] == media_id

        res = client.delete(f"/api/v1/media/{media_id}/permanent", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["references_cleared"] == 2
        assert store_for("posts", site.id).get(post["id"])["featured_image_id"] is None
        assert store_for("terms", site.id).get(term["id"])["image_id"] is None
        assert client.get(f"/api/v1/media/{media_id}", headers=headers).status_code == 404

    def test_media_of_other_site_is_404(self, client, site, other_site, admin):
        foreign = store_for("media", other_site.id).create(dict(self._file))
        _db.session.commit()
        res = client.get(f"/api/v1/media/{foreign['id']}", headers=auth_headers(admin, site))
        assert res.status_code == 404


class TestMediaTrash:
    _file = {"filename": "dog.png", "mime_type": "image/png", "url": "/uploads/dog.png", "size": 2048}

    def _upload(self, client, headers, **extra):
        return client.post("/api/v1/media", headers=headers, json={**self._file, **extra}).get_json()["id"]

    def test_trash_listing_and_restore(self, client, site, admin):
        headers = auth_headers(admin, site)
        kept = self._upload(client, headers, filename="kept.png")
        trashed = self._upload(client, headers)
        client.delete(f"/api/v1/media/{trashed}", headers=headers)

        live = client.get("/api/v1/media", headers=headers).get_json()
        assert [m["id"] for m in live["items"]] == [kept]
        trash = client.get("/api/v1/media?trashed=1", headers=headers).get_json()
        assert [m["id"] for m in trash["items"]] == [trashed]

        res = client.post(f"/api/v1/media/{trashed}/restore", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["trashed_at"] is None
        assert client.get("/api/v1/media", headers=headers).get_json()["pagination"]["total"] == 2

    def test_state_checks(self, client, site, admin):
        headers = auth_headers(admin, site)
        media_id = self._upload(client, headers)
        for res in (
            client.post(f"/api/v1/media/{media_id}/restore", headers=headers),
            client.delete(f"/api/v1/media/{media_id}/permanent", headers=headers),
        ):
            assert res.status_code == 400
            assert res.get_json()["field"] == "status"
        client.delete(f"/api/v1/media/{media_id}", headers=headers)
        res = client.delete(f"/api/v1/media/{media_id}", headers=headers)
        assert res.status_code == 400

    def test_trashed_media_cannot_become_featured_image(self, client, site, admin):
        headers = auth_headers(admin, site)
        media_id = self._upload(client, headers)
        client.delete(f"/api/v1/media/{media_id}", headers=headers)
        res = client.post("/api/v1/posts", headers=headers,
                          json={"title": "Dog", "featured_image_id": media_id})
        assert res.status_code == 400
        assert res.get_json()["field"] == "featured_image_id"

    def test_empty_trash(self, client, site, other_site, admin):
        headers = auth_headers(admin, site)
        kept = self._upload(client, headers, filename="kept.png")
        for name in ("a.png", "b.png"):
            client.delete(f"/api/v1/media/{self._upload(client, headers, filename=name)}", headers=headers)
        foreign = store_for("media", other_site.id).create(dict(self._file))
        store_for("media", other_site.id).update(foreign["id"], {"trashed_at": datetime.now(timezone.utc)})
        _db.session.commit()

        res = client.delete("/api/v1/media/trash", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["deleted"] == 2
        assert [m["id"] for m in store_for("media", site.id).find_all()] == [kept]
        assert store_for("media", other_site.id).find(foreign["id"]) is not None

    def test_subscriber_cannot_trash(self, client, site, admin, subscriber):
        media_id = self._upload(client, auth_headers(admin, site))
        res = client.delete(f"/api/v1/media/{media_id}", headers=auth_headers(subscriber, site))
        assert res.status_code == 403
        assert res.get_json()["required"] == "manage_media"
