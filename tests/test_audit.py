"""
Audit trail tests — recording rules, append-only rows, displayed changes,
and the activity-log API.
"""

from datetime import datetime, timezone

import pytest

from sitecms.models import db as _db
from sitecms.models.audit import ActivityLog
from sitecms.services.audit_service import AuditEntry, audit_logger, displayed_changes, snapshot
from conftest import auth_headers


def _record(**kwargs):
    values = {"actor_id": None, "action": "post_created", "entity_type": "post", "site_id": 1}
    values.update(kwargs)
    row = audit_logger.record(AuditEntry(**values))
    _db.session.commit()
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Recording
# ═════════════════════════════════════════════════════════════════════════════


class TestAuditLogger:
    def test_records_snapshots_as_given(self):
        row = _record(entity_id=7, entity_name="Hello",
                      changes_before={"title": "Old"}, changes_after={"title": "New"})
        assert row.entity_id == "7"
        assert row.before == {"title": "Old"}
        assert row.after == {"title": "New"}
        assert row.timestamp is not None

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            _record(action="post_teleported")

    def test_unknown_entity_type_rejected(self):
        with pytest.raises(ValueError):
            _record(entity_type="spaceship")

    def test_site_action_needs_site(self):
        with pytest.raises(ValueError):
            _record(site_id=None)

    def test_global_action_without_site(self):
        row = _record(action="login", entity_type="auth", site_id=None)
        assert row.site_id is None

    def test_datetimes_in_snapshots_are_serialised(self):
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        row = _record(changes_after={"published_at": when})
        assert row.after == {"published_at": "2024-05-01T12:00:00+00:00"}

    def test_rows_cannot_be_updated(self):
        row = _record()
        row.details = "rewritten"
        with pytest.raises(RuntimeError):
            _db.session.flush()
        _db.session.rollback()

    def test_rows_cannot_be_deleted(self):
        row = _record()
        _db.session.delete(row)
        with pytest.raises(RuntimeError):
            _db.session.flush()
        _db.session.rollback()

    def test_snapshot_picks_fields(self):
        record = {"title": "A", "body": "B", "secret": "x"}
        assert snapshot(record, ("title", "body", "slug")) == {"title": "A", "body": "B"}
        assert snapshot(None, ("title",)) is None


# ═════════════════════════════════════════════════════════════════════════════
# Displayed changes
# ═════════════════════════════════════════════════════════════════════════════


class TestDisplayedChanges:
    def test_equal_fields_hidden(self):
        assert displayed_changes({"a": 1, "b": 2}, {"a": 1, "b": 3}) == {
            "b": {"before": 2, "after": 3},
        }

    def test_nested_values_compare_by_content(self):
        before = {"meta": {"x": 1, "y": [1, 2]}}
        after = {"meta": {"y": [1, 2], "x": 1}}
        assert displayed_changes(before, after) == {}

    def test_one_is_not_true(self):
        assert displayed_changes({"flag": 1}, {"flag": True}) == {
            "flag": {"before": 1, "after": True},
        }

    def test_int_and_float_of_same_value_are_equal(self):
        before = {"width": 1, "meta": {"r": [2]}}
        after = {"width": 1.0, "meta": {"r": [2.0]}}
        assert displayed_changes(before, after) == {}
        assert displayed_changes({"width": 1}, {"width": 1.5}) == {
            "width": {"before": 1, "after": 1.5},
        }

    def test_false_is_not_zero(self):
        assert displayed_changes({"flag": [0]}, {"flag": [False]}) == {
            "flag": {"before": [0], "after": [False]},
        }

    def test_datetime_equals_its_stored_text(self):
        stamp = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
        assert displayed_changes({"at": stamp}, {"at": stamp.isoformat()}) == {}

    def test_key_on_one_side_only(self):
        assert displayed_changes({"old": None}, {"new": "x"}) == {
            "new": {"before": None, "after": "x"},
            "old": {"before": None, "after": None},
        }

    def test_missing_side(self):
        assert displayed_changes(None, {"title": "A"}) == {"title": {"before": None, "after": "A"}}
        assert displayed_changes(None, None) == {}


# ═════════════════════════════════════════════════════════════════════════════
# Activity log API
# ═════════════════════════════════════════════════════════════════════════════


class TestActivityAPI:
    def test_mutations_show_up_newest_first(self, client, site, admin):
        headers = auth_headers(admin, site)
        post_id = client.post("/api/v1/posts", headers=headers, json={"title": "First"}).get_json()["id"]
        client.put(f"/api/v1/posts/{post_id}", headers=headers, json={"title": "Second"})

        res = client.get(f"/api/v1/activity-log?entity_type=post&entity_id={post_id}", headers=headers)
        assert res.status_code == 200
        items = res.get_json()["items"]
        assert [e["action"] for e in items] == ["post_updated", "post_created"]
        assert items[0]["actor_id"] == admin.id
        assert items[0]["changes"]["title"] == {"before": "First", "after": "Second"}

    def test_entry_detail(self, client, site, admin):
        headers = auth_headers(admin, site)
        client.post("/api/v1/posts", headers=headers, json={"title": "First"})
        entry = ActivityLog.query.filter_by(action="post_created").one()
        res = client.get(f"/api/v1/activity-log/{entry.id}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["changes"]["title"] == {"before": None, "after": "First"}

    def test_editor_lacks_permission(self, client, site, editor):
        res = client.get("/api/v1/activity-log", headers=auth_headers(editor, site))
        assert res.status_code == 403
        assert res.get_json()["required"] == "view_activity_log"

    def test_site_admin_sees_only_own_site(self, client, site, other_site, admin):
        _record(site_id=site.id, entity_name="mine")
        _record(site_id=other_site.id, entity_name="theirs")
        _record(action="login", entity_type="auth", site_id=None, entity_name="global")
        res = client.get("/api/v1/activity-log?action=post_created", headers=auth_headers(admin, site))
        names = [e["entity_name"] for e in res.get_json()["items"]]
        assert names == ["mine"]
        res = client.get("/api/v1/activity-log?action=login", headers=auth_headers(admin, site))
        assert res.get_json()["items"] == []

    def test_super_admin_also_sees_global(self, client, site, super_admin):
        _record(site_id=site.id, entity_name="mine")
        _record(action="login", entity_type="auth", site_id=None, entity_name="global")
        res = client.get("/api/v1/activity-log", headers=auth_headers(super_admin, site))
        names = {e["entity_name"] for e in res.get_json()["items"]}
        assert {"mine", "global"} <= names

    def test_foreign_entry_is_404(self, client, site, other_site, admin):
        row = _record(site_id=other_site.id)
        res = client.get(f"/api/v1/activity-log/{row.id}", headers=auth_headers(admin, site))
        assert res.status_code == 404
