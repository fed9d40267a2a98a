"""
sitecms
Activity log model.

Models:
    - ActivityLog: immutable, append-only record of one state-changing action.

Rows are written only through ``sitecms.services.audit_service.AuditLogger``.
``site_id`` and ``actor_id`` deliberately carry no foreign keys: the log
outlives the sites and users it mentions and must never be rewritten by a
cascade.
"""

import json
from datetime import UTC, datetime

from sqlalchemy import event

from sitecms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ENTITY_TYPES = {
    "auth", "post", "media", "user", "role", "post_type", "taxonomy",
    "term", "settings", "menu", "menu_item", "site", "api_key",
}

# Actions that are not meaningfully scoped to one site: entries may omit site_id.
GLOBAL_ACTIONS = {
    "login", "logout", "login_failed",
    "user_created", "user_updated", "user_deactivated",
    "role_created", "role_updated", "role_deleted",
    "site_created", "site_updated", "site_deleted",
    "site_member_added", "site_member_updated", "site_member_removed",
    "api_key_created", "api_key_revoked",
    "user_switched", "user_switch_back", "site_switched",
}

SITE_ACTIONS = {
    # Posts
    "post_created", "post_updated", "post_deleted",
    "post_trashed", "post_restored", "post_published",
    "post_revision_restored",
    # Content types
    "post_type_created", "post_type_updated", "post_type_deleted",
    "taxonomy_created", "taxonomy_updated", "taxonomy_deleted",
    "term_created", "term_updated", "term_deleted",
    # Menus
    "menu_created", "menu_updated", "menu_deleted",
    "menu_item_created", "menu_item_updated", "menu_item_deleted",
    "menu_items_reordered",
    # Media & settings
    "media_created", "media_updated", "media_deleted",
    "media_trashed", "media_restored",
    "settings_updated",
}

ACTIONS = GLOBAL_ACTIONS | SITE_ACTIONS


class ActivityLog(db.Model):
    """
    One row per mutating action.

    ``changes_before`` / ``changes_after`` hold JSON snapshots of the fields
    the caller chose to capture; the displayed diff is computed on read.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_site", "site_id"),
        db.Index("idx_activity_actor", "actor_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=True)
    impersonator_id = db.Column(
        db.Integer, nullable=True,
        comment="Original user when the actor was impersonated",
    )
    site_id = db.Column(db.Integer, nullable=True, comment="NULL for global actions")

    action = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=True)
    entity_name = db.Column(db.String(255))
    details = db.Column(db.Text)

    changes_before = db.Column(db.Text, comment="JSON field map (pre-image)")
    changes_after = db.Column(db.Text, comment="JSON field map (post-image)")

    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _load(raw):
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def before(self) -> dict | None:
        return self._load(self.changes_before)

    @property
    def after(self) -> dict | None:
        return self._load(self.changes_after)

    def to_dict(self, include_changes: bool = False) -> dict:
        d = {
            "id": self.id,
            "actor_id": self.actor_id,
            "impersonator_id": self.impersonator_id,
            "site_id": self.site_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "details": self.details,
            "changes_before": self.before,
            "changes_after": self.after,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
        if include_changes:
            from sitecms.services.audit_service import displayed_changes

            d["changes"] = displayed_changes(self.before, self.after)
        return d

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


@event.listens_for(ActivityLog, "before_update")
def _reject_update(mapper, connection, target):
    raise RuntimeError("ActivityLog entries are append-only")


@event.listens_for(ActivityLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise RuntimeError("ActivityLog entries are append-only")
