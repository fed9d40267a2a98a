"""
TenantModel — Abstract base class for site-scoped entity kinds.

Every entity kind that lives inside a site (posts, terms, menus, …) inherits
from TenantModel. The model class only declares the column layout; rows are
read and written through ``sitecms.tenant.TenantStoreRegistry``, which either
uses the model's shared table (filtered by ``site_id``) or derives a
per-site physical table from the same columns.

Provides:
  - site_id FK column with index (shared-table strategy only)
  - created_at / updated_at, stamped by the store on every write
  - site_unique() constraint helper
"""

from sitecms.models import db


class TenantModel(db.Model):
    """Abstract base for site-scoped tables."""
    __abstract__ = True

    site_id = db.Column(
        db.Integer,
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True))


def site_unique(table: str, *cols: str) -> db.UniqueConstraint:
    """Unique constraint on (site_id, *cols) with a stable name.

    The per-site table derivation strips ``site_id`` and keeps the remaining
    columns, so uniqueness holds under both storage strategies.
    """
    name = f"uq_{table}_site_{'_'.join(cols)}"
    return db.UniqueConstraint("site_id", *cols, name=name)
