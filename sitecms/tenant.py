"""
Multi-site store registry.

Every site-scoped read and write goes through ``TenantStoreRegistry``. Two
isolation strategies sit behind one ``Store`` contract:

  shared  One physical table per entity kind. Every statement the store
          issues carries ``site_id = <site>``; every insert is stamped with it.
  table   One physical table per (site, kind), named ``site_{id}_{kind}``.
          Tables are created only by ``provision_site``; a missing table is
          a hard error.

The registry is created once by ``create_app`` and kept on
``app.extensions["store_registry"]``. It memoizes store handles per
(site id, kind). A handle holds the kind, the site id and the SQLAlchemy
``Table`` it targets, never row data, so sharing one across concurrent
requests is safe. The site itself is re-validated on every ``store_for``.

Usage:
    from sitecms.tenant import store_for

    posts = store_for("posts", g.site.id)
    post = posts.create({"post_type": "post", "title": "Hello", "slug": "hello"})
    posts.find_all(where={"status": "published"}, order_by="-id", limit=10)
"""

import logging
import operator
from datetime import datetime, timezone

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError

from sitecms.core.exceptions import (
    ConflictError,
    NotFoundError,
    TenantInactiveError,
    TenantNotFoundError,
    TenantStoreMissingError,
    ValidationError,
)
from sitecms.models import db
from sitecms.models.auth import Site
from sitecms.models.content import (
    Media,
    Post,
    PostRevision,
    PostTerm,
    PostType,
    Setting,
    Taxonomy,
    Term,
)
from sitecms.models.menu import Menu, MenuItem, MenuItemMeta

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    "post_types": PostType,
    "taxonomies": Taxonomy,
    "terms": Term,
    "posts": Post,
    "post_terms": PostTerm,
    "post_revisions": PostRevision,
    "menus": Menu,
    "menu_items": MenuItem,
    "menu_item_meta": MenuItemMeta,
    "settings": Setting,
    "media": Media,
}
ENTITY_KINDS = tuple(ENTITY_MODELS)

RESOURCE_NAMES = {
    "post_types": "PostType",
    "taxonomies": "Taxonomy",
    "terms": "Term",
    "posts": "Post",
    "post_terms": "PostTerm",
    "post_revisions": "PostRevision",
    "menus": "Menu",
    "menu_items": "MenuItem",
    "menu_item_meta": "MenuItemMeta",
    "settings": "Setting",
    "media": "Media",
}

STRATEGIES = ("shared", "table")

_SITE_COLUMN = "site_id"

# ``where`` keys may carry a ``__<lookup>`` suffix, e.g. ``scheduled_at__lte``
_LOOKUPS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "ne": operator.ne,
}


def _utcnow():
    return datetime.now(timezone.utc)


def _valid_site_id(site_id) -> bool:
    return isinstance(site_id, int) and not isinstance(site_id, bool) and site_id > 0


def site_table_name(site_id: int, kind: str) -> str:
    """Physical table name for one site's collection of *kind*.

    The only place a site-scoped identifier is built. Callers must pass a
    site id that was already resolved to an existing, active site.
    """
    if kind not in ENTITY_MODELS:
        raise ValueError(f"Unknown entity kind {kind!r}")
    if not _valid_site_id(site_id):
        raise ValueError(f"Invalid site id {site_id!r}")
    return f"site_{site_id}_{kind}"


def _unique_keys(source: sa.Table) -> list[tuple[str, ...]]:
    """Unique column sets of a shared table, minus the site column."""
    keys = []
    for constraint in source.constraints:
        if isinstance(constraint, sa.UniqueConstraint):
            cols = tuple(c.name for c in constraint.columns if c.name != _SITE_COLUMN)
            if cols:
                keys.append(cols)
    return keys


# ═══════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════
class Store:
    """Site-scoped CRUD over one entity kind. Records are plain dicts."""

    def __init__(self, kind: str, site_id: int, table: sa.Table):
        self.kind = kind
        self.site_id = site_id
        self.table = table
        self.resource = RESOURCE_NAMES[kind]
        self._unique = _unique_keys(ENTITY_MODELS[kind].__table__)

    def __repr__(self):
        return f"<{type(self).__name__} {self.table.name} site={self.site_id}>"

    # ── strategy hooks ───────────────────────────────────────────────────

    def _scope(self, stmt):
        return stmt

    def _stamp(self, values: dict) -> dict:
        return values

    # ── helpers ──────────────────────────────────────────────────────────

    def _column(self, name: str) -> sa.Column:
        if name == _SITE_COLUMN or name not in self.table.c:
            raise ValueError(f"Unknown column {name!r} for {self.kind}")
        return self.table.c[name]

    def _filtered(self, stmt, where: dict | None):
        for key, value in (where or {}).items():
            name, _, lookup = key.partition("__")
            col = self._column(name)
            if lookup:
                if lookup not in _LOOKUPS:
                    raise ValueError(f"Unknown lookup {lookup!r} in {key!r}")
                if value is None and lookup == "ne":
                    stmt = stmt.where(col.is_not(None))
                else:
                    stmt = stmt.where(_LOOKUPS[lookup](col, value))
            elif value is None:
                stmt = stmt.where(col.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(col.in_(list(value)))
            else:
                stmt = stmt.where(col == value)
        return self._scope(stmt)

    def _values(self, values: dict) -> dict:
        clean = {}
        for name, value in values.items():
            if name == "id":
                raise ValueError("id is assigned by the store")
            self._column(name)
            clean[name] = value
        return clean

    def _record(self, row) -> dict:
        return {k: v for k, v in row.items() if k != _SITE_COLUMN}

    def _conflict(self, values: dict) -> ConflictError:
        for cols in self._unique:
            if all(c in values for c in cols):
                field = cols[-1]
                return ConflictError(self.resource, field, values[field])
        return ConflictError(self.resource, reason=f"{self.resource} violates a uniqueness constraint")

    def _write(self, stmt, values: dict):
        try:
            return db.session.execute(stmt)
        except IntegrityError as exc:
            db.session.rollback()
            logger.info("Uniqueness violation on %s: %s", self.table.name, exc.orig)
            raise self._conflict(values) from exc

    # ── contract ─────────────────────────────────────────────────────────

    def create(self, values: dict) -> dict:
        data = self._values(values)
        now = _utcnow()
        data["created_at"] = now
        data["updated_at"] = now
        data = self._stamp(data)
        result = self._write(sa.insert(self.table).values(**data), data)
        return self.find(result.inserted_primary_key[0])

    def find(self, record_id, for_update: bool = False) -> dict | None:
        stmt = self._filtered(sa.select(self.table).where(self.table.c.id == record_id), None)
        if for_update:
            stmt = stmt.with_for_update()
        row = db.session.execute(stmt).mappings().first()
        return self._record(row) if row else None

    def get(self, record_id, for_update: bool = False) -> dict:
        record = self.find(record_id, for_update=for_update)
        if record is None:
            raise NotFoundError(self.resource, record_id, site_id=self.site_id)
        return record

    def find_one(self, for_update: bool = False, **where) -> dict | None:
        stmt = self._filtered(sa.select(self.table), where).order_by(self.table.c.id).limit(1)
        if for_update:
            stmt = stmt.with_for_update()
        row = db.session.execute(stmt).mappings().first()
        return self._record(row) if row else None

    def find_all(
        self,
        where: dict | None = None,
        order_by=None,
        limit: int | None = None,
        offset: int | None = None,
        search: tuple | None = None,
        for_update: bool = False,
    ) -> list[dict]:
        """Rows matching *where*.

        ``where`` maps columns to values (``None`` is IS NULL, a collection
        is IN); ``col__lt|lte|gt|gte|ne`` keys compare instead. ``order_by``
        is a column name or list of names; a leading ``-`` sorts descending.
        ``id`` is always the final tie-break. ``search`` is ``(columns, text)``
        and matches case-insensitively on any column.
        """
        stmt = self._search(self._filtered(sa.select(self.table), where), search)
        for name in ([order_by] if isinstance(order_by, str) else list(order_by or [])):
            desc = name.startswith("-")
            col = self._column(name.lstrip("-"))
            stmt = stmt.order_by(col.desc() if desc else col.asc())
        stmt = stmt.order_by(self.table.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        if for_update:
            stmt = stmt.with_for_update()
        return [self._record(row) for row in db.session.execute(stmt).mappings()]

    def _search(self, stmt, search):
        if not search:
            return stmt
        columns, text = search
        if not text:
            return stmt
        pattern = f"%{text}%"
        return stmt.where(sa.or_(*(self._column(c).ilike(pattern) for c in columns)))

    def count(self, where: dict | None = None, search: tuple | None = None) -> int:
        stmt = self._search(
            self._filtered(sa.select(sa.func.count()).select_from(self.table), where), search
        )
        return db.session.execute(stmt).scalar_one()

    def max_value(self, column: str, where: dict | None = None):
        col = self._column(column)
        stmt = self._filtered(sa.select(sa.func.max(col)), where)
        return db.session.execute(stmt).scalar()

    def update(self, record_id, values: dict) -> dict | None:
        data = self._values(values)
        data["updated_at"] = _utcnow()
        stmt = self._filtered(sa.update(self.table).where(self.table.c.id == record_id), None)
        result = self._write(stmt.values(**data), data)
        if result.rowcount == 0:
            return None
        return self.find(record_id)

    def update_where(self, values: dict, **where) -> int:
        if not where:
            raise ValueError("update_where requires at least one filter")
        data = self._values(values)
        data["updated_at"] = _utcnow()
        stmt = self._filtered(sa.update(self.table), where).values(**data)
        return self._write(stmt, data).rowcount

    def delete(self, record_id) -> bool:
        stmt = self._filtered(sa.delete(self.table).where(self.table.c.id == record_id), None)
        return db.session.execute(stmt).rowcount > 0

    def delete_where(self, **where) -> int:
        if not where:
            raise ValueError("delete_where requires at least one filter")
        stmt = self._filtered(sa.delete(self.table), where)
        return db.session.execute(stmt).rowcount

    def purge(self) -> int:
        """Remove every row this store can see."""
        return db.session.execute(self._scope(sa.delete(self.table))).rowcount


class SharedCollectionStore(Store):
    """All sites in one table; the site filter is injected here and only here."""

    def _scope(self, stmt):
        return stmt.where(self.table.c[_SITE_COLUMN] == self.site_id)

    def _stamp(self, values: dict) -> dict:
        values[_SITE_COLUMN] = self.site_id
        return values


class TablePerTenantStore(Store):
    """One physical table per site; isolation comes from the table name."""


# ═══════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════
class TenantStoreRegistry:
    """Resolves sites and hands out their stores."""

    def __init__(self, strategy: str = "shared"):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown store strategy {strategy!r}; expected one of {STRATEGIES}")
        self.strategy = strategy
        self._handles: dict[tuple[int, str], Store] = {}

    def __repr__(self):
        return f"<TenantStoreRegistry strategy={self.strategy} handles={len(self._handles)}>"

    # ── site resolution ──────────────────────────────────────────────────

    def resolve_site(self, site_id) -> Site:
        """Return the active Site for *site_id*; never falls back to a default."""
        if not _valid_site_id(site_id):
            raise ValidationError("site id must be a positive integer", field="site_id")
        site = db.session.get(Site, site_id)
        if site is None:
            logger.warning("Store lookup for unknown site %s", site_id)
            raise TenantNotFoundError(site_id)
        if not site.is_active:
            logger.warning("Store lookup for inactive site %s", site_id)
            raise TenantInactiveError(site_id)
        return site

    # ── handles ──────────────────────────────────────────────────────────

    def store_for(self, kind: str, site_id) -> Store:
        if kind not in ENTITY_MODELS:
            raise ValueError(f"Unknown entity kind {kind!r}")
        site = self.resolve_site(site_id)
        key = (site.id, kind)
        store = self._handles.get(key)
        if store is None:
            store = self._handles.setdefault(key, self._build(kind, site.id))
        return store

    def _build(self, kind: str, site_id: int) -> Store:
        if self.strategy == "shared":
            return SharedCollectionStore(kind, site_id, ENTITY_MODELS[kind].__table__)

        table = self._site_table(kind, site_id)
        if not sa.inspect(db.session.connection()).has_table(table.name):
            logger.error("Missing store table %s (site %s not provisioned)", table.name, site_id)
            raise TenantStoreMissingError(table.name)
        return TablePerTenantStore(kind, site_id, table)

    @staticmethod
    def _site_table(kind: str, site_id: int) -> sa.Table:
        """Per-site Table derived from the shared model's column layout."""
        source = ENTITY_MODELS[kind].__table__
        name = site_table_name(site_id, kind)
        columns = [
            sa.Column(
                col.name,
                col.type,
                primary_key=col.primary_key,
                nullable=col.nullable,
                default=col.default.arg if col.default is not None else None,
                index=bool(col.index) and not col.primary_key,
            )
            for col in source.columns
            if col.name != _SITE_COLUMN
        ]
        constraints = [
            sa.UniqueConstraint(*cols, name=f"uq_{name}_{'_'.join(cols)}")
            for cols in _unique_keys(source)
        ]
        return sa.Table(name, sa.MetaData(), *columns, *constraints)

    def forget(self, site_id: int) -> None:
        """Drop memoized handles of one site."""
        for key in [k for k in self._handles if k[0] == site_id]:
            self._handles.pop(key, None)

    # ── provisioning ─────────────────────────────────────────────────────

    def provision_site(self, site_id) -> list[str]:
        """Create the per-site tables (table strategy). Idempotent.

        Returns the names of the tables that exist afterwards; empty for the
        shared strategy, which needs no provisioning.
        """
        site = self.resolve_site(site_id)
        if self.strategy == "shared":
            return []
        conn = db.session.connection()
        names = []
        for kind in ENTITY_KINDS:
            table = self._site_table(kind, site.id)
            table.create(bind=conn, checkfirst=True)
            names.append(table.name)
        logger.info("Provisioned %d store tables for site %s", len(names), site.id)
        return names

    def drop_site(self, site: Site) -> None:
        """Remove every site-scoped row (shared) or table (table) of *site*.

        Works on inactive sites too: deleting a site must not require
        re-activating it first.
        """
        if not _valid_site_id(site.id):
            raise ValueError(f"Invalid site id {site.id!r}")
        if self.strategy == "shared":
            for kind in ENTITY_KINDS:
                SharedCollectionStore(kind, site.id, ENTITY_MODELS[kind].__table__).purge()
        else:
            conn = db.session.connection()
            for kind in ENTITY_KINDS:
                self._site_table(kind, site.id).drop(bind=conn, checkfirst=True)
        self.forget(site.id)
        logger.info("Dropped site-scoped data for site %s (%s strategy)", site.id, self.strategy)


# ═══════════════════════════════════════════════════════════════
# App wiring
# ═══════════════════════════════════════════════════════════════
def init_store_registry(app) -> TenantStoreRegistry:
    """Create the registry for *app* from ``TENANT_STORE_STRATEGY``."""
    registry = TenantStoreRegistry(app.config.get("TENANT_STORE_STRATEGY", "shared"))
    app.extensions["store_registry"] = registry
    app.logger.info("Store registry installed (strategy=%s)", registry.strategy)
    return registry


def get_registry() -> TenantStoreRegistry:
    return current_app.extensions["store_registry"]


def store_for(kind: str, site_id) -> Store:
    """Shortcut for ``get_registry().store_for(kind, site_id)``."""
    return get_registry().store_for(kind, site_id)
