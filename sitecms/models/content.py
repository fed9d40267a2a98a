"""
Content Models — post types, taxonomies, terms, posts, revisions, settings, media.

All classes here are site-scoped (TenantModel). They are never queried
through ``Model.query``; services go through the store registry, which
returns plain dict records.
"""

from sitecms.models import db
from sitecms.models.base import TenantModel, site_unique


POST_STATUSES = ("draft", "pending", "published", "scheduled", "private", "trash")
POST_VISIBILITIES = ("public", "private", "password")

# Optional capabilities a post type can expose
CAPABILITIES = ("title", "body", "excerpt", "featured_image", "custom_fields", "categories")

# Permalink shapes of non-hierarchical post types
URL_STRUCTURES = ("default", "year", "year_month", "year_month_day")

BUILTIN_POST_TYPES = frozenset({"post", "page"})
BUILTIN_TAXONOMIES = frozenset({"category", "tag"})


# ═══════════════════════════════════════════════════════════════
# 1. POST TYPES
# ═══════════════════════════════════════════════════════════════
class PostType(TenantModel):
    __tablename__ = "post_types"
    __table_args__ = (site_unique("post_types", "name"),)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    singular_label = db.Column(db.String(100))
    description = db.Column(db.Text)
    is_hierarchical = db.Column(db.Boolean, nullable=False, default=False)
    supports = db.Column(db.JSON, nullable=False, default=list)
    taxonomies = db.Column(db.JSON, nullable=False, default=list)
    menu_icon = db.Column(db.String(50))
    menu_position = db.Column(db.Integer, default=5)
    url_structure = db.Column(db.String(20), nullable=False, default="default")
    is_builtin = db.Column(db.Boolean, nullable=False, default=False)


# ═══════════════════════════════════════════════════════════════
# 2. TAXONOMIES & TERMS
# ═══════════════════════════════════════════════════════════════
class Taxonomy(TenantModel):
    __tablename__ = "taxonomies"
    __table_args__ = (site_unique("taxonomies", "name"),)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    singular_label = db.Column(db.String(100))
    description = db.Column(db.Text)
    is_hierarchical = db.Column(db.Boolean, nullable=False, default=False)
    post_types = db.Column(db.JSON, nullable=False, default=list)
    is_builtin = db.Column(db.Boolean, nullable=False, default=False)


class Term(TenantModel):
    __tablename__ = "terms"
    __table_args__ = (site_unique("terms", "taxonomy", "slug"),)

    id = db.Column(db.Integer, primary_key=True)
    taxonomy = db.Column(db.String(50), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    parent_id = db.Column(db.Integer, index=True)
    count = db.Column(db.Integer, nullable=False, default=0)
    image_id = db.Column(db.Integer)
    meta = db.Column(db.JSON, nullable=False, default=dict)


# ═══════════════════════════════════════════════════════════════
# 3. POSTS
# ═══════════════════════════════════════════════════════════════
class Post(TenantModel):
    __tablename__ = "posts"
    __table_args__ = (site_unique("posts", "post_type", "slug"),)

    id = db.Column(db.Integer, primary_key=True)
    post_type = db.Column(db.String(50), nullable=False, index=True)
    title = db.Column(db.String(500))
    slug = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text)
    excerpt = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    visibility = db.Column(db.String(20), nullable=False, default="public")
    password = db.Column(db.String(256))
    author_id = db.Column(db.Integer, index=True)
    parent_id = db.Column(db.Integer, index=True)
    featured_image_id = db.Column(db.Integer)
    custom_fields = db.Column(db.JSON, nullable=False, default=dict)
    menu_order = db.Column(db.Integer, nullable=False, default=0)
    published_at = db.Column(db.DateTime(timezone=True))
    scheduled_at = db.Column(db.DateTime(timezone=True))


class PostRevision(TenantModel):
    """Earlier title/body/excerpt/custom fields of a post, newest last."""
    __tablename__ = "post_revisions"

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(500))
    body = db.Column(db.Text)
    excerpt = db.Column(db.Text)
    custom_fields = db.Column(db.JSON, nullable=False, default=dict)
    author_id = db.Column(db.Integer)


class PostTerm(TenantModel):
    """Many-to-many post ↔ term, keyed by (post, taxonomy)."""
    __tablename__ = "post_terms"
    __table_args__ = (site_unique("post_terms", "post_id", "term_id"),)

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, nullable=False, index=True)
    term_id = db.Column(db.Integer, nullable=False, index=True)
    taxonomy = db.Column(db.String(50), nullable=False)
    term_order = db.Column(db.Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════
# 4. SETTINGS & MEDIA
# ═══════════════════════════════════════════════════════════════
class Setting(TenantModel):
    __tablename__ = "settings"
    __table_args__ = (site_unique("settings", "key"),)

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.JSON)
    group = db.Column(db.String(50), nullable=False, default="general")


class Media(TenantModel):
    """Media metadata. File bytes live outside the database."""
    __tablename__ = "media"

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=False)
    original_name = db.Column(db.String(255))
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    url = db.Column(db.String(500), nullable=False)
    alt_text = db.Column(db.String(500))
    caption = db.Column(db.Text)
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)
    folder = db.Column(db.String(200))
    uploaded_by = db.Column(db.Integer)
    # Set while the item sits in the trash
    trashed_at = db.Column(db.DateTime(timezone=True), index=True)
