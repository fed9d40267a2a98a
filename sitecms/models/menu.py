"""
Menu Models — menus, menu items, menu item meta.

A menu item row is flat: ``type`` discriminates which of the other columns
matter. ``sitecms.services.menu_hierarchy`` turns rows into typed variants.
"""

from sitecms.models import db
from sitecms.models.base import TenantModel, site_unique


MENU_ITEM_TYPES = ("post", "post_type", "taxonomy", "term", "custom")
MENU_ITEM_TARGETS = ("_self", "_blank")


class Menu(TenantModel):
    __tablename__ = "menus"
    __table_args__ = (
        site_unique("menus", "name"),
        site_unique("menus", "location"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200))
    location = db.Column(db.String(100))
    description = db.Column(db.Text)


class MenuItem(TenantModel):
    __tablename__ = "menu_items"

    id = db.Column(db.Integer, primary_key=True)
    menu_id = db.Column(db.Integer, nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)
    object_id = db.Column(db.Integer)
    url = db.Column(db.String(1000))
    label = db.Column(db.String(255))
    parent_id = db.Column(db.Integer, index=True)
    menu_order = db.Column(db.Integer, nullable=False, default=0)
    target = db.Column(db.String(20), nullable=False, default="_self")
    title_attr = db.Column(db.String(255))
    css_classes = db.Column(db.String(255))
    description = db.Column(db.Text)


class MenuItemMeta(TenantModel):
    """Open key/value sidecar per menu item (theme-specific extensions)."""
    __tablename__ = "menu_item_meta"
    __table_args__ = (site_unique("menu_item_meta", "item_id", "meta_key"),)

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, nullable=False, index=True)
    meta_key = db.Column(db.String(100), nullable=False)
    meta_value = db.Column(db.JSON)
