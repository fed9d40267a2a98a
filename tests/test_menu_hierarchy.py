"""
Menu hierarchy tests — link variants, tree assembly, label/URL resolution.

Tree assembly is pure: rows in, forest out, no database.
"""

from datetime import datetime, timezone

import pytest

from sitecms.core.exceptions import ValidationError
from sitecms.models import db as _db
from sitecms.services.content_types import content_types
from sitecms.services.menu_hierarchy import (
    CustomLink,
    LabelResolver,
    PostLink,
    TermLink,
    build_menu_tree,
    link_from_row,
)
from sitecms.tenant import store_for


def _row(item_id, parent_id=None, menu_order=0, **extra):
    row = {"id": item_id, "parent_id": parent_id, "menu_order": menu_order,
           "type": "custom", "url": f"/item-{item_id}", "label": f"Item {item_id}"}
    row.update(extra)
    return row


def _shape(roots):
    return [(n.id, _shape(n.children)) for n in roots]


# ═════════════════════════════════════════════════════════════════════════════
# Link variants
# ═════════════════════════════════════════════════════════════════════════════


class TestLinkVariants:
    def test_object_link(self):
        assert link_from_row({"type": "post", "object_id": 4}) == PostLink(object_id=4)
        assert link_from_row({"type": "term", "object_id": 2}) == TermLink(object_id=2)

    def test_custom_link_strips_url(self):
        link = link_from_row({"type": "custom", "url": "  https://example.com ", "label": "Ex"})
        assert link == CustomLink(url="https://example.com", label="Ex")

    def test_custom_link_needs_url(self):
        with pytest.raises(ValidationError) as exc:
            link_from_row({"type": "custom", "url": "  "})
        assert exc.value.field == "url"

    @pytest.mark.parametrize("object_id", [None, 0, -3, "4", True])
    def test_object_link_needs_positive_id(self, object_id):
        with pytest.raises(ValidationError) as exc:
            link_from_row({"type": "post", "object_id": object_id})
        assert exc.value.field == "object_id"

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            link_from_row({"type": "widget"})
        assert exc.value.field == "type"


# ═════════════════════════════════════════════════════════════════════════════
# Tree assembly
# ═════════════════════════════════════════════════════════════════════════════


class TestBuildMenuTree:
    def test_root_with_one_child(self):
        roots = build_menu_tree([_row(1), _row(2, parent_id=1)])
        assert _shape(roots) == [(1, [(2, [])])]

    def test_order_by_menu_order_then_id(self):
        rows = [_row(3, menu_order=1), _row(1, menu_order=2), _row(2, menu_order=1)]
        assert [n.id for n in build_menu_tree(rows)] == [2, 3, 1]

    def test_children_ordered_too(self):
        rows = [_row(1), _row(2, parent_id=1, menu_order=5), _row(3, parent_id=1, menu_order=0)]
        assert _shape(build_menu_tree(rows)) == [(1, [(3, []), (2, [])])]

    def test_dangling_parent_promoted_to_root(self):
        roots = build_menu_tree([_row(1), _row(2, parent_id=99)])
        assert _shape(roots) == [(1, []), (2, [])]
        assert roots[1].parent_id is None

    def test_self_parent_promoted_to_root(self):
        assert _shape(build_menu_tree([_row(1, parent_id=1)])) == [(1, [])]

    def test_cycle_broken_without_losing_items(self):
        rows = [_row(1, parent_id=2, menu_order=0), _row(2, parent_id=1, menu_order=1)]
        roots = build_menu_tree(rows)
        assert _shape(roots) == [(2, [(1, [])])]
        assert sorted(n.id for root in roots for n in root.walk()) == [1, 2]

    def test_three_node_cycle(self):
        rows = [_row(1, parent_id=3), _row(2, parent_id=1), _row(3, parent_id=2)]
        roots = build_menu_tree(rows)
        assert sorted(n.id for root in roots for n in root.walk()) == [1, 2, 3]
        assert len(roots) == 1

    def test_meta_attached(self):
        meta = [{"item_id": 1, "meta_key": "icon", "meta_value": "home"},
                {"item_id": 42, "meta_key": "icon", "meta_value": "lost"}]
        roots = build_menu_tree([_row(1)], meta)
        assert roots[0].meta == {"icon": "home"}

    def test_empty(self):
        assert build_menu_tree([]) == []


# ═════════════════════════════════════════════════════════════════════════════
# Label / URL resolution
# ═════════════════════════════════════════════════════════════════════════════


class TestLabelResolver:
    def _page(self, site, title, slug, parent_id=None):
        return store_for("posts", site.id).create({
            "post_type": "page", "title": title, "slug": slug, "parent_id": parent_id,
        })

    def test_nested_page_path(self, site):
        about = self._page(site, "About", "about")
        team = self._page(site, "Team", "team", parent_id=about["id"])
        _db.session.commit()
        roots = build_menu_tree([{"id": 1, "type": "post", "object_id": team["id"]}])
        assert LabelResolver(site.id).resolve(roots) == {1: ("Team", "/about/team")}

    def test_flat_post_path(self, site):
        post = store_for("posts", site.id).create({"post_type": "post", "title": "Hi", "slug": "hi"})
        roots = build_menu_tree([{"id": 1, "type": "post", "object_id": post["id"]}])
        assert LabelResolver(site.id).resolve(roots)[1] == ("Hi", "/post/hi")

    def test_dated_post_path(self, site):
        post_type = content_types.post_type_for(site.id, "post")
        content_types.update_post_type(site.id, post_type["id"], {"url_structure": "year_month"})
        post = store_for("posts", site.id).create({
            "post_type": "post", "title": "Launch", "slug": "launch", "status": "published",
            "published_at": datetime(2030, 1, 15, tzinfo=timezone.utc),
        })
        draft = store_for("posts", site.id).create({"post_type": "post", "title": "Soon", "slug": "soon"})
        roots = build_menu_tree([
            {"id": 1, "type": "post", "object_id": post["id"]},
            {"id": 2, "type": "post", "object_id": draft["id"]},
        ])
        resolved = LabelResolver(site.id).resolve(roots)
        assert resolved[1] == ("Launch", "/post/2030/01/launch")
        assert resolved[2] == ("Soon", "/post/soon")

    def test_term_taxonomy_and_post_type_links(self, site):
        term = store_for("terms", site.id).find_one(slug="uncategorized")
        tag = content_types.taxonomy_for(site.id, "tag")
        page = content_types.post_type_for(site.id, "page")
        roots = build_menu_tree([
            {"id": 1, "type": "term", "object_id": term["id"]},
            {"id": 2, "type": "taxonomy", "object_id": tag["id"]},
            {"id": 3, "type": "post_type", "object_id": page["id"]},
        ])
        resolved = LabelResolver(site.id).resolve(roots)
        assert resolved[1] == ("Uncategorized", "/category/uncategorized")
        assert resolved[2] == ("Tags", "/tag")
        assert resolved[3] == ("Pages", "/page")

    def test_missing_object_resolves_to_none(self, site):
        roots = build_menu_tree([{"id": 1, "type": "post", "object_id": 9999}])
        assert LabelResolver(site.id).resolve(roots) == {1: (None, None)}

    def test_serialize_prefers_item_label(self, site):
        roots = build_menu_tree([
            {"id": 1, "type": "custom", "url": "/x", "label": "Home", "menu_order": 0},
            {"id": 2, "type": "custom", "url": "/y", "label": None, "parent_id": 1},
        ])
        tree = LabelResolver(site.id).serialize(roots)
        assert tree[0]["display_label"] == "Home"
        assert tree[0]["children"][0]["url"] == "/y"
        assert tree[0]["children"][0]["object_id"] is None
