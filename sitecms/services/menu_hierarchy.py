"""
Menu Hierarchy — typed menu links and tree assembly.

Menu items are stored flat (``type`` + ``object_id`` / ``url``).  This
module turns rows into one of five link variants, assembles the rows into a
forest and, on the read side only, resolves labels and URLs of the objects
the links point at.

Tree assembly never fails on bad parent data: an item whose ``parent_id``
is missing, points at itself, points outside the menu or would close a
cycle is promoted to a root.
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Union

from sitecms.core.exceptions import ValidationError
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_int

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# Link variants
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class PostLink:
    kind: ClassVar[str] = "post"
    object_id: int


@dataclass(frozen=True)
class PostTypeLink:
    kind: ClassVar[str] = "post_type"
    object_id: int


@dataclass(frozen=True)
class TaxonomyLink:
    kind: ClassVar[str] = "taxonomy"
    object_id: int


@dataclass(frozen=True)
class TermLink:
    kind: ClassVar[str] = "term"
    object_id: int


@dataclass(frozen=True)
class CustomLink:
    kind: ClassVar[str] = "custom"
    url: str
    label: str | None = None


MenuLink = Union[PostLink, PostTypeLink, TaxonomyLink, TermLink, CustomLink]

_OBJECT_LINKS = {cls.kind: cls for cls in (PostLink, PostTypeLink, TaxonomyLink, TermLink)}
LINK_KINDS = (*_OBJECT_LINKS, CustomLink.kind)


def link_from_row(row: dict) -> MenuLink:
    """Parse the variant out of a flat menu item row (or payload)."""
    kind = row.get("type")
    if kind == CustomLink.kind:
        url = row.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("Custom links need a url", field="url")
        return CustomLink(url=url.strip(), label=row.get("label"))
    cls = _OBJECT_LINKS.get(kind)
    if cls is None:
        raise ValidationError(f"Unknown menu item type {kind!r}", field="type")
    return cls(object_id=parse_int(row.get("object_id"), "object_id", minimum=1))


# ═══════════════════════════════════════════════════════════════
# Tree
# ═══════════════════════════════════════════════════════════════
@dataclass
class MenuNode:
    id: int
    link: MenuLink
    parent_id: int | None
    menu_order: int
    label: str | None = None
    target: str = "_self"
    title_attr: str | None = None
    css_classes: str | None = None
    description: str | None = None
    meta: dict = field(default_factory=dict)
    children: list["MenuNode"] = field(default_factory=list)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


def _node_from_row(row: dict) -> MenuNode:
    return MenuNode(
        id=row["id"],
        link=link_from_row(row),
        parent_id=row.get("parent_id"),
        menu_order=row.get("menu_order") or 0,
        label=row.get("label"),
        target=row.get("target") or "_self",
        title_attr=row.get("title_attr"),
        css_classes=row.get("css_classes"),
        description=row.get("description"),
    )


def build_menu_tree(rows, meta_rows=()) -> list[MenuNode]:
    """Assemble item rows of one menu into a forest ordered by (menu_order, id)."""
    ordered = sorted(rows, key=lambda r: (r.get("menu_order") or 0, r["id"]))

    nodes: dict[int, MenuNode] = {}
    for row in ordered:
        nodes[row["id"]] = _node_from_row(row)
    for meta in meta_rows:
        node = nodes.get(meta["item_id"])
        if node is not None:
            node.meta[meta["meta_key"]] = meta["meta_value"]

    roots: list[MenuNode] = []
    attached: dict[int, int] = {}  # child id -> parent id, edges accepted so far
    for row in ordered:
        node = nodes[row["id"]]
        parent_id = node.parent_id
        if parent_id is None or parent_id == node.id or parent_id not in nodes:
            if parent_id is not None:
                logger.debug("Menu item %s has unusable parent %s; promoted to root", node.id, parent_id)
                node.parent_id = None
            roots.append(node)
            continue
        ancestor = parent_id
        while ancestor is not None and ancestor != node.id:
            ancestor = attached.get(ancestor)
        if ancestor == node.id:
            logger.debug("Menu item %s would close a cycle; promoted to root", node.id)
            node.parent_id = None
            roots.append(node)
            continue
        attached[node.id] = parent_id
        nodes[parent_id].children.append(node)
    return roots


_DATE_FORMATS = {
    "year": ("%Y",),
    "year_month": ("%Y", "%m"),
    "year_month_day": ("%Y", "%m", "%d"),
}


def _date_path(structure: str | None, published_at) -> str:
    """``/2030/01`` style prefix; empty for ``default`` or unpublished posts."""
    formats = _DATE_FORMATS.get(structure or "default")
    if not formats or published_at is None:
        return ""
    return "".join("/" + published_at.strftime(fmt) for fmt in formats)


# ═══════════════════════════════════════════════════════════════
# Label / URL resolution (read side)
# ═══════════════════════════════════════════════════════════════
class LabelResolver:
    """Looks up titles and URLs of linked objects, one batch per variant.

    A link whose object no longer exists resolves to ``(None, None)``.
    """

    def __init__(self, site_id: int):
        self.site_id = site_id

    def _fetch(self, kind: str, ids) -> dict[int, dict]:
        ids = sorted(set(ids))
        if not ids:
            return {}
        return {r["id"]: r for r in store_for(kind, self.site_id).find_all({"id": ids})}

    def _post_paths(self, posts: dict[int, dict]) -> dict[int, str]:
        """``/parent-slug/child-slug`` for hierarchical types, else
        ``/{type}/{slug}`` with the date parts the type's url_structure asks for
        (``/post/2030/01/hello`` for ``year_month``).
        """
        types = {
            pt["name"]: pt for pt in store_for("post_types", self.site_id).find_all(
                {"name": list({p["post_type"] for p in posts.values()})}
            )
        }
        hierarchical = {name for name, pt in types.items() if pt["is_hierarchical"]}
        known = dict(posts)
        pending = {p["parent_id"] for p in posts.values()
                   if p["post_type"] in hierarchical and p["parent_id"]}
        while pending - set(known):
            fetched = self._fetch("posts", pending - set(known))
            if not fetched:
                break
            known.update(fetched)
            pending = {p["parent_id"] for p in fetched.values() if p["parent_id"]}

        paths = {}
        for post_id, post in posts.items():
            if post["post_type"] not in hierarchical:
                structure = (types.get(post["post_type"]) or {}).get("url_structure")
                dated = _date_path(structure, post["published_at"])
                paths[post_id] = f"/{post['post_type']}{dated}/{post['slug']}"
                continue
            slugs, node, seen = [], post, set()
            while node is not None and node["id"] not in seen:
                seen.add(node["id"])
                slugs.append(node["slug"])
                node = known.get(node["parent_id"]) if node["parent_id"] else None
            paths[post_id] = "/" + "/".join(reversed(slugs))
        return paths

    def resolve(self, roots: list[MenuNode]) -> dict[int, tuple[str | None, str | None]]:
        """Map of node id -> (resolved label, url)."""
        nodes = [n for root in roots for n in root.walk()]
        wanted: dict[str, set[int]] = {kind: set() for kind in _OBJECT_LINKS}
        for node in nodes:
            if not isinstance(node.link, CustomLink):
                wanted[node.link.kind].add(node.link.object_id)

        posts = self._fetch("posts", wanted["post"])
        post_paths = self._post_paths(posts) if posts else {}
        post_types = self._fetch("post_types", wanted["post_type"])
        taxonomies = self._fetch("taxonomies", wanted["taxonomy"])
        terms = self._fetch("terms", wanted["term"])

        resolved = {}
        for node in nodes:
            link = node.link
            if isinstance(link, CustomLink):
                resolved[node.id] = (link.label, link.url)
            elif isinstance(link, PostLink):
                post = posts.get(link.object_id)
                resolved[node.id] = (post["title"], post_paths[post["id"]]) if post else (None, None)
            elif isinstance(link, PostTypeLink):
                pt = post_types.get(link.object_id)
                resolved[node.id] = (pt["label"], f"/{pt['name']}") if pt else (None, None)
            elif isinstance(link, TaxonomyLink):
                tax = taxonomies.get(link.object_id)
                resolved[node.id] = (tax["label"], f"/{tax['name']}") if tax else (None, None)
            else:
                term = terms.get(link.object_id)
                resolved[node.id] = (
                    (term["name"], f"/{term['taxonomy']}/{term['slug']}") if term else (None, None)
                )
        return resolved

    def serialize(self, roots: list[MenuNode]) -> list[dict]:
        resolved = self.resolve(roots)

        def node_dict(node: MenuNode) -> dict:
            label, url = resolved.get(node.id, (None, None))
            return {
                "id": node.id,
                "type": node.link.kind,
                "object_id": getattr(node.link, "object_id", None),
                "label": label,
                "display_label": node.label or label,
                "url": url,
                "target": node.target,
                "title_attr": node.title_attr,
                "css_classes": node.css_classes,
                "description": node.description,
                "menu_order": node.menu_order,
                "parent_id": node.parent_id,
                "meta": node.meta,
                "children": [node_dict(child) for child in node.children],
            }

        return [node_dict(root) for root in roots]
