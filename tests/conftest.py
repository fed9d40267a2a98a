"""
Shared pytest fixtures for the Site CMS test suite.

Provides:
    - app: Flask application (session-scoped, SQLite in memory)
    - session: Per-test reset of tables, per-site tables, registry and blacklist (autouse)
    - client: Flask test client (function-scoped)
    - site / other_site: provisioned sites with default content types
    - super_admin, admin, editor, author, contributor, subscriber: users with site roles
    - make_site / make_user / auth_headers: seed helpers for ad-hoc setups
"""

import re

import pytest
import sqlalchemy as sa
from werkzeug.security import generate_password_hash

from sitecms import create_app
from sitecms.models import db as _db
from sitecms.models.auth import Role, SiteMembership, User
from sitecms.services import site_service
from sitecms.services.jwt_service import generate_token_pair, init_token_blacklist
from sitecms.services.permission_service import build_principal
from sitecms.services.user_service import seed_roles
from sitecms.tenant import init_store_registry

TEST_PASSWORD = "Secret-pass-123"
# Cheap hash for fixtures; verify_password accepts werkzeug hashes too.
_PASSWORD_HASH = generate_password_hash(TEST_PASSWORD, method="pbkdf2:sha256:1000")

_SITE_TABLE = re.compile(r"^site_\d+_")


def _drop_site_tables():
    names = [n for n in sa.inspect(_db.engine).get_table_names() if _SITE_TABLE.match(n)]
    with _db.engine.begin() as conn:
        for name in names:
            conn.execute(sa.text(f'DROP TABLE IF EXISTS "{name}"'))


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(autouse=True)
def session(app):
    """Per-test: fresh registry and blacklist, built-in roles, clean tables afterwards."""
    with app.app_context():
        init_store_registry(app)
        init_token_blacklist(app)
        seed_roles()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.session.remove()
        _drop_site_tables()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Seed helpers ─────────────────────────────────────────────────────────


def make_site(name, display_name=None, **extra):
    """Create and provision a site through the service; returns the Site."""
    site = site_service.create_site({"name": name, "display_name": display_name or name.title(), **extra})
    _db.session.commit()
    return site


def make_user(username, role="subscriber", site=None, site_role=None, super_admin=False,
              status="active"):
    """Create a user with a global role and, optionally, a membership on *site*."""
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=_PASSWORD_HASH,
        role=Role.query.filter_by(name=role).one(),
        is_super_admin=super_admin,
        status=status,
    )
    _db.session.add(user)
    _db.session.flush()
    if site is not None:
        _db.session.add(SiteMembership(
            site_id=site.id, user_id=user.id,
            role=Role.query.filter_by(name=site_role or role).one(),
        ))
    _db.session.commit()
    return user


def token_for(user, site=None, **principal_kwargs):
    """Access token for *user* on *site* (site id may also be passed as an int)."""
    site_id = site.id if hasattr(site, "id") else site
    principal = build_principal(_db.session.get(User, user.id), site_id, **principal_kwargs)
    return generate_token_pair(principal)["access_token"]


def auth_headers(user, site=None, **principal_kwargs):
    """Bearer + X-Site-ID headers for *user* acting on *site*."""
    headers = {"Authorization": f"Bearer {token_for(user, site, **principal_kwargs)}"}
    if site is not None:
        headers["X-Site-ID"] = str(site.id if hasattr(site, "id") else site)
    return headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def site():
    return make_site("alpha", "Alpha Site")


@pytest.fixture()
def other_site():
    return make_site("beta", "Beta Site")


@pytest.fixture()
def super_admin():
    return make_user("root", role="super_admin", super_admin=True)


@pytest.fixture()
def admin(site):
    return make_user("alice", role="admin", site=site)


@pytest.fixture()
def editor(site):
    return make_user("eddie", role="editor", site=site)


@pytest.fixture()
def author(site):
    return make_user("annie", role="author", site=site)


@pytest.fixture()
def contributor(site):
    return make_user("carl", role="contributor", site=site)


@pytest.fixture()
def subscriber(site):
    return make_user("sam", role="subscriber", site=site)
