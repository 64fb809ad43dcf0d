"""
Shared pytest fixtures for the WaterMap Catalog test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / expert / other_expert / viewer: mirrored users
    - auth_headers: Bearer header factory
    - lake_payload / river_payload: valid create payloads
"""

import pytest

from watermap import create_app
from watermap.models import db as _db
from watermap.models.auth import User
from watermap.services.jwt_service import generate_access_token


# Lake Balkhash, roughly
BALKHASH_POLYGON = {
    "type": "Polygon",
    "coordinates": [[
        [74.0, 46.0], [79.0, 46.0], [79.0, 47.0], [74.0, 47.0], [74.0, 46.0],
    ]],
}

ILI_LINE = {
    "type": "LineString",
    "coordinates": [[77.0, 43.9], [78.5, 44.2], [79.2, 44.6]],
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


def _make_user(name, email, role):
    user = User(name=name, email=email, role=role)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def admin():
    return _make_user("Aigerim Admin", "admin@watermap.test", "admin")


@pytest.fixture()
def expert():
    return _make_user("Dauren Expert", "expert@watermap.test", "expert")


@pytest.fixture()
def other_expert():
    return _make_user("Saule Expert", "saule@watermap.test", "expert")


@pytest.fixture()
def viewer():
    return _make_user("Public Viewer", "viewer@watermap.test", "user")


@pytest.fixture()
def auth_headers():
    """Return a factory: auth_headers(user) -> {"Authorization": "Bearer ..."}."""
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}
    return _headers


# ── Payloads ─────────────────────────────────────────────────────────────


@pytest.fixture()
def lake_payload():
    """Factory for a valid lake create payload; keyword overrides are merged in."""
    def _payload(**overrides):
        data = {
            "name_kz": "Балқаш",
            "name_ru": "Балхаш",
            "name_en": "Balkhash",
            "object_type": "lake",
            "geometry": BALKHASH_POLYGON,
            "area_km2": 16400.0,
            "max_depth_m": 26.0,
            "sources": ["Kazhydromet 2020"],
        }
        data.update(overrides)
        return data
    return _payload


@pytest.fixture()
def river_payload():
    def _payload(**overrides):
        data = {
            "name_kz": "Іле",
            "name_en": "Ili",
            "object_type": "river",
            "geometry": ILI_LINE,
            "length_km": 1439.0,
        }
        data.update(overrides)
        return data
    return _payload
