"""
Shared pytest fixtures for the FMS execution engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / admin / owner / worker: user factories
    - make_template: FlowTemplate factory going through template_service
"""

import pytest

from fms import create_app
from fms.models import db as _db
from fms.models.user import User
from fms.services import template_service


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Return a factory creating committed users."""
    counter = {"n": 0}

    def _make(username=None, role="user", status="active"):
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            email=f"{username or 'user' + str(counter['n'])}@example.com",
            role=role,
            status=status,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin", role="admin")


@pytest.fixture()
def owner(make_user):
    """Project creator."""
    return make_user("owner")


@pytest.fixture()
def worker(make_user):
    """Default assignee of every step."""
    return make_user("worker")


@pytest.fixture()
def make_template(worker):
    """Return a factory creating templates through template_service.

    Each step is a dict in the API shape; ``assignee_ids`` defaults to the
    ``worker`` user and ``offset_unit`` to days.
    """

    def _make(steps, name="Onboarding", skip_weekend=False, created_by_id=None):
        payload = []
        for step in steps:
            step = dict(step)
            step.setdefault("assignee_ids", [worker.id])
            step.setdefault("offset_unit", "days")
            payload.append(step)
        return template_service.create_template(
            {"name": name, "skip_weekend": skip_weekend, "steps": payload},
            created_by_id=created_by_id,
        )

    return _make
