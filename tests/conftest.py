"""
Shared pytest fixtures for the Accessibility Compliance Audit test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - record: Pre-created TestRecord in ``pending``
"""

import pytest

from compliance_audit import create_app
from compliance_audit.models import db as _db
from compliance_audit.models.test_record import TestRecord


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
def record():
    """A committed TestRecord for WCAG 1.4.3 in ``pending``."""
    rec = TestRecord(wcag_criterion="1.4.3", page_url="https://example.test/checkout")
    _db.session.add(rec)
    _db.session.commit()
    return rec
