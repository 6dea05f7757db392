"""
Pytest configuration and shared fixtures.
"""

from datetime import timedelta

import pytest

from app import create_app
from licensing import get_licensing
from models import db, License
from utils import generate_key, utcnow

ADMIN_SECRET = "test-admin-secret"


@pytest.fixture
def app():
    """Testing app backed by an in-memory sqlite database."""
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fallback_app():
    """Testing app with no database configured (in-memory fallback)."""
    app = create_app("testing", {"SQLALCHEMY_DATABASE_URI": None})
    with app.app_context():
        yield app


@pytest.fixture
def fallback_client(fallback_app):
    return fallback_app.test_client()


@pytest.fixture
def licensing(app):
    return get_licensing()


@pytest.fixture
def store(licensing):
    return licensing.store


@pytest.fixture
def validator(licensing):
    return licensing.validator


@pytest.fixture
def issuer(licensing):
    return licensing.issuer


@pytest.fixture
def make_license(app):
    """Factory that inserts a License row directly."""

    def _make(max_activations=1, days=30, is_active=True, customer_name="Test Customer", key=None):
        now = utcnow()
        lic = License(
            license_key=key or generate_key("PCOPT", now),
            customer_name=customer_name,
            max_activations=max_activations,
            creation_date=now,
            expiration_date=now + timedelta(days=days),
            is_active=is_active,
        )
        db.session.add(lic)
        db.session.commit()
        return lic

    return _make
