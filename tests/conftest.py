"""
Shared pytest fixtures for the Counterparty Onboarding Desk test suite.

Provides:
    - app: Flask application (session-scoped, auth disabled)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - secured_app / secured_client: second app in the same process with
      API_AUTH_ENABLED=true and its own in-memory database
    - kyc_template: published ("KYC", 1) template
    - onboarding: onboarding seeded from the default ONBOARDING template
"""

import pytest

from onboarding_desk import create_app
from onboarding_desk.models import db as _db
from onboarding_desk.services import checklist_template_service, onboarding_service
from onboarding_desk.services.jwt_service import generate_access_token

KYC_TEMPLATE = {
    "checklistType": "KYC",
    "versionNumber": 1,
    "title": "KYC",
    "sections": [
        {
            "title": "Identity",
            "guidance": "Verify who the counterparty is.",
            "items": [
                {"title": "Proof of ID", "guidance": "Passport or national ID."},
            ],
        },
    ],
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


@pytest.fixture()
def secured_app():
    """An app with role checks enabled, created alongside the default one."""
    application = create_app("testing", {"API_AUTH_ENABLED": "true"})
    yield application
    with application.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def secured_client(secured_app):
    return secured_app.test_client()


@pytest.fixture()
def token_for(secured_app):
    """Factory: bearer header for a user holding ``roles``."""

    def _make(user_id, *roles):
        with secured_app.app_context():
            token = generate_access_token(user_id, list(roles))
        return {"Authorization": f"Bearer {token}"}

    return _make


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def kyc_template():
    """Publish and return the single-item ("KYC", 1) template."""
    return checklist_template_service.publish_template(KYC_TEMPLATE, published_by="admin")


@pytest.fixture()
def default_templates():
    checklist_template_service.seed_default_templates()


@pytest.fixture()
def onboarding(default_templates):
    """Onboarding seeded from the latest ONBOARDING template."""
    return onboarding_service.create_onboarding({
        "registrationId": "reg-001",
        "companyName": "Acme Trading Ltd",
        "walletAddress": "0xabc123",
    })

