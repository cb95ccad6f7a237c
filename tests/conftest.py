"""
Shared fixtures: in-memory stores for the security core, and a Flask app
backed by an in-memory SQLite database for the HTTP tests.
"""
from datetime import datetime

import pytest

from app import create_app
from config import TestConfig
from models import db
from security import build_services
from security.context import AccountStatus, AuthContext
from security.password import hash_password
from stores import memory_stores

NOW = datetime(2026, 3, 2, 12, 0, 0)
STRONG_PASSWORD = "Str0ng!Pass"
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:126.0) Gecko/20100101 Firefox/126.0"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def stores():
    # short lock timeout so outage tests fail fast
    return memory_stores(timeout=0.05)


@pytest.fixture
def services(stores):
    return build_services({"BCRYPT_ROUNDS": 4}, stores)


@pytest.fixture
def tenant():
    return AuthContext.tenant("acme")


@pytest.fixture
def make_account(stores, tenant):
    def _make(email="user@example.com", password=STRONG_PASSWORD, context=None, role="member",
              status=AccountStatus.ACTIVE):
        context = context or tenant
        return stores.credentials.create(context.realm, email, hash_password(password, 4), role, status=status)
    return _make


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    client = app.test_client()
    client.environ_base["HTTP_USER_AGENT"] = BROWSER_UA
    return client
