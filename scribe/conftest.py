# scribe/conftest.py
import os
import pytest

from scribe.core.config import settings
from scribe.core.database import init_engine, reset_database


@pytest.fixture(scope="session")
def db_url():
    """
    Database URL for tests.

    TEST_DATABASE_URL when set (e.g. a disposable Postgres), otherwise an
    in-memory SQLite database shared through a static pool.
    """
    return os.getenv("TEST_DATABASE_URL") or "sqlite://"


@pytest.fixture(scope="session", autouse=True)
def engine(db_url):
    """Bind the engine once per test session."""
    return init_engine(db_url)


@pytest.fixture(scope="function", autouse=True)
def reset_db(engine):
    """Recreate every table before each test so tests never share rows."""
    reset_database()
    yield


@pytest.fixture(scope="function", autouse=True)
def test_settings(monkeypatch):
    """
    Pin settings that change behavior, whatever the developer's .env says.

    Providers are disabled unless a test injects a fake.
    """
    monkeypatch.setattr(settings, "ENV", "test")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "STRIPE_PRO_YEARLY_PRICE_ID", None)
    monkeypatch.setattr(settings, "GROQ_API_KEY", None)
    monkeypatch.setattr(settings, "QUOTA_ENFORCEMENT", "strict")
    monkeypatch.setattr(settings, "FRONTEND_URL", "http://localhost:3000")
    return settings


@pytest.fixture
def billing_provider():
    from scribe.tests.fakes import FakeBillingProvider

    return FakeBillingProvider()


@pytest.fixture
def completion_provider():
    from scribe.tests.fakes import FakeCompletionProvider

    return FakeCompletionProvider()
