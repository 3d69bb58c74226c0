"""
Pytest configuration and shared fixtures.

Required settings get test defaults here, before any app imports, so the
suite runs without a .env file. Each test gets its own SQLite file and a
recording notifier in place of a real SMTP relay.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_newsletter.db")
os.environ.setdefault("SMTP_HOST", "smtp.test.local")
os.environ.setdefault("SMTP_PORT", "2525")
os.environ.setdefault("SMTP_USERNAME", "newsletter@test.local")
os.environ.setdefault("SMTP_PASSWORD", "test-password")
os.environ.setdefault("SMTP_TLS", "none")
os.environ.setdefault("PORT", "3000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from newsletter.config import Settings, get_settings
get_settings.cache_clear()

from newsletter.errors import MailError
from newsletter.main import create_app
from newsletter.notifier import Notifier
from newsletter.storage import Base, SubscriberStore


class RecordingNotifier(Notifier):
    """Notifier that keeps messages in memory. Set fail=True to make sends fail."""

    def __init__(self, fail: bool = False):
        super().__init__(
            host="smtp.test.local",
            port=2525,
            username="newsletter@test.local",
            password="test-password",
            tls_mode="none",
        )
        self.fail = fail
        self.sent = []

    def send(self, message):
        if self.fail:
            raise MailError(f"relay refused {message.to}")
        self.sent.append(message)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'newsletter.db'}",
        SMTP_VERIFY_ON_STARTUP=False,
        _env_file=None,
    )


@pytest.fixture
def store(settings):
    """Store on a fresh database with the schema applied."""
    subscriber_store = SubscriberStore.from_settings(settings)
    subscriber_store.ensure_schema()
    yield subscriber_store
    Base.metadata.drop_all(bind=subscriber_store.engine)
    subscriber_store.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


@pytest.fixture
def client(settings, store, notifier):
    """Create test client with fresh database for each test."""
    app = create_app(settings, store=store, notifier=notifier)
    with TestClient(app) as test_client:
        yield test_client
