"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For standard test utilities, see tests/__init__.py
"""

import pytest


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "db: marks tests as requiring database (deselect with '-m \"not db\"')"
    )


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep host settings (dry-run flag, database and Redis URLs, SMTP) out of the tests."""
    for var in (
        'NOTIFICATION_DRY_RUN', 'DATABASE_URL', 'REDIS_URL',
        'SMTP_SERVER', 'SMTP_PORT', 'SMTP_USERNAME', 'SMTP_PASSWORD', 'FROM_EMAIL',
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def session_factory():
    """In-memory SQLite sessionmaker with all tables created."""
    from tests import make_test_session_factory
    return make_test_session_factory()
