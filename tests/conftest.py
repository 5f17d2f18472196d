"""Pytest configuration and fixtures."""

import os

import pytest

# Set before app modules build their cached settings
os.environ["DISCOVERY_ENV"] = "test"
os.environ["NVIDIA_API_KEY"] = "test-nvidia-key"
os.environ["PERSISTENCE_ENABLED"] = "false"
os.environ["PROVIDER_HEALTH_MONITOR_ENABLED"] = "false"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("ANTHROPIC_API_KEY", None)
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("LEAD_NOTIFICATION_EMAIL", None)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Rebuild settings and the shared RAG store for every test."""
    from app.core.config import get_settings
    from app.core.rag import get_rag_store

    get_settings.cache_clear()
    get_rag_store.cache_clear()
    yield
    get_settings.cache_clear()
    get_rag_store.cache_clear()


@pytest.fixture
def set_env(monkeypatch):
    """Set environment variables and drop the cached settings."""
    from app.core.config import get_settings

    def _set(**values):
        for key, value in values.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()

    return _set
