"""
Tests for environment settings and service wiring.
"""

import pytest
from pydantic import ValidationError

from adapters.memory_store import InMemoryCollectionStore
from app.services import build_services
from app.settings import Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "s")
        settings = Settings(_env_file=None)

        assert settings.STORE_BACKEND == "memory"
        assert settings.JWT_ALGO == "HS256"
        assert settings.MEDIA_BUCKET == "collection-media"

    def test_secret_required(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_algorithm_upper_cased(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "s")
        monkeypatch.setenv("JWT_ALGO", "hs512")
        assert Settings(_env_file=None).JWT_ALGO == "HS512"

    def test_supabase_backend_needs_credentials(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "s")
        monkeypatch.setenv("STORE_BACKEND", "supabase")
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "s")
        monkeypatch.setenv("STORE_BACKEND", "redis")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_memory_services_use_config(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "s")
    monkeypatch.setenv("PIN_LIMIT", "2")
    monkeypatch.setenv("EVENTS_ENABLED", "false")

    services = build_services(Settings(_env_file=None))

    assert isinstance(services.collections, InMemoryCollectionStore)
    assert services.post_coordinator.pin_limit == 2
    assert services.events.enabled is False
    assert services.membership.collections is services.collections
