"""Unit tests for ConfigManager and SupabaseConfig."""

import pytest
from pydantic import ValidationError

from physio_records.infrastructure.config_manager import ConfigManager, SupabaseConfig, get_supabase_config

VALID = {
    "url": "https://example.supabase.co/",
    "anon_key": "anon-key",
    "jwt_secret": "jwt-secret",
}


class TestSupabaseConfig:
    """Test configuration validation."""

    def test_valid(self):
        """Test defaults and URL normalization."""
        config = SupabaseConfig(**VALID)

        assert config.url == "https://example.supabase.co"
        assert config.jwt_audience == "authenticated"
        assert config.store_page_size == 1000

    def test_secrets_are_masked(self):
        """Test that secrets never appear in the repr."""
        config = SupabaseConfig(**VALID)
        assert "jwt-secret" not in repr(config)
        assert "anon-key" not in repr(config)

    @pytest.mark.parametrize("url", ["example.supabase.co", "ftp://example.supabase.co", "https://"])
    def test_invalid_url(self, url):
        """Test that non-http URLs are rejected."""
        with pytest.raises(ValidationError):
            SupabaseConfig(**{**VALID, "url": url})

    def test_blank_secret(self):
        """Test that blank secrets are rejected."""
        with pytest.raises(ValidationError):
            SupabaseConfig(**{**VALID, "jwt_secret": "   "})


class TestConfigManager:
    """Test environment loading."""

    def test_missing_values(self):
        """Test that missing settings are reported by name."""
        manager = ConfigManager({"supabase": {"url": "https://example.supabase.co"}})

        with pytest.raises(ValueError, match="anon_key, jwt_secret"):
            manager.get_supabase_config()
        assert manager.is_configured() is False

    def test_invalid_values_are_not_configured(self):
        """Test that invalid settings count as unconfigured."""
        manager = ConfigManager({"supabase": {**VALID, "url": "not a url"}})
        assert manager.is_configured() is False

    def test_from_environment(self, monkeypatch):
        """Test reading SUPABASE_* variables."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
        monkeypatch.setenv("SUPABASE_JWT_SECRET", "env-secret")
        monkeypatch.setenv("SUPABASE_STORE_PAGE_SIZE", "250")

        config = ConfigManager.from_environment().get_supabase_config()

        assert config.url == "https://env.supabase.co"
        assert config.anon_key.get_secret_value() == "env-anon"
        assert config.store_page_size == 250

    def test_convenience_accessor(self, monkeypatch):
        """Test the module-level accessor reads the same variables."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
        monkeypatch.setenv("SUPABASE_JWT_SECRET", "env-secret")

        assert get_supabase_config().url == "https://env.supabase.co"
