"""Tests for core config module."""

import pytest


class TestSettings:
    """Test Pydantic Settings loads env vars correctly."""

    def test_settings_loads_supabase_url(self, monkeypatch):
        """Settings should load SUPABASE_URL from env."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.SUPABASE_URL == "https://test.supabase.co"

    def test_settings_loads_allowed_origins(self, monkeypatch):
        """Settings should parse ALLOWED_ORIGINS as comma-separated list."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")
        monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:3000,https://scale-app.com")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.allowed_origins == [
            "http://localhost:3000",
            "https://scale-app.com",
        ]

    def test_settings_defaults(self, monkeypatch):
        """Settings should have sensible defaults."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.LOG_LEVEL == "INFO"
        assert settings.ENVIRONMENT == "development"
        assert settings.ALLOWED_ORIGINS == "http://localhost:3000"

    def test_sms_ingestion_defaults(self, monkeypatch):
        """SMS tunables default to the documented cadence."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.SMS_INGESTION_ENABLED is True
        assert settings.SMS_POLL_INTERVAL_SECONDS == 20.0
        assert settings.SMS_DEDUP_TTL_SECONDS == 300.0
        assert settings.SMS_BACKGROUND_MIN_INTERVAL_SECONDS == 900.0
        assert settings.SMS_SOURCE_BACKEND == "memory"

    def test_ingestion_config_from_env(self, monkeypatch):
        """Env overrides flow into the library config."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")
        monkeypatch.setenv("SMS_POLL_BATCH_SIZE", "5")
        monkeypatch.setenv("SMS_INGESTION_ENABLED", "false")
        monkeypatch.setenv("SMS_WATERMARK_PATH", "")

        from apps.api.core.config import Settings
        config = Settings().ingestion_config()
        assert config.poll_batch_size == 5
        assert config.ingestion_enabled is False
        assert config.watermark_path is None

    def test_settings_requires_supabase(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

        from apps.api.core.config import Settings
        with pytest.raises(Exception):
            Settings(_env_file=None)
