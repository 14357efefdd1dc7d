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

    def test_ingestion_defaults(self, monkeypatch):
        """Ingestion limits default to 5 MiB uploads and bounded lookups."""
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.MAX_UPLOAD_BYTES == 5 * 1024 * 1024
        assert settings.DUPLICATE_LOOKUP_CHUNK_SIZE == 500
        assert settings.CSV_CHUNK_ROWS == 1000
        assert settings.CATEGORY_RULES_PATH == ""
        assert settings.DATABASE_URL.startswith("sqlite")

    def test_is_production(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "test-anon-key")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("DATABASE_URL", "postgresql://ledger@db/ledger")

        from apps.api.core.config import Settings
        settings = Settings()
        assert settings.is_production
        assert settings.DATABASE_URL == "postgresql://ledger@db/ledger"

    def test_missing_supabase_settings_fail(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

        from pydantic import ValidationError
        from apps.api.core.config import Settings
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
