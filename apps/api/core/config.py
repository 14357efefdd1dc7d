"""Centralized application configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance. Replaces scattered
os.environ.get() calls throughout the codebase.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (identity only; ledger rows live in DATABASE_URL)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_ANON_KEY: str = Field(..., description="Supabase anon/public key")

    # Ledger database
    DATABASE_URL: str = Field(
        default="sqlite:///./ledger.db",
        description="SQLAlchemy URL of the transaction ledger",
    )

    # CORS
    ALLOWED_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated allowed origins for CORS",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )

    # App
    APP_VERSION: str = Field(default="0.4.0", description="Application version")

    # Ingestion
    MAX_UPLOAD_BYTES: int = Field(
        default=5 * 1024 * 1024, description="Largest accepted statement upload"
    )
    CSV_CHUNK_ROWS: int = Field(
        default=1000, description="Rows read per chunk while parsing a statement"
    )
    DUPLICATE_LOOKUP_CHUNK_SIZE: int = Field(
        default=500, description="Match keys per history query during duplicate checks"
    )
    CATEGORY_RULES_PATH: str = Field(
        default="",
        description="Optional JSON rule table replacing the bundled category rules",
    )

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Factory for Settings, allows test override."""
    return Settings()


# Module-level instance (None when env vars are missing, e.g. under test)
try:
    settings = get_settings()
except Exception:
    settings = None  # type: ignore[assignment]
