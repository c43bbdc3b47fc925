"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hey future me - deploy templates ship these placeholder strings instead of real keys!
# A value that still starts with this prefix counts as "not configured", same as empty.
PLACEHOLDER_PREFIX = "__REPLACE_WITH_"


def _is_real_value(value: str) -> bool:
    return bool(value and value.strip()) and not value.startswith(PLACEHOLDER_PREFIX)


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./soundledger.db"
    echo: bool = False
    pool_pre_ping: bool = True
    # Only applied for PostgreSQL - SQLite has no real pool
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    log_json_format: bool = False

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


class RecommendationSettings(BaseModel):
    """Recommendation engine settings.

    Hey future me - always_regenerate is THE switch for "fresh list on every call".
    Useful while developing the ranking, expensive in production. It used to be a
    build-mode thing in the old app; now it's one runtime flag so dev and prod run
    the same code.
    """

    max_results: int = Field(default=20, ge=1, le=100)
    freshness_hours: int = Field(default=24, ge=1)
    always_regenerate: bool = False


class SimilaritySettings(BaseModel):
    """External similarity service (PostgREST-style RPC endpoint)."""

    url: str = ""
    api_key: str = ""
    rpc_function: str = "get_recommendations"
    affinity_table: str = "song_likes"
    timeout: float = Field(default=10.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return _is_real_value(self.url) and _is_real_value(self.api_key)


class EmbeddingSettings(BaseModel):
    """Text-embedding API settings (OpenAI-compatible /embeddings endpoint)."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=384, ge=1)
    timeout: float = Field(default=15.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return _is_real_value(self.api_key)


class CleanupSettings(BaseModel):
    """Subscription-lapse cleanup sweep settings."""

    grace_period_hours: int = Field(default=48, ge=0)
    interval_seconds: int = Field(default=86400, ge=1)


class AffinitySyncSettings(BaseModel):
    """Nightly like-ledger export settings."""

    interval_seconds: int = Field(default=86400, ge=1)


class Settings(BaseSettings):
    """Top-level settings.

    Nested sections map to env vars with a double underscore, e.g.
    ``DATABASE__URL`` or ``SIMILARITY__API_KEY``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "soundledger"
    app_env: Literal["development", "production", "test"] = "development"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    recommendations: RecommendationSettings = Field(
        default_factory=RecommendationSettings
    )
    similarity: SimilaritySettings = Field(default_factory=SimilaritySettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    affinity_sync: AffinitySyncSettings = Field(default_factory=AffinitySyncSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
