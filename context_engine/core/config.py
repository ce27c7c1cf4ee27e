"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Cache Configuration
    CACHE_MAXSIZE: int = 1000
    EMBEDDING_CACHE_TTL_SECONDS: int = 600  # 10 minutes
    PREDICTION_CACHE_TTL_SECONDS: int = 300  # 5 minutes
    SOURCE_CACHE_TTL_SECONDS: int = 300  # 5 minutes

    # Semantic Analysis
    EMBEDDING_DIMENSIONS: int = 768
    ATTENTION_DECAY_LAMBDA: float = 0.1
    FALLBACK_CONFIDENCE: float = 0.3

    # Behavior Model
    PATTERN_SIMILARITY_THRESHOLD: float = 0.8
    INTERACTION_SIMILARITY_THRESHOLD: float = 0.7
    FOLLOW_UP_SIMILARITY_THRESHOLD: float = 0.6
    MAX_QUERY_PATTERNS: int = 100
    MAX_FOLLOW_UPS: int = 5

    # Data Integration
    DEFAULT_QUERY_WINDOW_DAYS: int = 30
    SOURCE_FETCH_TIMEOUT_SECONDS: float = 10.0
    SOURCE_FAILURE_THRESHOLD: int = 5
    SOURCE_RECOVERY_TIMEOUT_SECONDS: float = 30.0
    SHOPIFY_API_URL: str = ""
    KAJABI_API_URL: str = ""
    MARKETING_API_URL: str = ""

    # Session & Profile Store
    MEMORY_SEARCH_LIMIT: int = 50

    # Persistence Queue
    PERSISTENCE_MAX_ATTEMPTS: int = 3
    PERSISTENCE_BACKOFF_SECONDS: float = 0.5

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("ATTENTION_DECAY_LAMBDA")
    @classmethod
    def validate_decay_lambda(cls, v: float) -> float:
        """Attention decay must be strictly positive so older turns weigh less."""
        if v <= 0:
            raise ValueError("ATTENTION_DECAY_LAMBDA must be greater than 0")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def is_configured(self) -> bool:
        """Check if required settings are configured."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value())

    def validate_startup(self) -> None:
        """Validate that required secrets are present.

        Raises:
            ValueError: If any required setting is missing.
        """
        missing: list[str] = []
        if not self.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value():
            missing.append("SUPABASE_SERVICE_ROLE_KEY")

        if missing:
            raise ValueError(
                f"Missing required configuration: {', '.join(missing)}. "
                "Set these in the environment or .env file."
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Application settings instance.
    """
    return Settings()
