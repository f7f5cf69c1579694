"""Central configuration for the lead → student matching service.

This module uses Pydantic Settings for validation and env management. The two
secrets (OPENAI_API_KEY, POSTGRES_URI) have no defaults: loading settings
without them fails before any request is handled.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

from .errors import ConfigurationError

_SYNC_POSTGRES_DRIVERS = {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class DatabaseSettings(BaseSettings):
    """Database configuration."""
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("POSTGRES_URI", "DB_URL"),
        description="PostgreSQL connection string (postgres:// or postgresql+asyncpg://)",
    )
    ssl: bool = Field(default=True, description="Used when the URL carries no sslmode")
    connect_timeout: float = Field(default=10.0, gt=0, le=60)
    echo: bool = Field(default=False)

    def sqlalchemy_url(self) -> URL:
        """Return the URL rewritten for the asyncpg driver.

        asyncpg does not understand libpq's ``sslmode`` query argument, so it
        is removed here and expressed through :meth:`ssl_enabled` instead.
        """
        url = make_url(self.url)
        if url.drivername in _SYNC_POSTGRES_DRIVERS:
            url = url.set(drivername="postgresql+asyncpg")
        return url.difference_update_query(["sslmode"])

    def ssl_enabled(self) -> bool:
        sslmode = make_url(self.url).query.get("sslmode")
        if isinstance(sslmode, tuple):
            sslmode = sslmode[-1]
        if sslmode is None:
            return self.ssl
        return sslmode != "disable"

    def safe_url(self) -> str:
        """URL with the password hidden, for logging."""
        return self.sqlalchemy_url().render_as_string(hide_password=True)


class OpenAISettings(BaseSettings):
    """OpenAI client configuration."""
    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr = Field(validation_alias=AliasChoices("OPENAI_API_KEY"))
    timeout: float = Field(default=30.0, gt=0, le=120, description="Per-call timeout in seconds")
    max_retries: int = Field(default=2, ge=0, le=5, description="Retries after the first attempt")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("OPENAI_API_KEY must not be empty")
        return v


class EmbeddingSettings(BaseSettings):
    """Embedding model configuration."""
    model_config = SettingsConfigDict(env_prefix="EMBEDDING_", env_file=".env", extra="ignore")

    model_name: str = Field(default="text-embedding-3-large")


class MatchingSettings(BaseSettings):
    """Matching pipeline configuration."""
    model_config = SettingsConfigDict(env_prefix="MATCHING_", env_file=".env", extra="ignore")

    retrieval_width: int = Field(default=50, ge=30, le=50, description="Nearest-neighbor candidates")
    distance_metric: Literal["cosine", "inner_product"] = Field(
        default="cosine",
        description="Must match the operator class of the student_embeddings index",
    )
    default_limit: int = Field(default=10, ge=1, le=10)
    max_limit: int = Field(default=10, ge=1, le=10)
    rerank_model: str = Field(default="gpt-4o-mini")


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")

    level: str = Field(default="INFO")
    format: Literal["json", "text"] = Field(default="json")


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    app_name: str = Field(default="Lead Student Matching")
    version: str = Field(default="0.1.0")

    # Sub-configs
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings() -> Settings:
    """Load and validate settings from the environment.

    Called once per process, at startup.

    Raises:
        ConfigurationError: If a required variable is missing or a value is invalid
    """
    try:
        return Settings()
    except ValidationError as e:
        names = sorted({str(err["loc"][-1]) for err in e.errors() if err.get("loc")})
        raise ConfigurationError(
            f"Missing or invalid configuration: {', '.join(names) or 'unknown'}",
            cause=e,
        ) from e
