"""Application settings loaded from environment variables.

Environment Configuration:
    DOGGO_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    DOGGO_INTERNAL_SECRET: Shared secret expected from the upstream BFF (required in staging/prod)

LLM Provider Configuration:
    ANTHROPIC_API_KEY / OPENAI_API_KEY: Platform keys (required in prod)
    ANTHROPIC_BASE_URL / OPENAI_BASE_URL: Override vendor endpoints (proxies, tests)
    LLM_TIMEOUT_S: Upper bound for a single provider call, at most 60 seconds
    DEFAULT_MODEL: Abstract model id used when an agent's model is unknown

Storage Configuration:
    SUPABASE_URL / SUPABASE_SERVICE_KEY: Supabase Storage credentials
    STORAGE_BUCKET: Bucket holding conversation attachments

Collaborators:
    JINA_READER_URL / JINA_API_KEY: Web page reader used by the scraper
    SERPAPI_URL / SERPAPI_KEY: Search API used for web-search digests

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

MAX_LLM_TIMEOUT_S = 60


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - LLM_TIMEOUT_S must be in (0, 60]
    - DOGGO_INTERNAL_SECRET is required in staging and prod
    - Provider keys and storage credentials are required in prod
    """

    doggo_env: Environment = Field(default=Environment.LOCAL, alias="DOGGO_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    doggo_internal_secret: str | None = Field(default=None, alias="DOGGO_INTERNAL_SECRET")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # LLM providers
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com", alias="ANTHROPIC_BASE_URL"
    )
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    llm_timeout_s: float = Field(default=MAX_LLM_TIMEOUT_S, alias="LLM_TIMEOUT_S")
    default_model: str = Field(default="haiku", alias="DEFAULT_MODEL")

    # Supabase Storage settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    storage_bucket: str = Field(default="conversation-attachments", alias="STORAGE_BUCKET")
    storage_timeout_s: float = Field(default=10.0, alias="STORAGE_TIMEOUT_S")
    signed_url_expiry_s: int = Field(default=3600, alias="SIGNED_URL_EXPIRY_S")  # 1 hour

    # Attachment limits
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")  # 10 MiB
    max_attachments_per_message: int = Field(default=10, alias="MAX_ATTACHMENTS_PER_MESSAGE")
    attachment_fetch_timeout_s: float = Field(default=15.0, alias="ATTACHMENT_FETCH_TIMEOUT_S")

    # Context window
    history_limit: int = Field(default=20, alias="HISTORY_LIMIT")

    # Scrape / search collaborators
    jina_reader_url: str = Field(default="https://r.jina.ai", alias="JINA_READER_URL")
    jina_api_key: str | None = Field(default=None, alias="JINA_API_KEY")
    serpapi_url: str = Field(default="https://serpapi.com/search", alias="SERPAPI_URL")
    serpapi_key: str | None = Field(default=None, alias="SERPAPI_KEY")
    collaborator_timeout_s: float = Field(default=30.0, alias="COLLABORATOR_TIMEOUT_S")

    # Usage quota, in doggo credits per calendar month
    monthly_doggo_limit: int = Field(default=10000, alias="MONTHLY_DOGGO_LIMIT")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        if not 0 < self.llm_timeout_s <= MAX_LLM_TIMEOUT_S:
            raise ValueError(
                f"LLM_TIMEOUT_S must be in (0, {MAX_LLM_TIMEOUT_S}], got {self.llm_timeout_s}"
            )

        if self.doggo_env in (Environment.STAGING, Environment.PROD):
            if not self.doggo_internal_secret:
                raise ValueError(
                    f"DOGGO_INTERNAL_SECRET is required for DOGGO_ENV={self.doggo_env.value}"
                )

        if self.doggo_env == Environment.PROD:
            missing = []
            if not self.anthropic_api_key:
                missing.append("ANTHROPIC_API_KEY")
            if not self.openai_api_key:
                missing.append("OPENAI_API_KEY")
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_service_key:
                missing.append("SUPABASE_SERVICE_KEY")
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.doggo_env in (Environment.STAGING, Environment.PROD)

    @property
    def is_production(self) -> bool:
        return self.doggo_env == Environment.PROD

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
