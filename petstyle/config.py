"""Pydantic settings for application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="",
        description="Async SQLAlchemy database URL",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Connection pool size",
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Max connections beyond pool size",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements",
    )


class AzureStorageSettings(BaseSettings):
    """Azure Storage settings.

    ``AZURE_STORAGE_CONNECTION_STRING`` may also be an Azurite endpoint URI
    such as ``http://127.0.0.1:10000/devstoreaccount1``.
    """

    model_config = SettingsConfigDict(env_prefix="AZURE_STORAGE_")

    connection_string: str = Field(
        default="",
        description="Azure Storage connection string",
    )
    account_url: str = Field(
        default="",
        description="Azure Storage account URL (for managed identity)",
    )
    use_managed_identity: bool = Field(
        default=False,
        description="Use Azure managed identity for authentication",
    )
    container: str = Field(
        default="",
        description="Blob container holding input and output images",
    )


class OpenAISettings(BaseSettings):
    """OpenAI API settings."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(
        default="",
        description="OpenAI API key",
    )
    image_model: str = Field(
        default="gpt-image-1",
        description="OpenAI model used for image edits",
    )
    image_size: Literal["1024x1024", "1024x1536", "1536x1024", "auto"] = Field(
        default="1024x1024",
        description="Requested output size",
    )
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single provider request",
    )


class QueueSettings(BaseSettings):
    """Queue settings for workers."""

    model_config = SettingsConfigDict(env_prefix="")

    job_created_queue: str = Field(
        default="job-created",
        description="Queue carrying job-created notifications",
    )
    visibility_timeout: int = Field(
        default=360,
        ge=1,
        description="Message visibility timeout in seconds",
    )
    max_retries: int = Field(
        default=5,
        ge=0,
        description="Max redeliveries for failed messages",
    )


class QuotaSettings(BaseSettings):
    """Per-user daily quota settings."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_")

    default_daily_limit: int = Field(
        default=5,
        ge=0,
        description="Daily limit assigned to new users (0 = unlimited)",
    )


class PipelineSettings(BaseSettings):
    """Job pipeline settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    job_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound for download, generation and upload of one job",
    )
    output_max_size: int = Field(
        default=1024,
        ge=1,
        description="Longest edge of normalized output images",
    )
    provider: Literal["openai", "tint"] = Field(
        default="openai",
        description="Generation provider ('tint' runs offline without credentials)",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for logs",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
    )

    service_name: str = Field(
        default="petstyle",
        description="Service name for logging",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    # Nested settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: AzureStorageSettings = Field(default_factory=AzureStorageSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        The application settings.
    """
    return Settings()


def refresh_settings() -> Settings:
    """Clear settings cache and return fresh settings.

    Returns:
        Fresh application settings.
    """
    get_settings.cache_clear()
    return get_settings()
