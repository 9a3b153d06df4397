"""Shared configuration management for the receipt pipeline.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_MONTHLY_LIMIT=500
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="receiptflow",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )
    timezone: str | None = Field(
        default=None,
        description="IANA timezone for period keys and receipt ids (default: process local time)",
    )

    # Extraction backend configuration
    extraction_provider: Literal["gemini", "openai", "ollama"] = Field(
        default="gemini",
        description="Vision model backend: gemini, openai (cloud APIs) or ollama (self-hosted)",
    )
    gemini_api_key: str = Field(
        default="",
        description="Google AI API key (use env var APP_GEMINI_API_KEY)",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Primary model, tried first in the fallback chain",
    )
    gemini_fallback_models: list[str] = Field(
        default=["gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.0-flash-001"],
        description="Ordered model fallback chain",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI vision model (for extraction_provider='openai')",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5vl:7b",
        description="Ollama vision model (for extraction_provider='ollama')",
    )
    extraction_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per model before moving down the fallback chain",
    )
    extraction_backoff_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Rate-limit backoff base; the wait after attempt n is base * 2**n",
    )

    # Quota configuration
    monthly_limit: int = Field(
        default=975,
        ge=0,
        description="Monthly extraction limit, kept below the provider's billing ceiling",
    )
    quota_message: str = Field(
        default="You are out of OCR quota, please contact admin.",
        description="Message returned to the sender when the quota is exhausted",
    )
    usage_cache_ttl_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Staleness window of the in-process usage cache",
    )
    usage_backend: Literal["sheets", "memory"] = Field(
        default="sheets",
        description="Usage ledger persistence: sheets (Usage tab) or memory (single process)",
    )
    default_tenant_quota: int = Field(
        default=500,
        ge=0,
        description="Quota applied to tenants whose directory row has no limit",
    )

    # Spreadsheet configuration
    sheets_api_base_url: str = Field(
        default="https://sheets.googleapis.com/v4",
        description="Google Sheets REST API base URL",
    )
    sheets_access_token: str = Field(
        default="",
        description="OAuth bearer token for the Sheets API (use env var APP_SHEETS_ACCESS_TOKEN)",
    )
    spreadsheet_id: str = Field(
        default="",
        description="Spreadsheet receiving invoice rows",
    )
    sheet_name: str = Field(
        default="Sheet1",
        description="Tab receiving invoice rows",
    )
    usage_sheet_name: str = Field(
        default="Usage",
        description="Tab holding the monthly usage ledger",
    )
    config_spreadsheet_id: str = Field(
        default="",
        description="Spreadsheet holding the user and tenant directory",
    )
    users_tab: str = Field(default="users", description="Directory tab of users")
    tenants_tab: str = Field(default="corps", description="Directory tab of tenants")
    additional_vat_rate: float = Field(
        default=0.07,
        ge=0,
        description="Rate used for the derived 'Additional VAT 7%' column",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Enable document storage in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="receipts",
        description="Bucket holding uploaded documents",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )
    storage_url_expiry_seconds: int = Field(
        default=7 * 24 * 3600,
        description="Lifetime of the presigned document URL written to the sheet",
    )

    # Queue configuration
    queue_enabled: bool = Field(default=False, description="Process documents via arq")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for arq")
    queue_max_jobs: int = Field(default=10, description="Concurrent jobs per worker")
    queue_job_timeout: int = Field(default=300, description="Job timeout in seconds")

    # Replies
    verbose_return_output: bool = Field(
        default=False,
        description="Reply with the extracted invoice summary instead of a short confirmation",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
