"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Variable names match the ones the mobile app already uses for Cloudflare
(CLOUDFLARE_ACCOUNT_ID, CLOUDFLARE_STREAM_API_TOKEN, ...) so the same .env
file can be shared.

Each backend is optional. A backend with missing credentials is simply
reported as "not configured" and uploads routed to it fail fast.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Trick Media Ingestion API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # Shared Cloudflare account
    cloudflare_account_id: str = Field(
        default="",
        description="Cloudflare account ID shared by Stream and Images"
    )
    cloudflare_api_base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare REST API root"
    )

    # Stream (video)
    cloudflare_stream_api_token: str = Field(
        default="",
        description="API token with Stream:Edit permission"
    )
    cloudflare_stream_customer_subdomain: str = Field(
        default="",
        description="Playback host, e.g. customer-abc123.cloudflarestream.com"
    )
    stream_max_attempts: int = Field(
        default=3,
        description="Upload attempts per video before giving up"
    )
    stream_idle_timeout_seconds: float = Field(
        default=60.0,
        description="Abort an attempt when no bytes were sent for this long"
    )
    stream_session_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for the tus session creation request"
    )

    # Images
    cloudflare_images_api_token: str = Field(
        default="",
        description="API token with Images:Edit permission"
    )
    cloudflare_images_account_hash: str = Field(
        default="",
        description="Account hash used in imagedelivery.net URLs"
    )
    cloudflare_images_delivery_url: str = Field(
        default="https://imagedelivery.net",
        description="Delivery base URL for image variants"
    )

    # R2 Storage Configuration
    cloudflare_r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    cloudflare_r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    cloudflare_r2_bucket_name: str = Field(
        default="",
        description="R2 bucket for generic files and image fallback"
    )
    cloudflare_r2_endpoint: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    cloudflare_r2_public_url: str = Field(
        default="",
        description="Public base URL of the bucket (custom domain or r2.dev)"
    )
    cloudflare_r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Application Behavior
    max_upload_size_mb: int = Field(
        default=500,
        description="Maximum size of a file accepted by the upload endpoint"
    )
    migration_source_marker: str = Field(
        default="supabase",
        description="Substring identifying legacy URLs that the migration should move"
    )
    migration_batch_size: int = Field(default=10)
    migration_batch_pause_seconds: float = Field(default=2.0)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:8081",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        """
        if self.cloudflare_r2_endpoint:
            return self.cloudflare_r2_endpoint
        if not self.cloudflare_account_id:
            return ""
        return f"https://{self.cloudflare_account_id}.r2.cloudflarestorage.com"

    def validate_required_fields(self) -> list[str]:
        """
        List the environment variables each backend is still missing.

        Unlike Pydantic validation this never fails: a partially
        configured deployment is valid, the affected backend just reports
        itself as not configured.
        """
        missing = []

        if not self.cloudflare_account_id:
            missing.append("CLOUDFLARE_ACCOUNT_ID")

        if not self.cloudflare_stream_api_token:
            missing.append("CLOUDFLARE_STREAM_API_TOKEN")
        if not self.cloudflare_stream_customer_subdomain:
            missing.append("CLOUDFLARE_STREAM_CUSTOMER_SUBDOMAIN")

        if not self.cloudflare_images_api_token:
            missing.append("CLOUDFLARE_IMAGES_API_TOKEN")
        if not self.cloudflare_images_account_hash:
            missing.append("CLOUDFLARE_IMAGES_ACCOUNT_HASH")

        # R2 only required if not in mock mode
        if not self.cloudflare_r2_mock_mode:
            if not self.cloudflare_r2_access_key_id:
                missing.append("CLOUDFLARE_R2_ACCESS_KEY_ID")
            if not self.cloudflare_r2_secret_access_key:
                missing.append("CLOUDFLARE_R2_SECRET_ACCESS_KEY")
            if not self.cloudflare_r2_bucket_name:
                missing.append("CLOUDFLARE_R2_BUCKET_NAME")
            if not self.cloudflare_r2_public_url:
                missing.append("CLOUDFLARE_R2_PUBLIC_URL")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
