"""
Application Settings.

Centralized configuration using Pydantic Settings with environment variable loading.
Only the Supabase connection is required at startup; every third-party provider
is optional and the features depending on it report a configuration error
when used without credentials.

Production Mode:
    When app_env="production", additional validations apply:
    - api_key_enabled must be True
    - debug must be False
    - cors_allowed_origins cannot be ["*"]
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Supabase
    # -------------------------------------------------------------------------
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_key: SecretStr = Field(..., description="Supabase service role key")

    # -------------------------------------------------------------------------
    # Google (Places API + Business Profile OAuth)
    # -------------------------------------------------------------------------
    google_places_api_key: SecretStr | None = Field(
        default=None, description="Google Places API key"
    )
    google_client_id: str | None = Field(
        default=None, description="Google OAuth client id for the Business Profile connect flow"
    )
    google_client_secret: SecretStr | None = Field(
        default=None, description="Google OAuth client secret"
    )

    # -------------------------------------------------------------------------
    # Instagram / Meta
    # -------------------------------------------------------------------------
    instagram_app_id: str | None = Field(default=None, description="Instagram app id")
    instagram_app_secret: SecretStr | None = Field(
        default=None, description="Instagram app secret"
    )
    instagram_graph_version: str = Field(
        default="v18.0", description="Graph API version for graph.instagram.com"
    )
    instagram_publish_graph_version: str = Field(
        default="v24.0", description="Graph API version used by the publishing flow"
    )
    meta_app_secret: SecretStr | None = Field(
        default=None, description="Meta app secret used to sign webhook payloads"
    )
    meta_webhook_verify_token: SecretStr | None = Field(
        default=None, description="Token echoed by Meta during webhook verification"
    )

    # -------------------------------------------------------------------------
    # WhatsApp Cloud API (review requests)
    # -------------------------------------------------------------------------
    whatsapp_phone_number_id: str | None = Field(
        default=None, description="WhatsApp Business phone number id"
    )
    whatsapp_access_token: SecretStr | None = Field(
        default=None, description="WhatsApp Cloud API access token"
    )
    whatsapp_graph_version: str = Field(default="v23.0", description="WhatsApp Graph API version")

    # -------------------------------------------------------------------------
    # OpenAI (review replies, captions)
    # -------------------------------------------------------------------------
    openai_api_key: SecretStr | None = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="Chat completion model")

    # -------------------------------------------------------------------------
    # Apify (fallback competitor data)
    # -------------------------------------------------------------------------
    apify_api_token: SecretStr | None = Field(default=None, description="Apify API token")
    apify_places_actor_id: str = Field(
        default="nwua9Gu5YrADL7ZDj",
        description="Apify actor used to scrape Google Places data",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_url: str = Field(
        default="http://localhost:3000",
        description="Public URL of the web app, used for OAuth redirects",
    )
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    api_host: str = Field(default="0.0.0.0", description="Bind address for the API server")
    api_port: int = Field(default=8000, ge=1, le=65535, description="Port for the API server")

    # -------------------------------------------------------------------------
    # Security Settings
    # -------------------------------------------------------------------------
    api_key: SecretStr | None = Field(
        default=None,
        description="API key for authentication. If set, all requests require X-API-Key header.",
    )
    api_key_enabled: bool = Field(
        default=False,
        description="Enable API key authentication. Set True for production.",
    )
    cron_secret: SecretStr | None = Field(
        default=None,
        description="Bearer secret required by cron-triggered endpoints",
    )

    # -------------------------------------------------------------------------
    # CORS Settings
    # -------------------------------------------------------------------------
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins. Use ['*'] for development only.",
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow credentials in CORS requests",
    )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------
    scheduler_enabled: bool = Field(
        default=True,
        description="Run background jobs (post publishing, competitor refresh)",
    )
    publish_poll_minutes: int = Field(
        default=5,
        ge=1,
        description="How often scheduled posts are checked for publishing",
    )
    apify_refresh_hour: int = Field(
        default=3,
        ge=0,
        le=23,
        description="Hour of day (UTC) for the competitor data refresh",
    )
    job_timeout_seconds: int = Field(
        default=900,
        ge=30,
        description="Maximum run time for a single background job",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def instagram_redirect_uri(self) -> str:
        """OAuth callback registered with the Instagram app."""
        return f"{self.app_url.rstrip('/')}/api/integrations/instagram/callback"

    @property
    def gbp_redirect_uri(self) -> str:
        """OAuth callback registered with the Google OAuth client."""
        return f"{self.app_url.rstrip('/')}/api/gbp/oauth/callback"

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production settings are secure."""
        if self.app_env == "production":
            errors = []

            if not self.api_key_enabled:
                errors.append("api_key_enabled must be True in production")

            if self.api_key_enabled and not self.api_key:
                errors.append("api_key must be set when api_key_enabled is True")

            if self.debug:
                errors.append("debug must be False in production")

            if "*" in self.cors_allowed_origins:
                errors.append("cors_allowed_origins cannot contain '*' in production")

            if errors:
                raise ValueError(
                    f"Production configuration errors: {'; '.join(errors)}"
                )

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings if needed.
    """
    return Settings()
