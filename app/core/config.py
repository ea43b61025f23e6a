"""Application configuration using Pydantic Settings.

This project loads configuration from environment variables.

Optionally, you may point `ENV_FILE` at a local env file (for development).
Values already present in the environment take precedence over the file.
"""

import os
from enum import Enum

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.repos.cursor import MAX_LIMIT


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """
    Application settings with type validation.

    Configuration is loaded from environment variables, with support
    for .env files in development.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE") or None, env_prefix="", extra="ignore"
    )

    # Application
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_name: str = "photo-gallery"
    app_log_level: str = "INFO"

    # Observability
    observability_enabled: bool = True
    observability_structured_logs: bool = True
    observability_request_id_header: str = "X-Request-ID"

    # OpenTelemetry Configuration
    otel_enabled: bool = False
    otel_service_name: str = "photo-gallery"
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_exporter_otlp_headers: str | None = None
    otel_traces_sampler: str = "parent_trace_always"
    otel_traces_sampler_arg: float = 1.0

    # Database
    database_url: str = "sqlite:///./gallery.db"

    @property
    def async_url(self) -> str:
        """Database URL with the async driver selected."""
        url = self.database_url
        if url.startswith("sqlite:///"):
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return url

    # Uploaded image files
    image_dir: str = "uploads"
    max_upload_mb: int = 25

    # Admin credentials (HTTP basic auth)
    # Comma-separated usernames allowed to upload, edit and delete images
    admin_usernames: str = ""
    admin_password: str | None = None

    @property
    def admin_usernames_list(self) -> list[str]:
        """Parse admin usernames string into a list."""
        return [name.strip() for name in self.admin_usernames.split(",") if name.strip()]

    # Reverse geocoding (Google Maps Geocoding API)
    # Geocoding is skipped when no API key is configured
    google_maps_api_key: str | None = None
    geocode_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    geocode_timeout_seconds: float = 5.0

    # Gallery
    # Number of images shown on each side of a jump-to target
    neighbor_limit: int = 6

    # Metrics token for protecting /metrics endpoint
    metrics_token: str | None = None

    # Health check token for protecting /health and /readyz endpoints (optional)
    # When set, these endpoints require X-Health-Token header
    health_token: str | None = None

    # CORS Configuration
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            )

    @field_validator("neighbor_limit", "max_upload_mb")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("neighbor_limit")
    @classmethod
    def validate_neighbor_limit(cls, v: int) -> int:
        if v > MAX_LIMIT:
            raise ValueError(f"must not exceed {MAX_LIMIT}")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """
        Validate production-specific settings.

        These checks prevent insecure configurations from being deployed to production.
        """
        if self.app_env == AppEnvironment.PROD:
            if self.admin_usernames_list and (
                not self.admin_password or len(self.admin_password) < 12
            ):
                raise ValueError(
                    "ADMIN_PASSWORD must be set and at least 12 characters in production"
                )

            # CORS must not allow localhost in production
            for origin in self.cors_origins_list:
                if "localhost" in origin or "127.0.0.1" in origin:
                    raise ValueError(
                        f"CORS origins must not contain localhost in production: {origin}"
                    )

        return self


settings = Settings()
