"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fanout.platforms.relay import DEFAULT_RELAYS


class Settings(BaseSettings):
    """Fanout application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/fanout.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # Auth
    access_token_expire_minutes: int = Field(default=60, ge=1)

    # Outbound requests
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    platform_timeout_seconds: float = Field(default=60.0, gt=0)
    relay_timeout_seconds: float = Field(default=10.0, gt=0)
    bluesky_service_url: str = "https://bsky.social"
    default_nostr_relays: list[str] = Field(default_factory=lambda: list(DEFAULT_RELAYS))

    # Posting
    post_log_queue_size: int = Field(default=1000, ge=1)
    max_images_per_post: int = Field(default=4, ge=0)
    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    # Account data
    auto_delete_inactive_days: int = Field(default=30, ge=1)
    auto_delete_interval_seconds: float = Field(default=3600.0, gt=0)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            msg = (
                "Insecure production configuration: SECRET_KEY must be overridden "
                "with a high-entropy value (>=32 chars)"
            )
            raise ValueError(msg)
