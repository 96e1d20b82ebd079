from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Names follow the deployment of the original chat bot so existing ``.env``
    files keep working (``GOOGLE_SHEETS_WEBHOOK`` is still accepted for the
    ticket gateway URL).
    """

    app_name: str = "Support Intake Bot"
    environment: str = Field(default="development", validation_alias="APP_ENV")

    ticket_gateway_url: AnyHttpUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("TICKET_GATEWAY_URL", "GOOGLE_SHEETS_WEBHOOK"),
    )
    gateway_timeout: float = Field(default=15.0, validation_alias="GATEWAY_TIMEOUT")

    delivery_endpoint: AnyHttpUrl | None = Field(
        default=None, validation_alias="DELIVERY_ENDPOINT"
    )
    delivery_auth: str | None = Field(default=None, validation_alias="DELIVERY_AUTH")
    delivery_timeout: float = Field(default=10.0, validation_alias="DELIVERY_TIMEOUT")

    ticket_prefix: str = Field(default="ULI", validation_alias="TICKET_PREFIX")
    ticket_state_path: Path = Field(
        default=Path("ticket-counter.json"), validation_alias="TICKET_STATE_PATH"
    )
    intro_image_path: Path | None = Field(
        default=Path("ulipsu-logo.png"), validation_alias="INTRO_IMAGE_PATH"
    )

    support_name: str = Field(default="Ulipsu Support", validation_alias="SUPPORT_NAME")
    support_phone: str = Field(default="+91 88848 19888", validation_alias="SUPPORT_PHONE")
    support_email: str = Field(default="support@ulipsu.com", validation_alias="SUPPORT_EMAIL")

    session_backend: str = Field(default="memory", validation_alias="SESSION_BACKEND")
    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")
    session_ttl_seconds: int = Field(default=3600, validation_alias="SESSION_TTL_SECONDS")
    session_reap_interval: int = Field(default=60, validation_alias="SESSION_REAP_INTERVAL")

    webhook_secret: str | None = Field(default=None, validation_alias="WEBHOOK_SECRET")
    keepalive_url: AnyHttpUrl | None = Field(default=None, validation_alias="KEEPALIVE_URL")
    keepalive_interval_minutes: int = Field(
        default=14, validation_alias="KEEPALIVE_INTERVAL_MINUTES"
    )
    default_timezone: str = Field(default="UTC", validation_alias="TICKET_TIMEZONE")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    log_rotation: str = Field(default="10 MB", validation_alias="LOG_ROTATION")
    log_retention: str = Field(default="14 days", validation_alias="LOG_RETENTION")

    @field_validator(
        "ticket_gateway_url",
        "delivery_endpoint",
        "keepalive_url",
        mode="before",
    )
    @classmethod
    def _empty_string_to_none(cls, value: AnyHttpUrl | None) -> AnyHttpUrl | None:  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional URLs stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("intro_image_path", "log_file_path", mode="before")
    @classmethod
    def _empty_path_to_none(cls, value: Path | str | None) -> Path | str | None:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("session_backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value: str | None) -> str:
        return (value or "memory").strip().lower()

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
