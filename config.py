# config.py

"""Application configuration utilities.

Values are primarily loaded from ``config.json`` and may be overridden by
environment variables. The :func:`get_settings` helper merges the two sources
and caches the result.

Courier credentials (``courier_api_key`` / ``courier_api_secret``) are only
ever read by the server-side signing proxy and are never echoed back in any
response body.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_COOLDOWN_SECS = 60


class Settings(BaseSettings):
    """Application settings merged from JSON and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./orderdesk.db"
    redis_url: str | None = None
    allowed_origins: str = ""
    business_timezone: str = "UTC"
    log_level: str = "INFO"

    order_cooldown_secs: int = 30
    admin_cooldown_secs: int = 30
    rate_limit_purge_after_secs: int = 86400
    order_number_max_attempts: int = 50
    commit_max_attempts: int = 3

    courier_api_key: str | None = None
    courier_api_secret: str | None = None
    courier_market: str = "PH"
    courier_service_type: str = "MOTORCYCLE"
    courier_sandbox: bool = True
    courier_timeout_secs: float = 10.0
    booking_max_attempts: int = 2
    delivery_proxy_url: str | None = None

    store_name: str = ""
    store_phone: str = ""
    store_address: str = ""
    store_latitude: float | None = None
    store_longitude: float | None = None

    @field_validator("order_cooldown_secs", "admin_cooldown_secs")
    @classmethod
    def _cap_cooldown(cls, v: int) -> int:
        if v <= 0 or v > MAX_COOLDOWN_SECS:
            raise ValueError(f"cooldown must be between 1 and {MAX_COOLDOWN_SECS} seconds")
        return v

    @field_validator("order_number_max_attempts", "commit_max_attempts", "booking_max_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("attempt limits must be at least 1")
        return v

    @property
    def origins(self) -> list[str]:
        """Return ``allowed_origins`` split on commas."""

        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def courier_configured(self) -> bool:
        """Return ``True`` when the signing proxy holds usable credentials."""

        return bool(self.courier_api_key and self.courier_api_secret)

    @property
    def store_configured(self) -> bool:
        return bool(
            self.store_name
            and self.store_phone
            and self.store_address
            and self.store_latitude is not None
            and self.store_longitude is not None
        )


# Cached singleton to avoid repeated file reads
@lru_cache
def get_settings() -> Settings:
    """Return merged settings with environment variable precedence.

    The configuration is read from ``config.json`` located alongside this file
    (when present) and fed into :class:`Settings`. Environment variables
    override any values from the JSON file.
    """

    config_path = Path(__file__).with_name("config.json")
    data = json.loads(config_path.read_text()) if config_path.exists() else {}
    env_override = {
        k.lower(): v
        for k, v in os.environ.items()
        if k.lower() in Settings.model_fields
    }
    merged = {**data, **env_override}
    # Environment variables override values from the JSON file.
    return Settings(**merged)
