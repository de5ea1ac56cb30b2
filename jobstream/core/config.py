from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, NonNegativeInt, PositiveFloat, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RECONNECT_DELAYS_MS = (0, 2000, 5000, 10000, 15000)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="JOBSTREAM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "jobstream"
    environment: str = "production"
    log_level: str = "INFO"

    api_base_url: str = "http://localhost:5000"
    submit_path: str = "/api/processor/process-string"
    cancel_path: str = "/api/processor/cancel-job"
    notifications_path: str = "/notifications"

    request_timeout_seconds: PositiveFloat = 30.0
    request_retries: NonNegativeInt = 2

    reconnect_delays_ms: list[NonNegativeInt] = Field(default_factory=lambda: list(DEFAULT_RECONNECT_DELAYS_MS))
    connect_attempts: PositiveInt = 5

    inband_status_markers: bool = True

    access_token: str | None = None
    credential_file: Path | None = None

    @field_validator("submit_path", "cancel_path", "notifications_path")
    @classmethod
    def _normalize_endpoint_path(cls, value: str) -> str:
        path = value.strip()
        if not path.startswith("/"):
            raise ValueError("Endpoint paths must start with '/'")
        return path

    @field_validator("api_base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        raw = value.strip().rstrip("/")
        if not raw.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return raw

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        if not self.reconnect_delays_ms:
            raise ValueError("reconnect_delays_ms must contain at least one delay")

        if self.access_token is not None and not self.access_token.strip():
            self.access_token = None

        if self.credential_file is not None and self.access_token is not None:
            raise ValueError("Configure either access_token or credential_file, not both")

        self.log_level = self.log_level.upper().strip()
        return self

    @property
    def notifications_url(self) -> str:
        return f"{self.api_base_url}{self.notifications_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
