from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Lead pipeline settings, read from the environment and an optional ``.env``."""

    app_name: str = "Lead Pipeline"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Unset means the in-memory store (local runs and tests).
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = False

    # Inbound webhooks are authenticated by a shared secret carried in one header;
    # the same secret signs the outbound lead.created notification.
    automation_shared_secret: str | None = None
    automation_signature_header: str = "x-exxacta-signature"
    automation_webhook_url: str | None = None
    automation_notify_timeout_seconds: float = 10.0

    cors_origins: list[str] = []
    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]
    sentry_dsn: str | None = None

    metrics_backend: Literal["stdout", "statsd"] = "stdout"
    metrics_namespace: str = "lead_pipeline"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    @field_validator(
        "database_url", "automation_shared_secret", "automation_webhook_url", "sentry_dsn"
    )
    @classmethod
    def _blank_as_unset(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("automation_signature_header")
    @classmethod
    def _header_name(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def trusted_hosts(self) -> list[str]:
        """Host header allow-list; any host is accepted in debug mode."""
        return ["*"] if self.debug else self.allowed_hosts

    @property
    def automation_inbound_enabled(self) -> bool:
        return bool(self.automation_shared_secret)

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
