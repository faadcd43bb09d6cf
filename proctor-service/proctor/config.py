"""
Central configuration for the proctor service.
All values are read from environment variables (with sensible defaults
for docker-compose usage).
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database (attempt / assessment tables) ────────────────────
    db_host:     str = "postgres"
    db_port:     int = 5432
    db_name:     str = "lmsdb"
    db_user:     str = "lmsuser"
    db_password: str = "lmspass"
    database_url: str = ""              # computed below if empty
    db_pool_size: int = 0               # 0 → one connection per to_thread worker
    db_pool_timeout_seconds: float = 10.0

    # ── RabbitMQ (proctor event fan-out) ──────────────────────────
    rabbitmq_host:     str = "rabbitmq"
    rabbitmq_port:     int = 5672
    rabbitmq_user:     str = "lmsuser"
    rabbitmq_password: str = "lmspass"
    rabbitmq_vhost:    str = "/"
    rabbitmq_url:      str = ""         # set directly (e.g. amqp://...) OR computed below

    events_exchange: str  = "proctor.events"
    publish_events:  bool = True        # False → events stay in-process only

    # ── Anti-cheat defaults (assessment overrides are merged on top) ──
    default_max_violations_allowed: int = 5
    default_auto_flag_threshold:    int = 3
    default_session_timeout_ms:     int = 3_600_000   # 1 hour

    # ── Escalation ────────────────────────────────────────────────
    auto_flag_window_seconds:    int = 300   # fixed look-back window for auto-flag
    tab_switch_escalation_limit: int = 5     # > this many tab switches at end → escalate

    # ── Timeout sweep ─────────────────────────────────────────────
    sweep_interval_seconds: float = 5.0
    session_retention_hours: int = 168      # finished sessions kept for reviewer views

    # ── Browser environment / lockdown ────────────────────────────
    server_timezone: str = "UTC"
    lockdown_allowed_domains:   list[str] = ["localhost", "your-lms-domain.com"]
    lockdown_blocked_keystrokes: list[str] = ["Ctrl+C", "Ctrl+V", "Ctrl+A", "F12", "Ctrl+Shift+I"]
    lockdown_warning_message: str = (
        "This assessment is being monitored. Any suspicious activity will be recorded."
    )

    # ── HTTP server ───────────────────────────────────────────────
    port:      int = 8002
    log_level: str = "INFO"

    # ── Post-init: compute derived URLs ──────────────────────────
    @model_validator(mode="after")
    def _fill_derived_urls(self) -> "Settings":
        if not self.database_url:
            self.database_url = (
                f"postgresql+psycopg2://{self.db_user}:{self.db_password}"
                f"@{self.db_host}:{self.db_port}/{self.db_name}"
            )
        if not self.rabbitmq_url:
            self.rabbitmq_url = (
                f"amqp://{self.rabbitmq_user}:{self.rabbitmq_password}"
                f"@{self.rabbitmq_host}:{self.rabbitmq_port}{self.rabbitmq_vhost}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
