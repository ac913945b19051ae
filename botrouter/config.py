# botrouter/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    bot_name: str = "Botrouter"
    timezone: str = "UTC"  # Used for per-tier time-of-day windows

    # Commands
    command_prefix: str = "/"
    commands_case_sensitive: bool = False
    enabled_plugins: str = "core,welcome,fun"  # Ordered, comma-separated manifest entries

    # Classifier
    classifier_max_keywords: int = 10

    # Auto replies (greeting / farewell / thanks)
    auto_reply_enabled: bool = True
    auto_reply_cooldown_seconds: int = 30

    # Watermark (de-duplication across restarts)
    watermark_state_file: str = "data/watermark_state.json"
    watermark_capacity: int = 10000
    watermark_snapshot_every: int = 10  # Snapshot after every N processed messages
    startup_window_seconds: int = 3600  # Ignore history older than start - 1h

    # Conversation contexts
    context_cleanup_interval_seconds: int = 60

    # Database (None => in-memory stores)
    database_url: str | None = None
    pg_pool_min: int = 1
    pg_pool_max: int = 10

    # Gateway
    gateway_url: str = "http://localhost:3001"
    gateway_token: str | None = None
    gateway_timeout_seconds: float = 15.0

    # Security
    admin_token: str | None = None

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def plugin_list(self) -> list[str]:
        raw = self.enabled_plugins.strip()
        if not raw:
            return []
        return [p.strip() for p in raw.split(",") if p.strip()]

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if not self.admin_token:
            missing.append("ADMIN_TOKEN")
        if not self.database_url:
            missing.append("DATABASE_URL")
        if not self.gateway_token:
            missing.append("GATEWAY_TOKEN")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if len(s.command_prefix) != 1:
        warnings.append(f"COMMAND_PREFIX should be a single character, got {s.command_prefix!r}")
    if s.watermark_snapshot_every < 1:
        warnings.append("WATERMARK_SNAPSHOT_EVERY < 1, snapshots will only be written on shutdown")
    if s.watermark_capacity < 100:
        warnings.append(f"WATERMARK_CAPACITY={s.watermark_capacity} is very small, duplicates may slip through")
    if s.admin_token and len(s.admin_token) < 32:
        warnings.append("ADMIN_TOKEN is shorter than 32 characters")
    if not s.database_url:
        warnings.append("DATABASE_URL not set, users and contexts are kept in memory only")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
