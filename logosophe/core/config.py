from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "logosophe"
    log_level: str = "INFO"

    # SQLite keeps single-node deployments and tests dependency-free; any async URL works.
    database_url: str = "sqlite+aiosqlite:///./logosophe.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Require a session token for all protected endpoints by default.
    auth_enabled: bool = True
    # Allow X-User-Email identity only when explicitly enabled for dev.
    auth_dev_bypass: bool = False
    # Header used to carry the bearer session token.
    auth_session_header: str = "Authorization"
    session_ttl_hours: int = 720
    # Comma-delimited emails always treated as system admins.
    system_admin_emails: str = ""

    # Local object store root for uploaded media.
    media_storage_dir: str = "var/media"
    media_max_upload_bytes: int = 100 * 1024 * 1024
    # Base URL used when returning share links to clients.
    public_base_url: str = "http://localhost:8000"

    invitation_ttl_days: int = 7

    # Static fallbacks when the system_settings rows are absent.
    log_retention_days: int = 90
    log_archive_enabled: bool = True
    log_hard_delete_delay_days: int = 7
    log_archive_cron_schedule: str = "0 2 * * *"

    messaging_rate_limit_seconds: int = 60
    unread_preview_limit: int = 3

    def system_admin_email_set(self) -> set[str]:
        # Normalize configured admin emails once per lookup.
        return {
            email.strip().lower()
            for email in self.system_admin_emails.split(",")
            if email.strip()
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
