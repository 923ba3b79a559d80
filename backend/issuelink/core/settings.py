from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_base_url: str = "http://localhost:8000"
    web_base_url: str = "http://localhost:3000"
    allowed_origins: str = ""
    allowed_hosts: str = ""
    log_level: str = "INFO"

    cookie_secure: bool = False

    database_url: str
    fernet_key: str
    session_key: str

    # Comma-separated GitHub logins allowed onto the dashboard.
    dashboard_users: str = ""

    session_max_age_hours: int = 8
    oauth_state_ttl_minutes: int = 10
    refresh_margin_seconds: int = 60
    refresh_max_attempts: int = 3
    refresh_backoff_seconds: float = 0.5
    provider_timeout_seconds: float = 15.0
    webhook_reclaim_seconds: int = 300
    token_handoff_ttl_minutes: int = 60

    github_client_id: str = ""
    github_client_secret: str = ""
    github_webhook_secret: str = ""

    jira_client_id: str = ""
    jira_client_secret: str = ""
    jira_webhook_secret: str = ""

    linear_client_id: str = ""
    linear_client_secret: str = ""
    linear_webhook_secret: str = ""

    zendesk_subdomain: str = ""
    zendesk_client_id: str = ""
    zendesk_client_secret: str = ""
    zendesk_webhook_secret: str = ""


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def parse_allowed_origins(settings: Settings) -> list[str]:
    if settings.allowed_origins.strip():
        origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
        # CORS runs with credentials, which browsers refuse to combine with "*".
        if "*" in origins:
            raise ValueError("ALLOWED_ORIGINS must list explicit origins, not '*'")
        return origins
    return list({settings.web_base_url, "http://localhost:3000", "http://127.0.0.1:3000"})


def parse_allowed_hosts(settings: Settings) -> list[str]:
    if settings.allowed_hosts.strip():
        return [h.strip() for h in settings.allowed_hosts.split(",") if h.strip()]
    # Default for local dev + tests.
    return ["localhost", "127.0.0.1", "testserver"]


def parse_allow_list(settings: Settings) -> frozenset[str]:
    """Dashboard allow-list, read once at startup and never mutated."""

    return frozenset(u.strip().lower() for u in settings.dashboard_users.split(",") if u.strip())


def callback_uri(settings: Settings, provider: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/api/auth/{provider}/callback"
