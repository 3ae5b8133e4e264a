from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Agency Core"
    app_env: str = "local"
    database_url: str = "sqlite+pysqlite:///./agency_directory.db"
    redis_url: str = "redis://redis:6379/0"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    authz_base_url: str = "http://localhost:8000"
    authz_timeout_seconds: float = 5.0
    authz_service_token: str | None = None
    platform_operator_emails: list[str] = Field(default_factory=list)
    coordination_backend: str = "memory"
    tenant_selection_lock: str = "tenant_selection"
    tenant_selection_timeout_ms: int = 10_000
    mutex_lease_ttl_ms: int = 10_000
    mutex_retry_interval_ms: int = 100
    session_load_timeout_seconds: float = 20.0
    preference_sync_max_attempts: int = 3
    preference_sync_backoff_seconds: float = 0.5
    follow_peer_selection: bool = False
    local_state_path: str | None = None
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
