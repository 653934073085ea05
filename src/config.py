"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "QoL Monitor Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_url: str
    supabase_anon_key: str
    supabase_access_token: str = ""  # optional; refreshed by the auth layer
    request_timeout_seconds: float = 30.0

    # --- Local persistence ---
    local_db_path: str = "local_data/qolmonitor.db"
    state_file_path: str = "local_data/sync_state.json"

    # --- Sync ---
    sync_task_identifier: str = "com.qualityoflifemonitor.dailysync"
    sync_hour: int = 4  # local time, earliest begin of the daily run
    sync_batch_size: int = 1000
    sync_execution_budget_seconds: float = 600.0
    scheduler_poll_seconds: float = 60.0
    timezone: str = "UTC"

    # --- Retry ---
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = 2.0
    retry_backoff_factor: float = 2.0
    retry_statuses: list[int] = [500, 502, 503]

    # --- Geocoding ---
    geocoder_enabled: bool = True
    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoder_user_agent: str = "qolmonitor-sync/0.1"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
