"""Application configuration."""

import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote store (Supabase / PostgREST)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    achievements_table: str = os.getenv("ACHIEVEMENTS_TABLE", "daily_achievements")
    storage_bucket: str = os.getenv("STORAGE_BUCKET", "task-files")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "10.0"))

    # Offline queue
    offline_queue_path: str = os.getenv("OFFLINE_QUEUE_PATH", "data/offline_queue.db")

    # Sync behaviour
    max_save_attempts: int = int(os.getenv("MAX_SAVE_ATTEMPTS", "3"))
    backoff_base: float = float(os.getenv("BACKOFF_BASE", "2.0"))  # delay = base ** attempt

    # Ledger rules
    target_tolerance: float = float(os.getenv("TARGET_TOLERANCE", "1.10"))
    value_ceiling: float = float(os.getenv("VALUE_CEILING", "1000000"))
    planned_effort_hours: float = float(os.getenv("PLANNED_EFFORT_HOURS", "8"))

    # Server
    server_host: str = os.getenv("SERVER_HOST", "0.0.0.0")
    server_port: int = int(os.getenv("SERVER_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = False


settings = Settings()
