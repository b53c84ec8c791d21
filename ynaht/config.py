"""Application configuration."""

import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    server_host: str = os.getenv("SERVER_HOST", "0.0.0.0")
    server_port: int = int(os.getenv("SERVER_PORT", "8000"))
    database_path: str = os.getenv("DATABASE_PATH", "data/ynaht.db")

    # Sync client
    sync_api_url: str = os.getenv("SYNC_API_URL", "http://localhost:8000/api/data")
    sync_debounce_seconds: float = float(
        os.getenv("SYNC_DEBOUNCE_SECONDS", "1.0")
    )  # collapse saves within this window
    sync_timeout_seconds: float = float(os.getenv("SYNC_TIMEOUT_SECONDS", "10.0"))
    local_store_path: str = os.getenv("LOCAL_STORE_PATH", "data/local.db")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = False


settings = Settings()
