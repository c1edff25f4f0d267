"""
Configuration module for Volume Radar.
Loads environment variables and provides application settings.
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Market data
    bybit_rest_url: str = "https://api.bybit.com"
    request_timeout: float = 10.0

    # Database Configuration
    database_path: str = "./data/volume_radar.db"

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Scanner tuning
    poll_interval: float = 30.0
    scan_batch_size: int = 3
    scan_batch_delay: float = 0.5
    candle_limit: int = 100
    ema_period: int = 21
    extreme_z_score: float = 3.0
    # Number of newest bars re-evaluated on every live cycle
    live_rescan_bars: int = 1
    event_cap: int = 500
    autostart_scanner: bool = True

    # Report tuning
    report_batch_size: int = 5
    report_batch_delay: float = 0.2

    # Telegram alerts (optional)
    # Format: "chat_id" or "chat_id:thread_id" for topics
    bot_token: Optional[str] = None
    alerts_chat_id: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


# Create data directory if it doesn't exist
def ensure_data_directory(database_path: Optional[str] = None):
    """Ensure the data directory exists for the database."""
    database_path = database_path or get_settings().database_path
    if database_path == ":memory:":
        return
    db_path = Path(database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
