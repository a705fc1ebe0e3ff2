"""
Configuration management for Rainarr.

Process-level settings come from the environment (and an optional .env file).
Runtime-editable settings live in the database, see services/settings_service.py.
"""
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from rainarr.constants import STALE_TORRENT_MINUTES


class QBittorrentConfig(BaseModel):
    """qBittorrent Web API connection."""
    url: str = "http://localhost:8080"
    username: str = "admin"
    password: str = ""


class ProwlarrConfig(BaseModel):
    """Prowlarr indexer aggregator connection."""
    url: str = "http://localhost:9696"
    api_key: str = ""
    default_tag: Optional[str] = Field(
        None,
        description="Indexer tag used when neither the query nor its group sets one"
    )


class ReconciliationConfig(BaseModel):
    """Query reconciliation loop tuning."""
    stale_after_minutes: int = Field(
        STALE_TORRENT_MINUTES,
        ge=1,
        description="Torrents older than this without progress trigger a new search"
    )
    retry_failed_ticks: bool = Field(
        False,
        description="Re-arm a query whose tick raised (default: the query stays parked until restarted)"
    )


class StreamingConfig(BaseModel):
    """Partial-file streaming behaviour."""
    piece_gating: bool = Field(
        False,
        description="Narrow requested byte ranges to downloaded pieces before serving"
    )


class Settings(BaseSettings):
    """Application settings loaded from environment and config file."""

    # Application
    app_name: str = "Rainarr"
    app_version: str = Field(default_factory=lambda: __import__('rainarr').__version__)
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed to call the API from a browser"
    )

    # Database (SQLite, single process)
    database_url: str = Field(
        "sqlite+aiosqlite:////data/rainarr.db",
        description="Database connection URL (SQLite embedded)"
    )
    log_dir: str = "/data/logs"

    # External services
    qbittorrent: QBittorrentConfig = Field(default_factory=QBittorrentConfig)
    prowlarr: ProwlarrConfig = Field(default_factory=ProwlarrConfig)

    # Behaviour
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        env_nested_delimiter = "__"


# Global settings instance
settings = Settings()
