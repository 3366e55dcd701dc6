from pathlib import Path

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Data-layer configuration loaded from environment variables and .env file.

    Durations are in seconds. ``cache_storage`` selects the cache backing:

    1. **memory**: entries live only in the process (default).
    2. **sqlite**: entries are also written through to ``cache_db_path`` so a
       restarted process can serve the last good values while backends are down.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backends
    firebase_functions_url: str = "https://us-central1-techtemp-49c7f.cloudfunctions.net"
    local_api_url: str = "http://localhost:8080"

    # Per-request timeouts
    firebase_timeout: float = 10.0
    local_timeout: float = 5.0
    probe_timeout: float = 2.0

    # Cache
    cache_namespace: str = "iot"
    cache_ttl: float = 300.0
    historical_cache_ttl: float = 1800.0
    cache_max_size: int = 100
    cleanup_interval: float = 60.0
    cache_storage: str = "memory"

    # MCP transport
    mcp_transport: str = "stdio"
    mcp_host: str = "127.0.0.1"
    mcp_port: int = 8000

    # Paths & logging
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    log_level: str = "INFO"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cache_db_path(self) -> Path:
        return self.data_dir / "cache.db"

    @property
    def uses_persistent_cache(self) -> bool:
        """Return True when the cache writes through to SQLite."""
        return self.cache_storage.lower() == "sqlite"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached Settings singleton. Created on first call."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached settings. Used in tests."""
    global _settings  # noqa: PLW0603
    _settings = None
