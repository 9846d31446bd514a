"""
Configuration management.
"""

import os
from dataclasses import dataclass, field


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))
    catalog_path: str = field(
        default_factory=lambda: os.getenv("CATALOG_PATH", "./data/catalog.json")
    )

    # Fetching
    request_timeout: int = field(default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30")))

    # Scheduler
    scheduler_enabled: bool = field(
        default_factory=lambda: os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    )
    scheduler_tick_seconds: int = field(
        default_factory=lambda: int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))
    )
    scheduler_first_tick_delay: int = field(
        default_factory=lambda: int(os.getenv("SCHEDULER_FIRST_TICK_DELAY", "10"))
    )
    default_refresh_interval_hours: float = field(
        default_factory=lambda: float(os.getenv("DEFAULT_REFRESH_INTERVAL_HOURS", "24"))
    )

    # Run ledger
    error_log_limit: int = field(default_factory=lambda: int(os.getenv("ERROR_LOG_LIMIT", "50")))

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "data_dir": self.data_dir,
            "catalog_path": self.catalog_path,
            "request_timeout": self.request_timeout,
            "scheduler_enabled": self.scheduler_enabled,
            "scheduler_tick_seconds": self.scheduler_tick_seconds,
            "scheduler_first_tick_delay": self.scheduler_first_tick_delay,
            "default_refresh_interval_hours": self.default_refresh_interval_hours,
            "error_log_limit": self.error_log_limit,
        }
