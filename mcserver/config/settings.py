"""
Memcache Server Configuration Settings

This module contains all configuration constants for the memcache server.
Values can be overridden through environment variables or per instance.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Server configuration settings."""

    # Network settings
    ADDRESS: str = os.environ.get("MC_SERVER_ADDRESS", "127.0.0.1:11211")

    # Stream settings
    READ_BUFFER_SIZE: int = 16 * 1024  # Also the longest accepted request line
    WRITE_BUFFER_SIZE: int = 16 * 1024

    # Exptime values up to this many seconds are relative (30 days)
    REALTIME_MAX_DELTA: int = 60 * 60 * 24 * 30

    # Accept loop backoff on transient errors (seconds)
    ACCEPT_BACKOFF_MIN: float = 0.005
    ACCEPT_BACKOFF_MAX: float = 1.0

    # Shutdown settings (seconds)
    SHUTDOWN_GRACE_PERIOD: float = 0.2
    SHUTDOWN_TIMEOUT: float = 1.0
    SHUTDOWN_POLL_INTERVAL: float = 0.01

    # Logging settings
    DEBUG: bool = os.environ.get("MC_SERVER_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("MC_SERVER_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
