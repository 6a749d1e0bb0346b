"""
CachedStore Configuration Settings

This module contains the configuration read from the process environment.
Every field is read when a Settings instance is created, so a store built
after the environment changes sees the new values.
"""

import os
from dataclasses import dataclass, field


def _env(name: str, default: str) -> str:
    return os.environ.get(name, default)


@dataclass
class Settings:
    """Store configuration settings."""

    # Mode settings
    ENVIRONMENT: str = field(default_factory=lambda: _env("CACHEDSTORE_ENV", "production"))

    # Backend settings
    TABLE: str = field(default_factory=lambda: _env("CACHEDSTORE_TABLE", "keyv"))
    NAMESPACE: str = field(default_factory=lambda: _env("CACHEDSTORE_NAMESPACE", "keyv"))
    BUSY_TIMEOUT: float = 30.0  # Seconds sqlite waits for a write lock

    # Logging settings
    DEBUG: bool = field(
        default_factory=lambda: _env("CACHEDSTORE_DEBUG", "false").lower() == "true"
    )
    LOG_LEVEL: str = field(default_factory=lambda: _env("CACHEDSTORE_LOG_LEVEL", "INFO"))

    @property
    def development_mode(self) -> bool:
        """Data is loaded once but never written back."""
        return self.ENVIRONMENT.lower() == "development"


# Global settings instance
settings = Settings()
