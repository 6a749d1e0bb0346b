"""Configuration module for CachedStore."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
