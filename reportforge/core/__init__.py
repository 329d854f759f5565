"""Core configuration and factory components."""

from reportforge.core.config import Settings, StoragePaths, get_settings

__all__ = [
    "Settings",
    "StoragePaths",
    "get_settings",
]
