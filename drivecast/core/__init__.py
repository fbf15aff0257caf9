"""Core module for configuration and utilities."""

from drivecast.core.config import settings

__all__ = [
    "settings",
]
