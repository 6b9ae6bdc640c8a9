"""Utility modules for the QA dashboard backend."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
