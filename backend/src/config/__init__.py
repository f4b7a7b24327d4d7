"""
Configuration module for the event series backend.

Provides centralized configuration for:
- Occurrence generation limits
- Batch materialization sizing
- Collaborator timeouts
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
