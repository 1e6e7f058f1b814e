"""
secret-mangler configuration.

Pydantic-based settings read from SECRETMANGLER_* environment variables
and an optional .env file.
"""

from secretmangler.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
