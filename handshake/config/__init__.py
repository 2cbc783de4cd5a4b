"""Configuration package."""

from handshake.config.settings import (
    AppSettings,
    DatabaseSettings,
    HandshakeSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "HandshakeSettings",
    "Settings",
    "get_settings",
]
