"""Configuration helpers for the preview server."""

from .loader import (
    ConfigError,
    ConfigValidationError,
    SettingsLoader,
    deep_merge,
    normalise_settings_payload,
    read_settings,
)

__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "SettingsLoader",
    "deep_merge",
    "normalise_settings_payload",
    "read_settings",
]
