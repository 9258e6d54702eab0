"""Configuration module for the phone verification service."""

from .settings import AppSettings, SettingsValidationError, load_settings

__all__ = [
    "AppSettings",
    "SettingsValidationError",
    "load_settings",
]
