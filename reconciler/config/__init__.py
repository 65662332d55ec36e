"""Configuration package."""

from reconciler.config.settings import (
    AppSettings,
    ClassifierSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    Settings,
    TransferSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ClassifierSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "Settings",
    "TransferSettings",
    "get_settings",
    "validate_all_settings",
]
