"""Configuration package."""

from ledger_sync.config.settings import (
    AppSettings,
    LocalStoreSettings,
    RemoteSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LocalStoreSettings",
    "RemoteSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
