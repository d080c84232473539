"""Data models for the cloud sync engine."""

from .config import (
    ProviderSettings,
    SessionSettings,
    StoreSettings,
    SyncConfig,
)
from .snapshot import (
    RemoteVersion,
    Snapshot,
    SyncStatus,
    format_file_size,
    millis_to_datetime,
    parse_timestamp,
)

__all__ = [
    "ProviderSettings",
    "RemoteVersion",
    "SessionSettings",
    "Snapshot",
    "StoreSettings",
    "SyncConfig",
    "SyncStatus",
    "format_file_size",
    "millis_to_datetime",
    "parse_timestamp",
]
