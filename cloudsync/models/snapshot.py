"""Snapshot and remote version models exchanged by the sync engine."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

RECORD_FIELDS = ("companyInfo", "userProfile", "backupConfig")
COLLECTION_FIELDS = ("vehicles", "clients", "entries", "invoices")


def millis_to_datetime(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def datetime_to_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Snapshot:
    """The complete serialized application state.

    Business fields are opaque to the engine; they are only hashed, stored and
    handed back. Assets are opaque strings (typically data URLs).
    """

    company_info: dict[str, Any] | None = None
    user_profile: dict[str, Any] | None = None
    vehicles: list[Any] = field(default_factory=list)
    clients: list[Any] = field(default_factory=list)
    entries: list[Any] = field(default_factory=list)
    invoices: list[Any] = field(default_factory=list)
    backup_config: dict[str, Any] | None = None
    branding_complete: bool = False
    logo_asset: str | None = None
    signature_asset: str | None = None
    synced_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire form."""
        data: dict[str, Any] = {
            "companyInfo": self.company_info,
            "userProfile": self.user_profile,
            "vehicles": list(self.vehicles),
            "clients": list(self.clients),
            "entries": list(self.entries),
            "invoices": list(self.invoices),
            "backupConfig": self.backup_config,
            "brandingComplete": self.branding_complete,
            "syncedAt": self.synced_at,
        }
        if self.logo_asset is not None:
            data["logoAsset"] = self.logo_asset
        if self.signature_asset is not None:
            data["signatureAsset"] = self.signature_asset
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Create from the JSON wire form.

        Raises:
            ValueError: If the payload is not a snapshot or a field has the
                wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Snapshot payload must be a JSON object")
        if "companyInfo" not in data:
            raise ValueError("Not a snapshot: companyInfo is missing")

        for key in RECORD_FIELDS:
            if data.get(key) is not None and not isinstance(data[key], dict):
                raise ValueError(f"Snapshot field {key} must be an object")
        collections: dict[str, list[Any]] = {}
        for key in COLLECTION_FIELDS:
            value = data.get(key) or []
            if not isinstance(value, list):
                raise ValueError(f"Snapshot field {key} must be a list")
            collections[key] = list(value)

        branding = data.get("brandingComplete", data.get("isBrandingComplete", False))
        return cls(
            company_info=data.get("companyInfo"),
            user_profile=data.get("userProfile"),
            vehicles=collections["vehicles"],
            clients=collections["clients"],
            entries=collections["entries"],
            invoices=collections["invoices"],
            backup_config=data.get("backupConfig"),
            branding_complete=bool(branding),
            logo_asset=data.get("logoAsset"),
            signature_asset=data.get("signatureAsset"),
            synced_at=data.get("syncedAt"),
        )

    def stamped(self, when: datetime | None = None) -> "Snapshot":
        """Return a copy with ``synced_at`` set to ``when`` (default: now)."""
        when = when or datetime.now(timezone.utc)
        return replace(self, synced_at=when.isoformat())


@dataclass(frozen=True)
class RemoteVersion:
    """One immutable, timestamp-named object in the isolated cloud folder."""

    id: str
    name: str
    modified_time: str = ""
    size_bytes: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteVersion":
        """Create from a file resource returned by the store API."""
        return cls(
            id=data["id"],
            name=data["name"],
            modified_time=data.get("modifiedTime", ""),
            # Drive reports size as a string
            size_bytes=int(data.get("size") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "modifiedTime": self.modified_time,
            "size": self.size_bytes,
        }


@dataclass(frozen=True)
class SyncStatus:
    """Result of comparing the local snapshot against the latest remote one.

    Short-lived: any push, pull or delete makes it stale. ``error`` is set
    when the remote could not be read; the rest of the status is then only
    a conservative guess.
    """

    has_remote_data: bool
    needs_sync: bool
    remote_timestamp: datetime | None = None
    local_timestamp: datetime | None = None
    remote_snapshot: Snapshot | None = None
    remote_version: RemoteVersion | None = None
    error: str | None = None


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for display."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"
