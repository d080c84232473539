"""Local sync state tracking and snapshot hashing."""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..models.snapshot import Snapshot, parse_timestamp

# Snapshot fields that carry business data. Sync bookkeeping (syncedAt,
# backupConfig) and binary assets are deliberately absent.
COMPARABLE_FIELDS = (
    "companyInfo",
    "userProfile",
    "vehicles",
    "clients",
    "entries",
    "invoices",
    "brandingComplete",
)


def compute_hash(content: str) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize a value so that equal data always yields equal text."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def comparable_hash(snapshot: Snapshot) -> str:
    """Hash the domain fields of a snapshot.

    Two snapshots that differ only in export time or asset payloads hash equal.
    """
    data = snapshot.to_dict()
    return compute_hash(canonical_json({key: data.get(key) for key in COMPARABLE_FIELDS}))


@dataclass
class SyncStateData:
    """Persisted sync bookkeeping for the local replica."""

    version: str = "1.0"
    last_synced_at: str | None = None
    last_version_id: str | None = None
    account_email: str | None = None
    session: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": self.version,
            "last_synced_at": self.last_synced_at,
            "last_version_id": self.last_version_id,
            "account_email": self.account_email,
            "session": self.session,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncStateData":
        """Create from dictionary."""
        return cls(
            version=data.get("version", "1.0"),
            last_synced_at=data.get("last_synced_at"),
            last_version_id=data.get("last_version_id"),
            account_email=data.get("account_email"),
            session=data.get("session"),
        )


class SyncState:
    """Manages the local sync state file."""

    def __init__(self, state_file: Path) -> None:
        """Initialize state manager.

        Args:
            state_file: Path to .sync-state.json file
        """
        self.state_file = Path(state_file)
        self._state: SyncStateData | None = None

    @property
    def state(self) -> SyncStateData:
        """Get or load the state data."""
        if self._state is None:
            self._state = self._load_state()
        return self._state

    def _load_state(self) -> SyncStateData:
        """Load state from disk or create empty."""
        if self.state_file.exists():
            with open(self.state_file) as f:
                data = json.load(f)
            return SyncStateData.from_dict(data)
        return SyncStateData()

    def save(self) -> None:
        """Save state to disk."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w") as f:
            json.dump(self.state.to_dict(), f, indent=2)
            f.write("\n")

    @property
    def last_synced_at(self) -> datetime | None:
        """Timestamp of the last successful push or pull."""
        return parse_timestamp(self.state.last_synced_at)

    def mark_synced(self, timestamp: datetime | str, version_id: str | None = None) -> None:
        """Record a successful sync and save immediately."""
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        self.state.last_synced_at = timestamp
        if version_id is not None:
            self.state.last_version_id = version_id
        self.save()

    def store_session(self, session: dict[str, Any] | None, email: str | None = None) -> None:
        """Persist (or clear) the serialized credential session immediately."""
        self.state.session = session
        if email is not None or session is None:
            self.state.account_email = email
        self.save()

    def get_status_summary(self) -> dict[str, Any]:
        """Get a summary of sync state."""
        return {
            "state_file": str(self.state_file),
            "last_synced_at": self.state.last_synced_at,
            "last_version_id": self.state.last_version_id,
            "account_email": self.state.account_email,
            "signed_in": self.state.session is not None,
        }
