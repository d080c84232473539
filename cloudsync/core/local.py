"""Local replica contract and a file-backed implementation."""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Protocol

from ..models.snapshot import Snapshot
from .state import SyncState

logger = logging.getLogger(__name__)


class LocalReplica(Protocol):
    """What the sync engine needs from the local store."""

    def get_snapshot(self) -> Snapshot:
        """Current local state, including assets."""
        ...

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Replace all local collections and assets in one update."""
        ...

    def get_last_synced_marker(self) -> datetime | None:
        """When local and remote were last known to agree."""
        ...

    def set_last_synced_marker(self, timestamp: datetime | str, version_id: str | None = None) -> None:
        """Record a new sync marker."""
        ...


class JsonFileReplica:
    """Local replica stored as a single JSON snapshot file.

    Sync markers are kept in the shared ``SyncState`` file.
    """

    def __init__(self, snapshot_file: Path, state: SyncState) -> None:
        self.snapshot_file = Path(snapshot_file)
        self.state = state

    def get_snapshot(self) -> Snapshot:
        if not self.snapshot_file.exists():
            return Snapshot()
        with open(self.snapshot_file) as f:
            return Snapshot.from_dict(json.load(f))

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        # Write to a sibling temp file and swap so readers never see a partial file
        self.snapshot_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.snapshot_file.parent, prefix=".snapshot-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(snapshot.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.snapshot_file)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.info("Applied snapshot to %s", self.snapshot_file)

    def get_last_synced_marker(self) -> datetime | None:
        return self.state.last_synced_at

    def set_last_synced_marker(self, timestamp: datetime | str, version_id: str | None = None) -> None:
        self.state.mark_synced(timestamp, version_id)
