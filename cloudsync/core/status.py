"""Divergence detection between the local and latest remote snapshot."""

import logging
from datetime import datetime

from ..models.snapshot import Snapshot, SyncStatus, millis_to_datetime
from .client import RemoteIOError
from .state import comparable_hash
from .store import VersionedRemoteStore

logger = logging.getLogger(__name__)


class SyncStatusEngine:
    """Compares a local snapshot against the latest remote version."""

    def __init__(self, store: VersionedRemoteStore) -> None:
        self.store = store

    def get_status(self, local_snapshot: Snapshot, local_timestamp: datetime | None = None) -> SyncStatus:
        """Derive the sync status for a local snapshot.

        An empty remote always needs a first push. When the remote cannot be
        read the status is reported as "needs sync" rather than in sync, with
        the failure recorded in ``error``.

        Args:
            local_snapshot: Current local state
            local_timestamp: Last synced marker of the local replica

        Returns:
            SyncStatus with the fetched remote snapshot embedded
        """
        try:
            latest = self.store.find_latest()
            if latest is None:
                return SyncStatus(
                    has_remote_data=False,
                    needs_sync=True,
                    local_timestamp=local_timestamp,
                )

            remote_snapshot = self.store.fetch(latest)
        except RemoteIOError as e:
            logger.error("Could not read remote sync state: %s", e)
            return SyncStatus(
                has_remote_data=False,
                needs_sync=True,
                local_timestamp=local_timestamp,
                error=str(e),
            )

        # find_latest only returns versions with a parseable timestamp
        remote_millis = self.store.timestamp_of(latest) or 0
        needs_sync = comparable_hash(local_snapshot) != comparable_hash(remote_snapshot)
        logger.debug("Latest remote version %s, needs_sync=%s", latest.name, needs_sync)

        return SyncStatus(
            has_remote_data=True,
            needs_sync=needs_sync,
            remote_timestamp=millis_to_datetime(remote_millis),
            local_timestamp=local_timestamp,
            remote_snapshot=remote_snapshot,
            remote_version=latest,
        )
