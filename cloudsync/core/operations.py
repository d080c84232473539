"""Sync orchestration: connect, push, pull and human-directed conflict resolution."""

import json
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from ..models.config import SyncConfig
from ..models.snapshot import (
    RemoteVersion,
    Snapshot,
    SyncStatus,
    millis_to_datetime,
    parse_timestamp,
)
from .auth import CredentialSession, CredentialSessionManager
from .client import DriveClient, RemoteIOError
from .encryption import decrypt, encrypt, is_envelope, load_envelope
from .local import LocalReplica
from .state import SyncState
from .status import SyncStatusEngine
from .store import VersionedRemoteStore

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for orchestration failures."""


class ConflictUnresolvedError(SyncError):
    """A sync action was attempted while a conflict awaits a decision."""


class NoPendingConflictError(SyncError):
    """A resolution was supplied but there is no conflict to resolve."""


class SyncInProgressError(SyncError):
    """Another sync action is still running."""


class PasswordRequiredError(SyncError):
    """An encrypted backup was given without a password."""


class InvalidBackupError(SyncError):
    """A backup file is not readable JSON or does not hold a snapshot."""


class Resolution:
    """Ways a conflict can be resolved."""

    USE_LOCAL = "use-local"
    USE_CLOUD = "use-cloud"
    CANCEL = "cancel"

    ALL = (USE_LOCAL, USE_CLOUD, CANCEL)


@dataclass
class SyncResult:
    """Result of a sync action."""

    success: bool
    operation: str  # "push", "pull", "none" or "conflict"
    message: str
    conflict: bool = False
    skipped: bool = False
    version: RemoteVersion | None = None
    local_timestamp: datetime | None = None
    remote_timestamp: datetime | None = None


StoreFactory = Callable[[CredentialSession], VersionedRemoteStore]


class SyncOrchestrator:
    """Sequences sessions, the remote store and the diff engine.

    Conflicts are never resolved automatically; ``sync_now`` stops at a
    conflict and ``resolve`` applies the user's choice.
    """

    def __init__(
        self,
        config: SyncConfig,
        replica: LocalReplica,
        state: SyncState,
        manager: CredentialSessionManager | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Sync configuration
            replica: Local collaborator owning the canonical state
            state: Sync state file holding the persisted session
            manager: Credential session manager (created if not provided)
            store_factory: Builds a remote store for a session (Drive by default)
        """
        self.config = config
        self.replica = replica
        self.state = state
        self.manager = manager or CredentialSessionManager(config.provider, config.session)
        self._store_factory = store_factory or self._drive_store
        self._http = requests.Session()
        self._busy = threading.Lock()
        self._session: CredentialSession | None = None
        self._status: SyncStatus | None = None
        self._pending: SyncStatus | None = None

    # =========================================================================
    # Sessions
    # =========================================================================

    @property
    def session(self) -> CredentialSession | None:
        """Current session, loaded from the state file on first use."""
        if self._session is None and self.state.state.session:
            self._session = CredentialSession.from_dict(self.state.state.session)
        return self._session

    def update_session(self, session: CredentialSession | None) -> None:
        """Replace the session and persist it immediately."""
        self._session = session
        if session is None:
            self.state.store_session(None)
        else:
            self.state.store_session(session.to_dict(), email=session.identity.email)

    def connect(self) -> CredentialSession:
        """Sign in interactively and persist the new session."""
        session = self.manager.authenticate_interactive()
        self.update_session(session)
        self.invalidate()
        return session

    def disconnect(self) -> None:
        """Forget the session and any derived status."""
        self.update_session(None)
        self.invalidate()

    def ensure_session(self) -> CredentialSession:
        """Return a valid session, signing in interactively if needed."""
        session = self.session
        if self.manager.is_valid(session):
            return session  # type: ignore[return-value]
        logger.info("Session missing or expired; interactive sign in required")
        return self.connect()

    def _drive_store(self, session: CredentialSession) -> VersionedRemoteStore:
        client = DriveClient(session.access_token, self.config.store, self._http)
        return VersionedRemoteStore(
            client,
            prefix=self.config.store.file_prefix,
            max_versions=self.config.store.max_versions,
        )

    def store(self) -> VersionedRemoteStore:
        """Remote store bound to a valid session."""
        return self._store_factory(self.ensure_session())

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def pending_conflict(self) -> SyncStatus | None:
        """Status of a conflict awaiting a decision, if any."""
        return self._pending

    def invalidate(self) -> None:
        """Discard cached status and any pending conflict."""
        self._status = None
        self._pending = None

    def get_status(self, refresh: bool = False) -> SyncStatus:
        """Compare local and remote state, reusing a cached status unless asked."""
        if self._status is None or refresh:
            engine = SyncStatusEngine(self.store())
            self._status = engine.get_status(
                self.replica.get_snapshot(), self.replica.get_last_synced_marker()
            )
        return self._status

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._busy.acquire(blocking=False):
            raise SyncInProgressError("Another sync action is still running")
        try:
            yield
        finally:
            self._busy.release()

    # =========================================================================
    # Sync
    # =========================================================================

    def sync_now(self) -> SyncResult:
        """Push, report in-sync, or stop at a conflict.

        Raises:
            ConflictUnresolvedError: A previous conflict is still pending
            RemoteIOError: The cloud copy could not be read; nothing is uploaded
        """
        if self._pending is not None:
            raise ConflictUnresolvedError(
                "Resolve or cancel the pending conflict before syncing again"
            )

        with self._exclusive():
            status = self.get_status(refresh=True)
            if status.error is not None:
                self.invalidate()
                raise RemoteIOError(f"Could not read cloud data: {status.error}")

            if not status.has_remote_data:
                result = self._push_local()
                result.message = "No cloud data found; uploaded local data"
                return result

            if not status.needs_sync:
                return SyncResult(
                    success=True,
                    operation="none",
                    message="Already in sync",
                    skipped=True,
                    local_timestamp=status.local_timestamp,
                    remote_timestamp=status.remote_timestamp,
                )

            self._pending = status
            return SyncResult(
                success=False,
                operation="conflict",
                message="Local and cloud data differ - choose which copy to keep",
                conflict=True,
                local_timestamp=status.local_timestamp,
                remote_timestamp=status.remote_timestamp,
            )

    def resolve(self, choice: str) -> SyncResult:
        """Apply the user's decision for the pending conflict.

        Args:
            choice: One of Resolution.USE_LOCAL, USE_CLOUD or CANCEL

        Raises:
            NoPendingConflictError: There is nothing to resolve
            ValueError: Unknown choice
        """
        if choice not in Resolution.ALL:
            raise ValueError(f"Unknown resolution: {choice!r}")

        status = self._pending
        if status is None:
            raise NoPendingConflictError("There is no pending conflict to resolve")

        with self._exclusive():
            if choice == Resolution.CANCEL:
                self.invalidate()
                return SyncResult(
                    success=True,
                    operation="none",
                    message="Sync cancelled; nothing changed",
                    skipped=True,
                )

            if choice == Resolution.USE_LOCAL:
                result = self._push_local()
                result.message = "Uploaded local data as the newest cloud version"
                return result

            return self._apply_remote(status)

    def cancel(self) -> SyncResult:
        """Leave both copies untouched and drop the pending conflict."""
        return self.resolve(Resolution.CANCEL)

    def _push_local(self) -> SyncResult:
        """Upload the local snapshot (with assets) as a new version."""
        store = self.store()
        snapshot = self.replica.get_snapshot().stamped()
        version = store.put(snapshot)

        stamp = store.timestamp_of(version)
        synced_at = millis_to_datetime(stamp) if stamp is not None else parse_timestamp(snapshot.synced_at)
        self.replica.set_last_synced_marker(synced_at or snapshot.synced_at or "", version.id)
        self.invalidate()

        return SyncResult(
            success=True,
            operation="push",
            message="Uploaded local data",
            version=version,
            local_timestamp=synced_at,
        )

    def _apply_remote(self, status: SyncStatus) -> SyncResult:
        """Replace local state with the already-fetched remote snapshot."""
        snapshot = status.remote_snapshot
        if snapshot is None:
            raise SyncError("Conflict status carries no remote snapshot")

        self.replica.apply_snapshot(snapshot)
        marker: datetime | str | None = snapshot.synced_at or status.remote_timestamp
        version_id = status.remote_version.id if status.remote_version else None
        self.replica.set_last_synced_marker(marker or "", version_id)
        self.invalidate()

        return SyncResult(
            success=True,
            operation="pull",
            message="Replaced local data with the cloud copy",
            version=status.remote_version,
            remote_timestamp=status.remote_timestamp,
        )

    # =========================================================================
    # Independent actions
    # =========================================================================

    def list_versions(self) -> list[RemoteVersion]:
        """Remote versions, newest first."""
        store = self.store()
        versions = store.list_versions()
        return sorted(versions, key=lambda v: store.timestamp_of(v) or 0, reverse=True)

    def _require_version(self, store: VersionedRemoteStore, name: str | None) -> RemoteVersion:
        version = store.find(name) if name else store.find_latest()
        if version is None:
            raise RemoteIOError(f"No cloud version named {name}" if name else "No cloud data found")
        return version

    def delete_version(self, name: str) -> RemoteVersion:
        """Delete one remote version by name.

        Raises:
            RemoteIOError: No such version, or the delete failed
        """
        with self._exclusive():
            try:
                store = self.store()
                version = self._require_version(store, name)
                store.delete(version)
            finally:
                self.invalidate()
        return version

    def restore_version(self, name: str | None = None) -> SyncResult:
        """Replace local data with a chosen remote version (latest if no name).

        Raises:
            RemoteIOError: No such version, or it could not be read
        """
        with self._exclusive():
            store = self.store()
            version = self._require_version(store, name)
            snapshot = store.fetch(version)
            stamp = store.timestamp_of(version)
            remote_timestamp = millis_to_datetime(stamp) if stamp is not None else None

            self.replica.apply_snapshot(snapshot)
            marker: datetime | str | None = snapshot.synced_at or remote_timestamp
            self.replica.set_last_synced_marker(marker or "", version.id)
            self.invalidate()

        logger.info("Restored local data from %s", version.name)
        return SyncResult(
            success=True,
            operation="pull",
            message=f"Restored local data from {version.name}",
            version=version,
            remote_timestamp=remote_timestamp,
        )

    def download_backup(
        self,
        path: Path,
        password: str | None = None,
        version: RemoteVersion | None = None,
    ) -> Path:
        """Save a remote snapshot to a file, encrypted when a password is given.

        Args:
            path: Destination file
            password: Optional encryption password
            version: Version to export (latest if not provided)

        Returns:
            The written path
        """
        with self._exclusive():
            store = self.store()
            version = version or store.find_latest()
            if version is None:
                raise RemoteIOError("No cloud data to download")

            payload: dict[str, Any] = store.fetch(version).to_dict()
            if password:
                payload = encrypt(payload, password).to_dict()

            path = Path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(payload, f, indent=2)
                f.write("\n")

        logger.info("Downloaded %s to %s%s", version.name, path, " (encrypted)" if password else "")
        return path

    def restore_backup(self, path: Path, password: str | None = None) -> Snapshot:
        """Apply a backup file to the local replica.

        Raises:
            InvalidBackupError: The file is not JSON or holds no snapshot
            PasswordRequiredError: The file is encrypted and no password was given
            EnvelopeFormatError: Unsupported envelope format
            DecryptionError: Wrong password or corrupted file
        """
        snapshot = read_backup(path, password)
        with self._exclusive():
            self.replica.apply_snapshot(snapshot)
            self.invalidate()
        return snapshot

    def clear_remote(self) -> int:
        """Delete every remote version.

        Best effort: a partial failure raises RemoteIOError and leaves the
        versions that were already deleted deleted.

        Returns:
            Number of versions deleted
        """
        with self._exclusive():
            try:
                return self.store().delete_all()
            finally:
                self.invalidate()


def read_backup(path: Path, password: str | None = None) -> Snapshot:
    """Read a backup file, decrypting it when it is an envelope."""
    try:
        with open(path) as f:
            data = json.load(f)
    except ValueError as e:
        raise InvalidBackupError(f"{path} is not a JSON backup: {e}") from e

    if is_envelope(data):
        envelope = load_envelope(data)
        if not password:
            raise PasswordRequiredError("This backup is encrypted; a password is required")
        data = decrypt(envelope, password)

    try:
        return Snapshot.from_dict(data)
    except ValueError as e:
        raise InvalidBackupError(f"Invalid backup data structure: {e}") from e
