"""Append-only versioned store over the app-private cloud folder."""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from ..models.snapshot import RemoteVersion, Snapshot
from .client import DriveClient, RemoteIOError

logger = logging.getLogger(__name__)

VERSION_SUFFIX = ".json"
MAX_DELETE_WORKERS = 8


def version_name(prefix: str, timestamp_ms: int) -> str:
    """Build the object name for a version created at ``timestamp_ms``."""
    return f"{prefix}{timestamp_ms}{VERSION_SUFFIX}"


def parse_version_timestamp(name: str, prefix: str) -> int | None:
    """Extract the embedded millisecond timestamp from a version name.

    Returns:
        The timestamp, or None if the name does not follow the convention
    """
    if not name.startswith(prefix) or not name.endswith(VERSION_SUFFIX):
        return None
    stamp = name[len(prefix):-len(VERSION_SUFFIX)]
    if not stamp.isdigit():
        return None
    return int(stamp)


class VersionedRemoteStore:
    """Stores snapshots as immutable, timestamp-named objects.

    Every ``put`` creates a new object; nothing is updated in place.
    """

    def __init__(
        self,
        client: DriveClient,
        prefix: str = "trippr-sync-",
        max_versions: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize store.

        Args:
            client: DriveClient bound to a valid access token
            prefix: Name prefix of sync objects
            max_versions: Versions kept after a put (0 keeps all)
            clock: Returns the current time in epoch seconds
        """
        self.client = client
        self.prefix = prefix
        self.max_versions = max_versions
        self._clock = clock

    def timestamp_of(self, version: RemoteVersion) -> int | None:
        """Embedded creation timestamp of a version."""
        return parse_version_timestamp(version.name, self.prefix)

    def list_versions(self) -> list[RemoteVersion]:
        """List all sync versions in the folder, unsorted."""
        return [
            RemoteVersion.from_dict(item)
            for item in self.client.list_files(self.prefix)
            if item.get("name", "").startswith(self.prefix)
            and item.get("name", "").endswith(VERSION_SUFFIX)
        ]

    def _by_timestamp(self, versions: list[RemoteVersion]) -> list[tuple[int, RemoteVersion]]:
        """Versions with parseable names, newest first."""
        stamped = []
        for version in versions:
            stamp = self.timestamp_of(version)
            if stamp is None:
                logger.debug("Ignoring version with unparseable name: %s", version.name)
                continue
            stamped.append((stamp, version))
        stamped.sort(key=lambda pair: pair[0], reverse=True)
        return stamped

    def find_latest(self) -> RemoteVersion | None:
        """Return the version with the greatest embedded timestamp.

        Server modification times are ignored; the provider may skew them.
        """
        stamped = self._by_timestamp(self.list_versions())
        return stamped[0][1] if stamped else None

    def find(self, name: str) -> RemoteVersion | None:
        """Return the version with exactly this name, if any."""
        for version in self.list_versions():
            if version.name == name:
                return version
        return None

    def fetch(self, version: RemoteVersion) -> Snapshot:
        """Download and decode a version."""
        payload = self.client.download(version.id)
        try:
            return Snapshot.from_dict(payload)
        except ValueError as e:
            raise RemoteIOError(f"Version {version.name} does not contain a snapshot") from e

    def put(self, snapshot: Snapshot) -> RemoteVersion:
        """Upload a snapshot as a new version.

        Older versions beyond ``max_versions`` are pruned afterwards; pruning
        failures never fail the put.
        """
        name = version_name(self.prefix, int(self._clock() * 1000))
        created = self.client.create_json_file(name, snapshot.to_dict())
        version = RemoteVersion.from_dict({"name": name, **created})
        logger.info("Created remote version %s", version.name)

        if self.max_versions > 0:
            try:
                self.prune(self.max_versions)
            except RemoteIOError as e:
                logger.warning("Failed to prune old versions: %s", e)

        return version

    def delete(self, version: RemoteVersion) -> None:
        """Delete a single version."""
        self.client.delete(version.id)
        logger.info("Deleted remote version %s", version.name)

    def _delete_concurrently(self, versions: list[RemoteVersion]) -> tuple[int, dict[str, RemoteIOError]]:
        """Issue one delete per version in parallel.

        Returns:
            Number deleted and a map of version name to error for failures
        """
        if not versions:
            return 0, {}

        failures: dict[str, RemoteIOError] = {}
        deleted = 0
        workers = min(MAX_DELETE_WORKERS, len(versions))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.client.delete, v.id): v for v in versions}
            for future, version in futures.items():
                try:
                    future.result()
                    deleted += 1
                except RemoteIOError as e:
                    failures[version.name] = e
        return deleted, failures

    def prune(self, keep: int) -> int:
        """Delete all but the ``keep`` newest versions.

        Returns:
            Number of versions deleted
        """
        stamped = self._by_timestamp(self.list_versions())
        stale = [version for _, version in stamped[keep:]]
        deleted, failures = self._delete_concurrently(stale)
        for name, error in failures.items():
            logger.warning("Failed to prune %s: %s", name, error)
        if deleted:
            logger.info("Pruned %d old version(s)", deleted)
        return deleted

    def delete_all(self) -> int:
        """Delete every version concurrently.

        This is a best-effort bulk delete: versions deleted before a failure
        stay deleted.

        Returns:
            Number of versions deleted

        Raises:
            RemoteIOError: If any delete failed, after all were attempted
        """
        versions = self.list_versions()
        deleted, failures = self._delete_concurrently(versions)
        if failures:
            details = "; ".join(f"{name}: {error}" for name, error in failures.items())
            raise RemoteIOError(
                f"Failed to delete {len(failures)} of {len(versions)} versions ({details})"
            )
        logger.info("Deleted %d remote version(s)", deleted)
        return deleted
