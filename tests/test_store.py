"""Tests for the append-only versioned store."""

import itertools

import pytest

from cloudsync.core.client import RemoteIOError
from cloudsync.core.store import VersionedRemoteStore, parse_version_timestamp, version_name
from tests.conftest import PREFIX, FakeDriveClient, SteppingClock, make_snapshot


class TestVersionNames:
    """Tests for the timestamp naming convention."""

    def test_version_name(self) -> None:
        assert version_name(PREFIX, 1767225600000) == "trippr-sync-1767225600000.json"

    def test_parse_version_timestamp(self) -> None:
        assert parse_version_timestamp("trippr-sync-1767225600000.json", PREFIX) == 1767225600000

    @pytest.mark.parametrize(
        "name",
        [
            "trippr-sync-.json",
            "trippr-sync-abc.json",
            "trippr-sync-123.enc",
            "other-123.json",
            "trippr-sync-12-34.json",
        ],
    )
    def test_parse_rejects_malformed(self, name: str) -> None:
        assert parse_version_timestamp(name, PREFIX) is None


class TestVersionedRemoteStore:
    """Tests for VersionedRemoteStore."""

    def test_list_versions_filters_by_prefix_and_suffix(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-1000.json", {})
        drive.add("trippr-sync-2000.json", {})
        drive.add("trippr-sync-3000.enc", {})
        drive.add("notes-trippr-sync-4000.json", {})

        names = sorted(v.name for v in store.list_versions())

        assert names == ["trippr-sync-1000.json", "trippr-sync-2000.json"]

    def test_find_latest_empty(self, store: VersionedRemoteStore) -> None:
        assert store.find_latest() is None

    def test_find_latest_uses_name_timestamp_for_every_order(self) -> None:
        names = ["trippr-sync-1000.json", "trippr-sync-999999.json", "trippr-sync-5000.json"]

        for order in itertools.permutations(names):
            drive = FakeDriveClient()
            for name in order:
                # Server times deliberately disagree with the embedded timestamps
                drive.add(name, {}, modified_time=f"2026-02-0{order.index(name) + 1}T00:00:00Z")
            store = VersionedRemoteStore(drive, prefix=PREFIX)  # type: ignore[arg-type]

            latest = store.find_latest()

            assert latest is not None
            assert latest.name == "trippr-sync-999999.json"

    def test_find_latest_ignores_unparseable_names(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-latest.json", {})
        drive.add("trippr-sync-1000.json", {})

        latest = store.find_latest()

        assert latest is not None
        assert latest.name == "trippr-sync-1000.json"

    def test_fetch_decodes_snapshot(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-1000.json", make_snapshot().to_dict())

        version = store.find_latest()
        assert version is not None
        snapshot = store.fetch(version)

        assert snapshot.entries == [{"id": "e1", "km": 120}]

    def test_fetch_rejects_non_snapshot(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-1000.json", ["not", "a", "snapshot"])

        version = store.find_latest()
        assert version is not None
        with pytest.raises(RemoteIOError):
            store.fetch(version)

    def test_fetch_rejects_wrongly_typed_collections(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-1000.json", {"companyInfo": {}, "entries": 5})

        version = store.find_latest()
        assert version is not None
        with pytest.raises(RemoteIOError, match="does not contain a snapshot"):
            store.fetch(version)

    def test_find_by_name(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        file_id = drive.add("trippr-sync-1000.json", {})
        drive.add("trippr-sync-2000.json", {})

        found = store.find("trippr-sync-1000.json")

        assert found is not None
        assert found.id == file_id
        assert store.find("trippr-sync-3000.json") is None

    def test_delete_single_version(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        keep = drive.add("trippr-sync-1000.json", {})
        drive.add("trippr-sync-2000.json", {})
        version = store.find("trippr-sync-2000.json")
        assert version is not None

        store.delete(version)

        assert list(drive.files) == [keep]

    def test_put_creates_new_version_each_time(self, drive: FakeDriveClient) -> None:
        store = VersionedRemoteStore(drive, prefix=PREFIX, max_versions=0, clock=SteppingClock(1000.0))  # type: ignore[arg-type]

        first = store.put(make_snapshot())
        second = store.put(make_snapshot())

        assert first.name == "trippr-sync-1000000.json"
        assert second.name == "trippr-sync-1001000.json"
        assert first.id != second.id
        assert len(store.list_versions()) == 2

    def test_put_prunes_to_max_versions(self, drive: FakeDriveClient) -> None:
        store = VersionedRemoteStore(drive, prefix=PREFIX, max_versions=2, clock=SteppingClock(1000.0))  # type: ignore[arg-type]

        for _ in range(4):
            store.put(make_snapshot())

        remaining = sorted(v.name for v in store.list_versions())
        assert remaining == ["trippr-sync-1002000.json", "trippr-sync-1003000.json"]

    def test_put_survives_prune_failure(self, drive: FakeDriveClient) -> None:
        old_id = drive.add("trippr-sync-1.json", {})
        drive.fail_deletes.add(old_id)
        store = VersionedRemoteStore(drive, prefix=PREFIX, max_versions=1, clock=SteppingClock(1000.0))  # type: ignore[arg-type]

        version = store.put(make_snapshot())

        assert version.name == "trippr-sync-1000000.json"
        assert len(store.list_versions()) == 2

    def test_delete_all(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        for stamp in (1000, 2000, 3000):
            drive.add(f"trippr-sync-{stamp}.json", {})

        deleted = store.delete_all()

        assert deleted == 3
        assert store.list_versions() == []
        assert store.find_latest() is None

    def test_delete_all_partial_failure_is_not_rolled_back(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.add("trippr-sync-1000.json", {})
        failing = drive.add("trippr-sync-2000.json", {})
        drive.add("trippr-sync-3000.json", {})
        drive.fail_deletes.add(failing)

        with pytest.raises(RemoteIOError, match="Failed to delete 1 of 3"):
            store.delete_all()

        remaining = [v.name for v in store.list_versions()]
        assert remaining == ["trippr-sync-2000.json"]

    def test_list_errors_propagate(self, drive: FakeDriveClient, store: VersionedRemoteStore) -> None:
        drive.fail_lists = True

        with pytest.raises(RemoteIOError) as exc_info:
            store.list_versions()

        assert exc_info.value.status_code == 503
