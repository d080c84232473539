"""Shared fixtures for sync engine tests."""

import itertools
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from cloudsync.core.auth import CredentialSession, Identity
from cloudsync.core.client import RemoteIOError
from cloudsync.core.local import JsonFileReplica
from cloudsync.core.operations import SyncOrchestrator
from cloudsync.core.state import SyncState
from cloudsync.core.store import VersionedRemoteStore
from cloudsync.models.config import SyncConfig
from cloudsync.models.snapshot import Snapshot

PREFIX = "trippr-sync-"
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeDriveClient:
    """In-memory stand-in for DriveClient."""

    def __init__(self) -> None:
        self.files: dict[str, dict[str, Any]] = {}
        self.bodies: dict[str, Any] = {}
        self.fail_deletes: set[str] = set()
        self.fail_lists = False
        self.created: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, name: str, body: Any, modified_time: str = "2026-01-01T00:00:00.000Z") -> str:
        file_id = f"id{next(self._ids)}"
        self.files[file_id] = {"id": file_id, "name": name, "modifiedTime": modified_time, "size": "42"}
        self.bodies[file_id] = body
        return file_id

    def list_files(self, name_prefix: str) -> list[dict[str, Any]]:
        if self.fail_lists:
            raise RemoteIOError("Service unavailable", 503)
        with self._lock:
            return [dict(f) for f in self.files.values() if name_prefix in f["name"]]

    def download(self, file_id: str) -> Any:
        if file_id not in self.bodies:
            raise RemoteIOError("File not found", 404)
        return self.bodies[file_id]

    def create_json_file(self, name: str, content: Any) -> dict[str, Any]:
        with self._lock:
            file_id = self.add(name, content)
        self.created.append(name)
        return dict(self.files[file_id])

    def delete(self, file_id: str) -> None:
        if file_id in self.fail_deletes:
            raise RemoteIOError("Internal error", 500)
        with self._lock:
            self.files.pop(file_id, None)
            self.bodies.pop(file_id, None)


class FakeSessionManager:
    """Session manager that signs in without a browser."""

    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self.interactive_calls = 0

    def is_valid(self, session: CredentialSession | None) -> bool:
        return session is not None and self.valid

    def authenticate_interactive(self) -> CredentialSession:
        self.interactive_calls += 1
        self.valid = True
        return make_session(expires_in=3600)


def make_session(expires_in: float = 3600, email: str = "driver@example.com") -> CredentialSession:
    return CredentialSession(
        access_token="token-123",
        expires_at=NOW + timedelta(seconds=expires_in),
        identity=Identity(email=email, display_name="Test Driver"),
    )


def make_snapshot(**overrides: Any) -> Snapshot:
    data: dict[str, Any] = {
        "company_info": {"name": "Trippr Transport"},
        "user_profile": {"name": "Alex"},
        "vehicles": [{"id": "v1", "plate": "AB-123"}],
        "clients": [{"id": "c1", "name": "Acme"}],
        "entries": [{"id": "e1", "km": 120}],
        "invoices": [],
        "branding_complete": True,
    }
    data.update(overrides)
    return Snapshot(**data)


class SteppingClock:
    """Epoch-seconds clock that advances one second per call."""

    def __init__(self, start: float = 1_767_225_600.0) -> None:
        self._counter = itertools.count()
        self.start = start

    def __call__(self) -> float:
        return self.start + next(self._counter)


@pytest.fixture
def drive() -> FakeDriveClient:
    return FakeDriveClient()


@pytest.fixture
def store(drive: FakeDriveClient) -> VersionedRemoteStore:
    return VersionedRemoteStore(drive, prefix=PREFIX, max_versions=5, clock=SteppingClock())  # type: ignore[arg-type]


@pytest.fixture
def sync_state(tmp_path: Path) -> SyncState:
    return SyncState(tmp_path / ".sync-state.json")


@pytest.fixture
def replica(tmp_path: Path, sync_state: SyncState) -> JsonFileReplica:
    replica = JsonFileReplica(tmp_path / "snapshot.json", sync_state)
    replica.apply_snapshot(make_snapshot())
    return replica


@pytest.fixture
def orchestrator(
    tmp_path: Path,
    replica: JsonFileReplica,
    sync_state: SyncState,
    store: VersionedRemoteStore,
) -> SyncOrchestrator:
    config = SyncConfig(data_dir=str(tmp_path))
    sync_state.store_session(make_session().to_dict(), email="driver@example.com")
    return SyncOrchestrator(
        config,
        replica,
        sync_state,
        manager=FakeSessionManager(),  # type: ignore[arg-type]
        store_factory=lambda session: store,
    )
