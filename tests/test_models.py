"""Tests for data models."""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from cloudsync.models.config import SessionSettings, StoreSettings, SyncConfig
from cloudsync.models.snapshot import (
    RemoteVersion,
    Snapshot,
    format_file_size,
    millis_to_datetime,
    parse_timestamp,
)


class TestSnapshot:
    """Tests for Snapshot model."""

    def test_to_dict_uses_wire_names(self) -> None:
        snapshot = Snapshot(
            company_info={"name": "Trippr"},
            entries=[{"id": "e1"}],
            branding_complete=True,
            logo_asset="data:image/png;base64,AAAA",
            synced_at="2026-01-31T12:00:00+00:00",
        )

        result = snapshot.to_dict()

        assert result["companyInfo"] == {"name": "Trippr"}
        assert result["entries"] == [{"id": "e1"}]
        assert result["brandingComplete"] is True
        assert result["logoAsset"] == "data:image/png;base64,AAAA"
        assert result["syncedAt"] == "2026-01-31T12:00:00+00:00"
        assert "signatureAsset" not in result

    def test_from_dict_defaults(self) -> None:
        snapshot = Snapshot.from_dict({"companyInfo": None})

        assert snapshot.vehicles == []
        assert snapshot.clients == []
        assert snapshot.entries == []
        assert snapshot.invoices == []
        assert snapshot.branding_complete is False
        assert snapshot.synced_at is None

    def test_from_dict_accepts_legacy_branding_key(self) -> None:
        snapshot = Snapshot.from_dict({"companyInfo": {}, "isBrandingComplete": True})

        assert snapshot.branding_complete is True

    @pytest.mark.parametrize(
        "payload",
        [
            {"todo": ["buy milk"]},
            {"companyInfo": {}, "entries": 5},
            {"companyInfo": {}, "vehicles": "v1"},
            {"companyInfo": "Trippr"},
            ["not", "an", "object"],
        ],
    )
    def test_from_dict_rejects_non_snapshot(self, payload: object) -> None:
        with pytest.raises(ValueError):
            Snapshot.from_dict(payload)  # type: ignore[arg-type]

    def test_stamped_returns_copy(self) -> None:
        original = Snapshot(entries=[{"id": "e1"}])
        when = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)

        stamped = original.stamped(when)

        assert stamped.synced_at == "2026-01-31T12:00:00+00:00"
        assert original.synced_at is None
        assert stamped.entries == original.entries


class TestRemoteVersion:
    """Tests for RemoteVersion model."""

    def test_from_dict(self) -> None:
        version = RemoteVersion.from_dict({
            "id": "abc",
            "name": "trippr-sync-1000.json",
            "modifiedTime": "2026-01-31T12:00:00.000Z",
            "size": "2048",
        })

        assert version.id == "abc"
        assert version.size_bytes == 2048
        assert version.modified_time == "2026-01-31T12:00:00.000Z"

    def test_from_dict_without_size(self) -> None:
        version = RemoteVersion.from_dict({"id": "abc", "name": "trippr-sync-1000.json"})

        assert version.size_bytes == 0


class TestHelpers:
    """Tests for formatting and timestamp helpers."""

    def test_format_file_size(self) -> None:
        assert format_file_size(512) == "512 B"
        assert format_file_size(2048) == "2.0 KB"
        assert format_file_size(5 * 1024 * 1024) == "5.0 MB"

    def test_millis_to_datetime(self) -> None:
        assert millis_to_datetime(1767225600000) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_parse_timestamp(self) -> None:
        assert parse_timestamp("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2026-01-01T00:00:00") == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None


class TestSyncConfig:
    """Tests for SyncConfig model."""

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = SyncConfig.load(None)

        assert config.store.file_prefix == "trippr-sync-"
        assert config.store.max_versions == 5
        assert config.session.validity_margin == 300
        assert config.session.refresh_window == 600
        assert config.session.silent_timeout == 10
        assert config.session.monitor_interval == 300
        assert config.min_password_length == 8
        assert config.provider.redirect_uri == "http://localhost:8765/oauth-callback"
        assert "https://www.googleapis.com/auth/drive.appdata" in config.provider.scopes

    def test_client_id_from_environment(self) -> None:
        with patch.dict(os.environ, {"GOOGLE_CLIENT_ID": "abc.apps.googleusercontent.com"}, clear=True):
            config = SyncConfig.load(None)

        assert config.provider.client_id == "abc.apps.googleusercontent.com"

    def test_save_and_load_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "cloudsync.yaml"
            config = SyncConfig(
                store=StoreSettings(file_prefix="test-sync-", max_versions=3),
                session=SessionSettings(silent_timeout=5),
                data_dir="/var/lib/cloudsync",
            )
            config.provider.redirect_port = 9000

            config.save(config_path)
            with patch.dict(os.environ, {}, clear=True):
                loaded = SyncConfig.load(config_path)

            assert loaded.store.file_prefix == "test-sync-"
            assert loaded.store.max_versions == 3
            assert loaded.session.silent_timeout == 5
            assert loaded.provider.redirect_port == 9000
            assert loaded.data_dir == "/var/lib/cloudsync"

    def test_client_id_never_written(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "cloudsync.yaml"
            config = SyncConfig()
            config.provider.client_id = "secret-client"

            config.save(config_path)

            assert "secret-client" not in config_path.read_text()

    def test_client_id_read_from_yaml_but_not_saved_back(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "cloudsync.yaml"
            config_path.write_text("provider:\n  client_id: yaml-client\n")

            with patch.dict(os.environ, {}, clear=True):
                loaded = SyncConfig.load(config_path)

            assert loaded.provider.client_id == "yaml-client"
            assert "client_id" not in loaded.provider.to_dict()

    def test_state_paths_follow_data_dir(self) -> None:
        config = SyncConfig(data_dir="/tmp/cs")

        assert config.state_file == Path("/tmp/cs/.sync-state.json")
        assert config.snapshot_file == Path("/tmp/cs/snapshot.json")
