"""Configuration models for the cloud sync engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/drive.appdata",
    "email",
    "profile",
]


@dataclass
class ProviderSettings:
    """OAuth identity provider settings."""

    client_id: str = ""
    authorization_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth"
    userinfo_endpoint: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    redirect_host: str = "localhost"
    redirect_port: int = 8765
    callback_path: str = "/oauth-callback"

    @property
    def redirect_uri(self) -> str:
        """Loopback URL the provider redirects back to."""
        return f"http://{self.redirect_host}:{self.redirect_port}{self.callback_path}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderSettings":
        """Create from dictionary."""
        defaults = cls()
        return cls(
            client_id=data.get("client_id", defaults.client_id) or "",
            authorization_endpoint=data.get("authorization_endpoint", defaults.authorization_endpoint),
            userinfo_endpoint=data.get("userinfo_endpoint", defaults.userinfo_endpoint),
            scopes=list(data.get("scopes") or defaults.scopes),
            redirect_host=data.get("redirect_host", defaults.redirect_host),
            redirect_port=int(data.get("redirect_port", defaults.redirect_port)),
            callback_path=data.get("callback_path", defaults.callback_path),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        The client id is always left out, so saving a config never writes it
        to the YAML file. Supply it through ``GOOGLE_CLIENT_ID`` instead.
        """
        return {
            "authorization_endpoint": self.authorization_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "scopes": list(self.scopes),
            "redirect_host": self.redirect_host,
            "redirect_port": self.redirect_port,
            "callback_path": self.callback_path,
        }


@dataclass
class StoreSettings:
    """Remote object store settings."""

    api_base_url: str = "https://www.googleapis.com/drive/v3"
    upload_base_url: str = "https://www.googleapis.com/upload/drive/v3"
    space: str = "appDataFolder"
    file_prefix: str = "trippr-sync-"
    max_versions: int = 5  # 0 keeps every version
    request_timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoreSettings":
        """Create from dictionary."""
        defaults = cls()
        return cls(
            api_base_url=data.get("api_base_url", defaults.api_base_url).rstrip("/"),
            upload_base_url=data.get("upload_base_url", defaults.upload_base_url).rstrip("/"),
            space=data.get("space", defaults.space),
            file_prefix=data.get("file_prefix", defaults.file_prefix),
            max_versions=int(data.get("max_versions", defaults.max_versions)),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "api_base_url": self.api_base_url,
            "upload_base_url": self.upload_base_url,
            "space": self.space,
            "file_prefix": self.file_prefix,
            "max_versions": self.max_versions,
            "request_timeout": self.request_timeout,
        }


@dataclass
class SessionSettings:
    """Credential session timing, all values in seconds."""

    validity_margin: float = 300.0
    refresh_window: float = 600.0
    silent_timeout: float = 10.0
    monitor_interval: float = 300.0
    poll_interval: float = 1.0
    interactive_timeout: float = 300.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSettings":
        """Create from dictionary."""
        defaults = cls()
        return cls(**{
            name: float(data.get(name, getattr(defaults, name)))
            for name in defaults.to_dict()
        })

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {
            "validity_margin": self.validity_margin,
            "refresh_window": self.refresh_window,
            "silent_timeout": self.silent_timeout,
            "monitor_interval": self.monitor_interval,
            "poll_interval": self.poll_interval,
            "interactive_timeout": self.interactive_timeout,
        }


@dataclass
class SyncConfig:
    """Main configuration for the sync engine."""

    provider: ProviderSettings = field(default_factory=ProviderSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    data_dir: str = ".cloudsync"
    min_password_length: int = 8

    @property
    def state_file(self) -> Path:
        """Path of the local sync state file."""
        return Path(self.data_dir) / ".sync-state.json"

    @property
    def snapshot_file(self) -> Path:
        """Path of the local snapshot file used by the file-backed replica."""
        return Path(self.data_dir) / "snapshot.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """Create from dictionary, applying environment overrides."""
        load_dotenv()

        provider = ProviderSettings.from_dict(data.get("provider") or {})
        provider.client_id = os.getenv("GOOGLE_CLIENT_ID", provider.client_id)

        return cls(
            provider=provider,
            store=StoreSettings.from_dict(data.get("store") or {}),
            session=SessionSettings.from_dict(data.get("session") or {}),
            data_dir=os.getenv("CLOUDSYNC_DATA_DIR", data.get("data_dir", ".cloudsync")),
            min_password_length=int(data.get("min_password_length", 8)),
        )

    @classmethod
    def load(cls, config_path: Path | None = None) -> "SyncConfig":
        """Load configuration from a YAML file.

        A missing file yields the defaults (plus environment overrides).
        """
        data: dict[str, Any] = {}
        if config_path is not None and Path(config_path).exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a YAML file."""
        data = {
            "provider": self.provider.to_dict(),
            "store": self.store.to_dict(),
            "session": self.session.to_dict(),
            "data_dir": self.data_dir,
            "min_password_length": self.min_password_length,
        }
        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
