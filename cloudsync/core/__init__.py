"""Core sync functionality."""

from .auth import (
    AuthCancelledError,
    AuthConfigError,
    AuthError,
    AuthInProgressError,
    AuthPopupBlockedError,
    AuthProviderError,
    CredentialSession,
    CredentialSessionManager,
    Identity,
    SessionMonitor,
)
from .client import DriveClient, RemoteIOError
from .encryption import DecryptionError, EncryptedEnvelope, EnvelopeFormatError, decrypt, encrypt, load_envelope
from .local import JsonFileReplica, LocalReplica
from .operations import (
    ConflictUnresolvedError,
    InvalidBackupError,
    NoPendingConflictError,
    PasswordRequiredError,
    Resolution,
    SyncError,
    SyncInProgressError,
    SyncOrchestrator,
    SyncResult,
    read_backup,
)
from .state import SyncState, comparable_hash
from .status import SyncStatusEngine
from .store import VersionedRemoteStore

__all__ = [
    "AuthCancelledError",
    "AuthConfigError",
    "AuthError",
    "AuthInProgressError",
    "AuthPopupBlockedError",
    "AuthProviderError",
    "ConflictUnresolvedError",
    "CredentialSession",
    "CredentialSessionManager",
    "DecryptionError",
    "DriveClient",
    "EncryptedEnvelope",
    "EnvelopeFormatError",
    "Identity",
    "InvalidBackupError",
    "JsonFileReplica",
    "LocalReplica",
    "NoPendingConflictError",
    "PasswordRequiredError",
    "RemoteIOError",
    "Resolution",
    "SessionMonitor",
    "SyncError",
    "SyncInProgressError",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatusEngine",
    "VersionedRemoteStore",
    "comparable_hash",
    "decrypt",
    "encrypt",
    "load_envelope",
    "read_backup",
]
