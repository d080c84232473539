"""Password-based authenticated encryption for exported snapshots.

Envelopes use PBKDF2-HMAC-SHA-256 for key derivation and AES-256-GCM for
encryption. Every parameter needed to decrypt, except the password, travels
inside the envelope.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0.0"
SUPPORTED_FORMAT_VERSIONS = frozenset({"1.0.0"})

PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 16  # bytes
IV_LENGTH = 12  # bytes for GCM
KEY_LENGTH = 32  # AES-256

KDF_ALGORITHM = "PBKDF2"
KDF_HASH = "SHA-256"
CIPHER = "AES-256-GCM"

DECRYPTION_FAILED_MESSAGE = (
    "Decryption failed. The password is incorrect or the data is corrupted."
)


class DecryptionError(Exception):
    """Raised when an envelope cannot be decrypted.

    Wrong passwords and corrupted data raise the same message.
    """

    def __init__(self) -> None:
        super().__init__(DECRYPTION_FAILED_MESSAGE)


class EnvelopeFormatError(ValueError):
    """Raised when an envelope uses an unknown format version or algorithm."""


@dataclass(frozen=True)
class KdfParams:
    """Key derivation parameters stored in an envelope."""

    algorithm: str = KDF_ALGORITHM
    hash: str = KDF_HASH
    iterations: int = PBKDF2_ITERATIONS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"algorithm": self.algorithm, "hash": self.hash, "iterations": self.iterations}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KdfParams":
        """Create from dictionary."""
        return cls(
            algorithm=data.get("algorithm", KDF_ALGORITHM),
            hash=data.get("hash", KDF_HASH),
            iterations=int(data.get("iterations", PBKDF2_ITERATIONS)),
        )


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Self-describing authenticated-encryption envelope."""

    salt: str  # Base64
    iv: str  # Base64
    ciphertext: str  # Base64, includes the GCM tag
    kdf: KdfParams = field(default_factory=KdfParams)
    cipher: str = CIPHER
    format_version: str = FORMAT_VERSION
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON file form."""
        return {
            "formatVersion": self.format_version,
            "createdAt": self.created_at,
            "salt": self.salt,
            "iv": self.iv,
            "ciphertext": self.ciphertext,
            "kdf": self.kdf.to_dict(),
            "cipher": self.cipher,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedEnvelope":
        """Create from the JSON file form.

        Older exports named the first two fields ``version`` and ``timestamp``.
        """
        if not is_envelope(data):
            raise EnvelopeFormatError("Not an encrypted envelope")
        return cls(
            salt=data["salt"],
            iv=data["iv"],
            ciphertext=data["ciphertext"],
            kdf=KdfParams.from_dict(data.get("kdf") or {}),
            cipher=data.get("cipher", CIPHER),
            format_version=str(data.get("formatVersion", data.get("version", ""))),
            created_at=data.get("createdAt", data.get("timestamp", "")),
        )


def is_envelope(data: Any) -> bool:
    """Check whether a decoded JSON document looks like an envelope."""
    return isinstance(data, dict) and all(key in data for key in ("salt", "iv", "ciphertext"))


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive a 256-bit key from a password using PBKDF2-HMAC-SHA-256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(payload: Any, password: str, iterations: int = PBKDF2_ITERATIONS) -> EncryptedEnvelope:
    """Encrypt a JSON-serializable payload with a password.

    Args:
        payload: Any JSON-serializable value
        password: Encryption password
        iterations: PBKDF2 iteration count recorded in the envelope

    Returns:
        EncryptedEnvelope with a fresh salt and IV
    """
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = derive_key(password, salt, iterations)

    plaintext = json.dumps(payload).encode("utf-8")
    ciphertext = AESGCM(key).encrypt(iv, plaintext, None)

    return EncryptedEnvelope(
        salt=_b64encode(salt),
        iv=_b64encode(iv),
        ciphertext=_b64encode(ciphertext),
        kdf=KdfParams(iterations=iterations),
        format_version=FORMAT_VERSION,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


def check_format(envelope: EncryptedEnvelope) -> None:
    """Reject envelopes this version cannot decrypt.

    Raises:
        EnvelopeFormatError: On an unknown format version or algorithm id
    """
    if envelope.format_version not in SUPPORTED_FORMAT_VERSIONS:
        raise EnvelopeFormatError(f"Unsupported envelope format version: {envelope.format_version!r}")
    if envelope.cipher != CIPHER:
        raise EnvelopeFormatError(f"Unsupported cipher: {envelope.cipher!r}")
    if envelope.kdf.algorithm != KDF_ALGORITHM or envelope.kdf.hash != KDF_HASH:
        raise EnvelopeFormatError(
            f"Unsupported key derivation: {envelope.kdf.algorithm}/{envelope.kdf.hash}"
        )


def load_envelope(data: Any) -> EncryptedEnvelope:
    """Parse an envelope from its JSON form and check that it is supported.

    Raises:
        EnvelopeFormatError: If the data is not an envelope, or its format
            version or algorithms are unsupported
        DecryptionError: If a field is malformed
    """
    if not is_envelope(data):
        raise EnvelopeFormatError("Not an encrypted envelope")
    try:
        envelope = EncryptedEnvelope.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        logger.debug("Malformed envelope field: %s", type(e).__name__)
        raise DecryptionError() from None
    check_format(envelope)
    return envelope


def decrypt(envelope: EncryptedEnvelope | dict[str, Any], password: str) -> Any:
    """Decrypt an envelope back into its payload.

    The salt and iteration count come from the envelope itself.

    Raises:
        EnvelopeFormatError: If the envelope format is not supported
        DecryptionError: If the password is wrong or the data is corrupted
    """
    if isinstance(envelope, EncryptedEnvelope):
        check_format(envelope)
    else:
        envelope = load_envelope(envelope)

    try:
        salt = _b64decode(envelope.salt)
        iv = _b64decode(envelope.iv)
        ciphertext = _b64decode(envelope.ciphertext)
        key = derive_key(password, salt, envelope.kdf.iterations)
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        return json.loads(plaintext.decode("utf-8"))
    except (InvalidTag, binascii.Error, ValueError, TypeError, AttributeError) as e:
        # UnicodeDecodeError and JSONDecodeError are ValueErrors
        logger.debug("Envelope decryption failed: %s", type(e).__name__)
        raise DecryptionError() from None
