"""Tests for the envelope encryption service."""

import base64

import pytest

from cloudsync.core.encryption import (
    DECRYPTION_FAILED_MESSAGE,
    PBKDF2_ITERATIONS,
    DecryptionError,
    EncryptedEnvelope,
    EnvelopeFormatError,
    decrypt,
    derive_key,
    encrypt,
    is_envelope,
    load_envelope,
)

# Keeps the suite fast; the envelope records whatever count was used
FAST = 1000


class TestEncryption:
    """Tests for encrypt/decrypt."""

    def test_round_trip_with_default_parameters(self) -> None:
        envelope = encrypt({"a": 1}, "secret123")

        assert envelope.kdf.iterations == PBKDF2_ITERATIONS
        assert envelope.cipher == "AES-256-GCM"
        assert envelope.format_version == "1.0.0"
        assert len(base64.b64decode(envelope.salt)) == 16
        assert len(base64.b64decode(envelope.iv)) == 12
        assert decrypt(envelope, "secret123") == {"a": 1}

        with pytest.raises(DecryptionError):
            decrypt(envelope, "wrongpass")

    @pytest.mark.parametrize(
        "payload",
        [
            {"entries": [{"id": "e1", "km": 120.5}], "name": "Zoë"},
            [1, 2, 3],
            "plain string",
            None,
        ],
    )
    def test_round_trip_payloads(self, payload: object) -> None:
        envelope = encrypt(payload, "correct horse", iterations=FAST)

        assert decrypt(envelope, "correct horse") == payload

    def test_fresh_salt_and_iv_per_envelope(self) -> None:
        first = encrypt({"a": 1}, "pw", iterations=FAST)
        second = encrypt({"a": 1}, "pw", iterations=FAST)

        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_decrypt_uses_iterations_from_envelope(self) -> None:
        envelope = encrypt({"a": 1}, "pw", iterations=2000)

        assert envelope.kdf.iterations == 2000
        assert decrypt(envelope.to_dict(), "pw") == {"a": 1}

    def test_tampered_ciphertext_gives_same_error_as_wrong_password(self) -> None:
        envelope = encrypt({"a": 1}, "pw", iterations=FAST)
        raw = bytearray(base64.b64decode(envelope.ciphertext))
        raw[0] ^= 0xFF
        tampered = envelope.to_dict()
        tampered["ciphertext"] = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(DecryptionError) as tampered_error:
            decrypt(tampered, "pw")
        with pytest.raises(DecryptionError) as password_error:
            decrypt(envelope, "not-pw")

        assert str(tampered_error.value) == str(password_error.value) == DECRYPTION_FAILED_MESSAGE

    def test_corrupt_base64_is_decryption_error(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data["salt"] = "###not base64###"

        with pytest.raises(DecryptionError):
            decrypt(data, "pw")

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("salt", 123),
            ("iv", None),
            ("ciphertext", ["AAAA"]),
            ("kdf", {"algorithm": "PBKDF2", "hash": "SHA-256", "iterations": "abc"}),
            ("kdf", ["PBKDF2"]),
            ("kdf", "PBKDF2"),
        ],
    )
    def test_malformed_fields_are_decryption_errors(self, field: str, value: object) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data[field] = value

        with pytest.raises(DecryptionError) as exc_info:
            decrypt(data, "pw")

        assert str(exc_info.value) == DECRYPTION_FAILED_MESSAGE

    def test_load_envelope_rejects_malformed_iterations(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data["kdf"]["iterations"] = "many"

        with pytest.raises(DecryptionError):
            load_envelope(data)

    def test_unsupported_format_version_checked_first(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data["formatVersion"] = "9.0.0"

        with pytest.raises(EnvelopeFormatError, match="9.0.0"):
            decrypt(data, "pw")

    def test_unsupported_cipher(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data["cipher"] = "AES-128-CBC"

        with pytest.raises(EnvelopeFormatError):
            decrypt(data, "pw")

    def test_derive_key_length_and_determinism(self) -> None:
        salt = b"0" * 16

        key1 = derive_key("pw", salt, FAST)
        key2 = derive_key("pw", salt, FAST)

        assert len(key1) == 32
        assert key1 == key2
        assert derive_key("other", salt, FAST) != key1


class TestEnvelopeFormat:
    """Tests for the envelope JSON form."""

    def test_to_dict_keys(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()

        assert set(data) == {"formatVersion", "createdAt", "salt", "iv", "ciphertext", "kdf", "cipher"}
        assert data["kdf"] == {"algorithm": "PBKDF2", "hash": "SHA-256", "iterations": FAST}

    def test_legacy_keys_accepted(self) -> None:
        data = encrypt({"a": 1}, "pw", iterations=FAST).to_dict()
        data["version"] = data.pop("formatVersion")
        data["timestamp"] = data.pop("createdAt")

        envelope = EncryptedEnvelope.from_dict(data)

        assert envelope.format_version == "1.0.0"
        assert decrypt(envelope, "pw") == {"a": 1}

    def test_is_envelope(self) -> None:
        assert is_envelope(encrypt({}, "pw", iterations=FAST).to_dict())
        assert not is_envelope({"entries": []})
        assert not is_envelope([1, 2])

    def test_from_dict_rejects_plain_snapshot(self) -> None:
        with pytest.raises(EnvelopeFormatError):
            EncryptedEnvelope.from_dict({"entries": []})
