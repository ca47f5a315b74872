"""Tests for the FieldEncryptor (Fernet/MultiFernet field encryption)."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from biosignal.core.storage.encryption import EncryptionError, FieldEncryptor


@pytest.fixture
def key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def encryptor(key: str) -> FieldEncryptor:
    return FieldEncryptor(key)


class TestRoundTrip:
    def test_sample_values_round_trip(self, encryptor: FieldEncryptor):
        data = {"hrv": 42.5, "steps": 8123.0, "deep_sleep_minutes": 71.0}
        token = encryptor.encrypt(data)
        assert isinstance(token, str)
        assert "hrv" not in token
        assert encryptor.decrypt(token) == data

    def test_null_round_trip(self, encryptor: FieldEncryptor):
        assert encryptor.encrypt(None) == ""
        assert encryptor.decrypt("") is None

    def test_unserializable_value_raises(self, encryptor: FieldEncryptor):
        with pytest.raises(EncryptionError, match="JSON-serializable"):
            encryptor.encrypt({"when": object()})


class TestKeyValidation:
    def test_empty_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("")

    def test_whitespace_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("   ")

    def test_invalid_key_raises(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor("not-a-valid-fernet-key")

    def test_invalid_previous_key_raises(self, key: str):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor(key, previous_keys=["garbage"])


class TestCorruptData:
    def test_wrong_key_cannot_decrypt(self, encryptor: FieldEncryptor):
        token = encryptor.encrypt({"secret": "data"})
        other = FieldEncryptor(Fernet.generate_key().decode())
        with pytest.raises(EncryptionError, match="invalid token"):
            other.decrypt(token)

    def test_tampered_token_raises(self, encryptor: FieldEncryptor):
        token = encryptor.encrypt({"data": 1})
        with pytest.raises(EncryptionError):
            encryptor.decrypt(token[:-5] + "XXXXX")


class TestKeyRotation:
    def test_previous_key_still_decrypts(self, key: str):
        old = FieldEncryptor(key)
        token = old.encrypt({"hrv": 40})

        rotated = FieldEncryptor(Fernet.generate_key().decode(), previous_keys=[key])
        assert rotated.decrypt(token) == {"hrv": 40}

    def test_rotate_moves_token_to_primary_key(self, key: str):
        token = FieldEncryptor(key).encrypt({"hrv": 40})
        new_key = Fernet.generate_key().decode()

        rotated = FieldEncryptor(new_key, previous_keys=[key]).rotate(token)
        # Only the new key is needed afterwards.
        assert FieldEncryptor(new_key).decrypt(rotated) == {"hrv": 40}

    def test_rotate_empty_token(self, encryptor: FieldEncryptor):
        assert encryptor.rotate("") == ""

    def test_rotate_unknown_token_raises(self, encryptor: FieldEncryptor):
        foreign = FieldEncryptor(Fernet.generate_key().decode()).encrypt(1)
        with pytest.raises(EncryptionError, match="Rotation failed"):
            encryptor.rotate(foreign)


class TestGenerateKey:
    def test_generates_valid_key(self):
        key = FieldEncryptor.generate_key()
        assert isinstance(key, str)
        assert len(key) == 44

    def test_generated_key_works(self):
        enc = FieldEncryptor(FieldEncryptor.generate_key())
        assert enc.decrypt(enc.encrypt({"test": True})) == {"test": True}
