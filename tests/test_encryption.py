"""Tests for the sidecar encryption service."""

import json
import os

import pytest

from stowage.core.encryption import EncryptionService, strip_suffix
from stowage.core.errors import ConfigurationError, DecryptionError
from stowage.core.models import EncryptedPayload


def _flip_first(hex_string):
    return ("0" if hex_string[0] != "0" else "1") + hex_string[1:]


def test_round_trip_text(encryption):
    payload = encryption.encrypt("DATABASE_URL=postgres://localhost/app")
    assert encryption.decrypt(payload) == "DATABASE_URL=postgres://localhost/app"


def test_iv_and_tag_are_16_bytes(encryption):
    payload = encryption.encrypt(b"x")
    assert len(payload.iv) == 32
    assert len(payload.tag) == 32


def test_fresh_iv_per_call(encryption):
    first = encryption.encrypt("same")
    second = encryption.encrypt("same")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


def test_tampered_ciphertext_is_rejected(encryption):
    payload = encryption.encrypt("secret value")
    tampered = EncryptedPayload(_flip_first(payload.ciphertext), payload.iv, payload.tag)
    with pytest.raises(DecryptionError):
        encryption.decrypt(tampered)


def test_tampered_tag_is_rejected(encryption):
    payload = encryption.encrypt("secret value")
    with pytest.raises(DecryptionError):
        encryption.decrypt(EncryptedPayload(payload.ciphertext, payload.iv, _flip_first(payload.tag)))


def test_wrong_key_is_rejected(encryption, tmp_path):
    payload = encryption.encrypt("secret value")
    other = EncryptionService(tmp_path / "other.key")
    with pytest.raises(DecryptionError):
        other.decrypt(payload)


def test_malformed_payload_is_rejected(encryption):
    with pytest.raises(DecryptionError):
        encryption.decrypt(EncryptedPayload("zz", "00" * 16, "00" * 16))
    with pytest.raises(DecryptionError):
        encryption.decrypt(EncryptedPayload("00", "00" * 8, "00" * 16))


def test_key_is_persisted_with_owner_only_permissions(tmp_path):
    key_file = tmp_path / "keys" / "backup.key"
    service = EncryptionService(key_file)
    payload = service.encrypt("persist me")

    assert key_file.exists()
    assert os.stat(key_file).st_mode & 0o777 == 0o600
    assert EncryptionService(key_file).decrypt(payload) == "persist me"


def test_wrong_length_key_is_never_replaced(tmp_path):
    key_file = tmp_path / "backup.key"
    key_file.write_bytes(b"short")
    with pytest.raises(ConfigurationError):
        EncryptionService(key_file).encrypt("x")
    assert key_file.read_bytes() == b"short"


def test_sidecar_file_round_trip(encryption, tmp_path):
    source = tmp_path / "secrets.env"
    source.write_text("TOKEN=abc\n")

    sidecar = encryption.encrypt_file(source)
    assert sidecar.name == "secrets.env.encrypted"
    with open(sidecar) as f:
        assert set(json.load(f)) == {"encrypted", "iv", "tag"}

    source.unlink()
    restored = encryption.decrypt_file(sidecar)
    assert restored == source
    assert restored.read_text() == "TOKEN=abc\n"


def test_strip_suffix(tmp_path):
    assert strip_suffix(tmp_path / "a" / ".env.encrypted") == tmp_path / "a" / ".env"
