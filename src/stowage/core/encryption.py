"""Authenticated encryption of sensitive files (AES-256-GCM sidecars)"""

import json
import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError, DecryptionError, NotFoundError
from .models import ENCRYPTED_SUFFIX, EncryptedPayload

KEY_LENGTH = 32  # 256-bit key
IV_LENGTH = 16
TAG_LENGTH = 16


class EncryptionService:
    """Encrypts and decrypts individual files with a per-installation key.

    The key is created lazily on first use and loaded on every later use. An
    existing key file is never overwritten: losing it makes every sidecar
    written with it unrecoverable.
    """

    def __init__(self, key_file: Path):
        self.key_file = Path(key_file)
        self.logger = logging.getLogger("EncryptionService")
        self._key: bytes | None = None

    @property
    def key(self) -> bytes:
        if self._key is None:
            self._key = self._load_or_create_key()
        return self._key

    def _load_or_create_key(self) -> bytes:
        if self.key_file.exists():
            current_mode = os.stat(self.key_file).st_mode & 0o777
            if current_mode != 0o600:
                os.chmod(self.key_file, 0o600)
            key = self.key_file.read_bytes()
            if len(key) != KEY_LENGTH:
                # Refuse to regenerate: that would orphan every existing ciphertext
                raise ConfigurationError(
                    f"Encryption key at {self.key_file} is {len(key)} bytes, expected {KEY_LENGTH}. "
                    "Restore the original key file; a new key cannot decrypt existing backups."
                )
            return key

        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        key = os.urandom(KEY_LENGTH)
        # O_EXCL: never clobber a key created concurrently by another process
        try:
            fd = os.open(str(self.key_file), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            return self._load_or_create_key()
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
        self.logger.warning(f"Generated new encryption key at {self.key_file} - back it up separately")
        return key

    def encrypt(self, plaintext: str | bytes) -> EncryptedPayload:
        """Encrypt with a fresh random 128-bit IV"""
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self.key).encrypt(iv, data, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedPayload(ciphertext=ciphertext.hex(), iv=iv.hex(), tag=tag.hex())

    def decrypt_bytes(self, payload: EncryptedPayload) -> bytes:
        """Decrypt a payload, failing closed on any tampering"""
        try:
            iv = bytes.fromhex(payload.iv)
            tag = bytes.fromhex(payload.tag)
            ciphertext = bytes.fromhex(payload.ciphertext)
        except (TypeError, ValueError) as e:
            raise DecryptionError(f"Malformed encrypted payload: {e}") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Malformed encrypted payload: bad IV or tag length")

        try:
            return AESGCM(self.key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag did not verify") from e

    def decrypt(self, payload: EncryptedPayload) -> str:
        """Decrypt a payload to text"""
        data = self.decrypt_bytes(payload)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted content is not valid UTF-8") from e

    def encrypt_file(self, source: Path, destination: Path | None = None) -> Path:
        """Write an encrypted sidecar for source

        Args:
            source: Plaintext file
            destination: Sidecar path (defaults to source + '.encrypted')

        Returns:
            Path of the written sidecar
        """
        source = Path(source)
        if not source.exists():
            raise NotFoundError(f"File not found: {source}")

        sidecar = Path(destination) if destination else source.with_name(source.name + ENCRYPTED_SUFFIX)
        sidecar.parent.mkdir(parents=True, exist_ok=True)
        payload = self.encrypt(source.read_bytes())
        with open(sidecar, "w") as f:
            json.dump(payload.to_dict(), f, indent=2)
        return sidecar

    def read_sidecar(self, sidecar: Path) -> EncryptedPayload:
        try:
            with open(sidecar) as f:
                return EncryptedPayload.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise DecryptionError(f"Unreadable sidecar {sidecar.name}: {e}") from e

    def decrypt_file(self, sidecar: Path, destination: Path | None = None) -> Path:
        """Decrypt a sidecar and write the plaintext next to it (suffix stripped)

        Returns:
            Path of the written plaintext file
        """
        sidecar = Path(sidecar)
        if not sidecar.exists():
            raise NotFoundError(f"Encrypted file not found: {sidecar}")

        plaintext = self.decrypt_bytes(self.read_sidecar(sidecar))
        target = Path(destination) if destination else strip_suffix(sidecar)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(plaintext)
        return target


def strip_suffix(path: Path) -> Path:
    """secrets.env.encrypted -> secrets.env"""
    return path.with_name(path.name[: -len(ENCRYPTED_SUFFIX)])
