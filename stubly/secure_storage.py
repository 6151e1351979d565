"""
Secure Key-Value Storage Backends.

The secure session store persists its values through a small key-value
capability (:class:`SecureStorage`).  Two backends are provided:

- :class:`InMemorySecureStorage`: process-local, nothing touches disk.
  Used on the web platform and in tests.
- :class:`EncryptedFileStorage`: a single AES-256-GCM encrypted file.

Security model (``EncryptedFileStorage``)
-----------------------------------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-machine
  random salt.  The key is **never** persisted to disk.
- AES-256-GCM provides both confidentiality and integrity; a file that
  fails authentication (corruption, different machine) is treated as
  empty and overwritten on the next write.

File layout::

    nonce (16 bytes) | tag (16 bytes) | ciphertext (JSON object of str -> str)
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import socket
import stat
import threading
from pathlib import Path
from typing import Optional, Protocol

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from stubly.logger import StructuredLogger

__all__ = ["EncryptedFileStorage", "InMemorySecureStorage", "SecureStorage"]


class SecureStorage(Protocol):
    """Opaque string key-value persistence."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemorySecureStorage:
    """Dictionary-backed storage; contents vanish with the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class EncryptedFileStorage:
    """AES-256-GCM encrypted key-value file.

    Parameters
    ----------
    path:
        Location of the encrypted store file.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    salt_path:
        Location of the per-machine random salt.  Defaults to
        ``~/.stubly_storage_salt``.
    iterations:
        PBKDF2 iteration count.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _NONCE_LENGTH: int = 16
    _TAG_LENGTH: int = 16

    def __init__(
        self,
        path: Path,
        logger: StructuredLogger,
        salt_path: Optional[Path] = None,
        iterations: Optional[int] = None,
    ) -> None:
        self._path: Path = path
        self._logger: StructuredLogger = logger
        self._salt_path: Path = salt_path or Path.home() / ".stubly_storage_salt"
        self._iterations: int = iterations or self._PBKDF2_ITERATIONS
        self._lock = threading.RLock()
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # SecureStorage
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            values = self._read_all()
            values[key] = value
            self._write_all(values)

    def remove(self, key: str) -> None:
        with self._lock:
            values = self._read_all()
            if key in values:
                del values[key]
                self._write_all(values)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        blob: bytes = self._path.read_bytes()
        header = self._NONCE_LENGTH + self._TAG_LENGTH
        if len(blob) < header:
            self._logger.warning("Secure storage file is truncated; ignoring it.")
            return {}

        nonce, tag, ciphertext = (
            blob[: self._NONCE_LENGTH],
            blob[self._NONCE_LENGTH:header],
            blob[header:],
        )
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)
            plaintext: bytes = cipher.decrypt_and_verify(ciphertext, tag)
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of secure storage failed (corrupted data or "
                "machine identity changed): %s",
                exc,
            )
            return {}

        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            self._logger.warning("Secure storage payload is malformed: %s", exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write_all(self, values: dict[str, str]) -> None:
        plaintext: bytes = json.dumps(values, ensure_ascii=False).encode("utf-8")
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=os.urandom(self._NONCE_LENGTH))
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_bytes(cipher.nonce + tag + ciphertext)
        os.replace(tmp_path, self._path)
        if platform.system() != "Windows":
            self._path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

    def _derive_key(self) -> bytes:
        """Derive the 256-bit AES key from machine identity.

        Cached for the lifetime of this object, never written to disk.

        Raises
        ------
        OSError
            If the per-machine salt file cannot be created or read.
        """
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run."""
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == 32:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )
        salt: bytes = os.urandom(32)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        self._logger.info("Per-machine storage salt created at %s.", self._salt_path)
        return salt
