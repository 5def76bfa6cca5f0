"""
Client Storage Scopes.

Two key/value scopes hold the persisted session:

- **Session-lived** (:class:`MemoryStorage`): lives as long as the
  process, the client-side equivalent of ``sessionStorage``.
- **Durable** (:class:`EncryptedSqliteStorage`): survives restarts, the
  equivalent of ``localStorage``.  Each value is encrypted with
  AES-256-GCM and stored as one row of the SQLite ``client_storage``
  table.

Security model of the durable scope
-----------------------------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-machine
  random salt.  The key is **never** persisted to disk.
- GCM provides both confidentiality and integrity: a tampered or
  undecryptable row reads as absent instead of raising.

Only ``SessionManager`` writes to these scopes.
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from portal.database import DatabaseManager
from portal.logger import StructuredLogger


@runtime_checkable
class KeyValueStorage(Protocol):
    """String key/value store with ``localStorage``-like semantics."""

    def get_item(self, key: str) -> Optional[str]: ...  # noqa: E704

    def set_item(self, key: str, value: str) -> None: ...  # noqa: E704

    def remove_item(self, key: str) -> None: ...  # noqa: E704

    def clear(self) -> None: ...  # noqa: E704


class MemoryStorage:
    """Session-lived scope: a plain dict that dies with the process."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class EncryptedSqliteStorage:
    """Durable scope backed by the local SQLite database.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager``; the ``client_storage`` table is
        created by ``initialize_schema``.
    logger:
        Structured logger.
    salt_path:
        Location of the per-machine random salt file.
    pbkdf2_iterations:
        Key-derivation cost.  The derived key is cached for the lifetime
        of the instance.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path,
        pbkdf2_iterations: Optional[int] = None,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = Path(salt_path)
        self._iterations: int = pbkdf2_iterations or self._PBKDF2_ITERATIONS
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> Optional[str]:
        """Return the decrypted value for *key*, or ``None``.

        Missing rows, database errors and failed decryption (corrupted
        data, tampering, changed machine identity) all read as absent.
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_value, nonce, tag FROM client_storage WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read '%s' from durable storage: %s", key, exc)
            return None

        if row is None:
            return None

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
            plaintext: bytes = cipher.decrypt_and_verify(row["encrypted_value"], row["tag"])
            return plaintext.decode("utf-8")
        except (ValueError, KeyError, UnicodeDecodeError) as exc:
            self._logger.warning(
                "Decryption of stored '%s' failed (corrupted data or "
                "machine identity changed): %s",
                key,
                exc,
            )
            return None
        except OSError as exc:
            self._logger.warning("Storage key unavailable: %s", exc)
            return None

    def set_item(self, key: str, value: str) -> None:
        """Encrypt and upsert *value* under *key*.

        Raises
        ------
        OSError
            If the salt file cannot be created; durable persistence is
            refused rather than degraded to a weak key.
        """
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)
        ciphertext, tag = cipher.encrypt_and_digest(str(value).encode("utf-8"))
        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                INSERT INTO client_storage (key, encrypted_value, nonce, tag)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    encrypted_value = excluded.encrypted_value,
                    nonce           = excluded.nonce,
                    tag             = excluded.tag,
                    updated_at      = CURRENT_TIMESTAMP
                """,
                (key, ciphertext, cipher.nonce, tag),
            )
            self._db.sqlite.commit()

    def remove_item(self, key: str) -> None:
        """Delete *key*.  Safe to call when the key does not exist."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM client_storage WHERE key = ?", (key,))
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.error("Failed to remove '%s' from durable storage: %s", key, exc)

    def clear(self) -> None:
        """Delete every key in the durable scope."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM client_storage")
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.error("Failed to clear durable storage: %s", exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        Key material ``hostname:username`` binds the database file to this
        machine; the real entropy comes from the per-machine salt.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        if self._key is None:
            password: str = _machine_identity()
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
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        # Owner-only permissions.
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine storage salt created at %s.", self._salt_path)
        return salt


def _machine_identity() -> str:
    """Return ``hostname:username``; the username part may be empty."""
    try:
        username = getpass.getuser()
    except (OSError, KeyError):
        username = ""
    return f"{socket.gethostname()}:{username}"
