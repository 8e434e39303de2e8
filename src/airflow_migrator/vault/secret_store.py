# Vault - Encrypted Credential Store
#
# In-memory string->string mapping mirrored to one AES-256-GCM encrypted
# JSON file, keyed by an Argon2id-derived master key.
#
# On-disk layout inside the config directory:
#   salt             16 random bytes, created once
#   credentials.enc  nonce(12) || ciphertext+tag, rewritten on every mutation

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Set, Union

from cryptography.exceptions import InvalidTag

from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import InvalidPasswordError, KeyNotFoundError, MigratorError
from .encryption import EncryptionService

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.enc"
SALT_FILE = "salt"


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SecretStore:
    """
    Password-protected key/value vault for profile credentials.

    Security:
    - Master password never stored (only the salt)
    - Wrong password detected by the GCM tag at open time
    - Every mutation is encrypted with a fresh nonce and written atomically
      (temp file + os.replace) before the call returns
    - Vault file is owner read/write only (0600)

    Keys are namespaced strings such as ``profile:<id>:password``.
    """

    def __init__(self, config_dir: Union[str, Path], master_password: str):
        """
        Open (or lazily create) the vault in ``config_dir``.

        Raises:
            InvalidPasswordError: If an existing vault cannot be decrypted
            OSError: If the directory or salt file cannot be written
        """
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        self.file_path = self.config_dir / CREDENTIALS_FILE
        self.salt_path = self.config_dir / SALT_FILE

        self._lock = ReadWriteLock()
        self._data: Dict[str, str] = {}
        self.audit = get_audit_logger()

        salt = self._get_or_create_salt()
        self._key = EncryptionService.derive_key(master_password, salt)

        if self.file_path.exists():
            self._data = self._load()

        self.audit.log_vault_event(
            EventType.VAULT_OPENED,
            "Vault opened",
            details={"config_dir": str(self.config_dir), "entries": len(self._data)},
        )

    @classmethod
    def open(cls, config_dir: Union[str, Path], master_password: str) -> "SecretStore":
        """Alias for the constructor."""
        return cls(config_dir, master_password)

    @staticmethod
    def exists(config_dir: Union[str, Path]) -> bool:
        """Check whether a credentials file already exists in ``config_dir``."""
        return (Path(config_dir) / CREDENTIALS_FILE).exists()

    # ── Persistence ─────────────────────────────────────────────────

    def _get_or_create_salt(self) -> bytes:
        if self.salt_path.exists():
            salt = self.salt_path.read_bytes()
            if len(salt) == EncryptionService.SALT_LENGTH:
                return salt
            if self.file_path.exists():
                # Regenerating would make the existing vault unreadable.
                raise MigratorError(
                    f"corrupted vault: salt file {self.salt_path} has "
                    f"{len(salt)} bytes, expected {EncryptionService.SALT_LENGTH}"
                )

        salt = EncryptionService.generate_salt()
        self._atomic_write(self.salt_path, salt)
        return salt

    def _load(self) -> Dict[str, str]:
        blob = self.file_path.read_bytes()
        try:
            plaintext = EncryptionService.open_sealed(blob, self._key)
            data = json.loads(plaintext.decode("utf-8"))
        except (InvalidTag, ValueError):
            self.audit.log_vault_event(
                EventType.VAULT_UNLOCK_FAILED,
                "Vault unlock failed: incorrect master password",
                details={"config_dir": str(self.config_dir)},
                severity=EventSeverity.ALERT,
            )
            raise InvalidPasswordError()

        if not isinstance(data, dict):
            raise InvalidPasswordError()
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        """Encrypt ``data`` completely, then replace the vault file."""
        plaintext = json.dumps(data).encode("utf-8")
        blob = EncryptionService.seal(plaintext, self._key)
        try:
            self._atomic_write(self.file_path, blob)
        except OSError as e:
            self.audit.log_vault_event(
                EventType.VAULT_ERROR,
                f"Failed to write vault: {e}",
                severity=EventSeverity.ALERT,
            )
            raise

    @staticmethod
    def _atomic_write(path: Path, content: bytes) -> None:
        tmp_path = str(path) + ".tmp"
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            os.chmod(path, 0o600)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # ── Reads ───────────────────────────────────────────────────────

    def get(self, key: str) -> str:
        """
        Retrieve a value.

        Raises:
            KeyNotFoundError: If ``key`` is absent
        """
        with self._lock.read():
            try:
                return self._data[key]
            except KeyError:
                raise KeyNotFoundError(key) from None

    def has(self, key: str) -> bool:
        with self._lock.read():
            return key in self._data

    def list(self) -> Set[str]:
        """Return all keys (unordered)."""
        with self._lock.read():
            return set(self._data)

    # ── Writes ──────────────────────────────────────────────────────
    # Each mutation works on a copy; memory is updated only after the new
    # file is on disk, so a failed write leaves both untouched.

    def set(self, key: str, value: str) -> None:
        with self._lock.write():
            updated = dict(self._data)
            updated[key] = value
            self._save(updated)
            self._data = updated
        self.audit.log_vault_event(
            EventType.VAULT_SECRET_SET, "Secret stored", details={"key": key}
        )

    def set_many(self, items: Dict[str, str]) -> None:
        """Store several entries with one vault rewrite (all or nothing)."""
        with self._lock.write():
            updated = dict(self._data)
            updated.update(items)
            self._save(updated)
            self._data = updated
        self.audit.log_vault_event(
            EventType.VAULT_SECRET_SET, "Secrets stored", details={"keys": sorted(items)}
        )

    def delete_many(self, keys: Iterable[str]) -> List[str]:
        """
        Remove every present key in ``keys`` with one vault rewrite.

        Returns:
            The keys that were actually removed
        """
        with self._lock.write():
            removed = [key for key in dict.fromkeys(keys) if key in self._data]
            if not removed:
                return []
            updated = {k: v for k, v in self._data.items() if k not in removed}
            self._save(updated)
            self._data = updated
        self.audit.log_vault_event(
            EventType.VAULT_SECRET_DELETED, "Secrets deleted", details={"keys": removed}
        )
        return removed

    def delete(self, key: str) -> None:
        """
        Remove a key.

        Raises:
            KeyNotFoundError: If ``key`` is absent
        """
        with self._lock.write():
            if key not in self._data:
                raise KeyNotFoundError(key)
            updated = dict(self._data)
            del updated[key]
            self._save(updated)
            self._data = updated
        self.audit.log_vault_event(
            EventType.VAULT_SECRET_DELETED, "Secret deleted", details={"key": key}
        )

    def clear(self) -> None:
        """Remove every entry (the vault file is rewritten, not deleted)."""
        with self._lock.write():
            self._save({})
            self._data = {}
        self.audit.log_vault_event(
            EventType.VAULT_CLEARED, "Vault cleared", severity=EventSeverity.WARNING
        )

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        return self.has(key)
