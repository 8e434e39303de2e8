"""Tests for the credential vault.

Covers: EncryptionService primitives, SecretStore persistence, wrong
password detection, file permissions, failed-write consistency and the
reader/writer lock.
"""

import json
import os
import sys
import threading
import time

import pytest
from cryptography.exceptions import InvalidTag

from airflow_migrator.exceptions import (
    InvalidPasswordError,
    KeyNotFoundError,
    MigratorError,
)
from airflow_migrator.vault import EncryptionService, SecretStore
from airflow_migrator.vault.secret_store import (
    CREDENTIALS_FILE,
    SALT_FILE,
    ReadWriteLock,
)

PASSWORD = "CorrectHorseBattery1"


# ── EncryptionService Tests ─────────────────────────────────────────


class TestEncryptionService:
    """Argon2id key derivation and AES-256-GCM sealing."""

    def test_derive_key_deterministic(self):
        salt = b"\x01" * 16
        key1 = EncryptionService.derive_key("password", salt)
        key2 = EncryptionService.derive_key("password", salt)
        assert key1 == key2
        assert len(key1) == 32

    def test_derive_key_depends_on_salt_and_password(self):
        salt = b"\x01" * 16
        base = EncryptionService.derive_key("password", salt)
        assert EncryptionService.derive_key("password", b"\x02" * 16) != base
        assert EncryptionService.derive_key("passw0rd", salt) != base

    def test_salt_is_random(self):
        assert EncryptionService.generate_salt() != EncryptionService.generate_salt()
        assert len(EncryptionService.generate_salt()) == 16

    def test_seal_open_roundtrip(self):
        key = os.urandom(32)
        blob = EncryptionService.seal(b"vault contents", key)
        # nonce(12) + ciphertext + tag(16)
        assert len(blob) == 12 + len(b"vault contents") + 16
        assert EncryptionService.open_sealed(blob, key) == b"vault contents"

    def test_open_with_wrong_key(self):
        blob = EncryptionService.seal(b"data", os.urandom(32))
        with pytest.raises(InvalidTag):
            EncryptionService.open_sealed(blob, os.urandom(32))

    def test_open_truncated_blob(self):
        with pytest.raises(ValueError):
            EncryptionService.open_sealed(b"short", os.urandom(32))


# ── SecretStore Tests ───────────────────────────────────────────────


class TestSecretStore:

    def test_fresh_store_is_empty(self, tmp_path):
        store = SecretStore(tmp_path / "vault", PASSWORD)
        assert store.list() == set()
        assert len(store) == 0
        # Nothing written until the first mutation
        assert not SecretStore.exists(tmp_path / "vault")
        assert (tmp_path / "vault" / SALT_FILE).exists()

    def test_set_get_persist_across_reopen(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k1", "v1")
        store.set("k2", "v2")
        assert SecretStore.exists(tmp_path)

        reopened = SecretStore.open(tmp_path, PASSWORD)
        assert reopened.get("k1") == "v1"
        assert reopened.get("k2") == "v2"

    def test_overwrite_value(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k", "old")
        store.set("k", "new")
        assert SecretStore(tmp_path, PASSWORD).get("k") == "new"

    def test_wrong_password(self, tmp_path):
        SecretStore(tmp_path, PASSWORD).set("k", "v")
        with pytest.raises(InvalidPasswordError):
            SecretStore(tmp_path, "not-the-password")

    def test_corrupt_vault_reports_invalid_password(self, tmp_path):
        SecretStore(tmp_path, PASSWORD).set("k", "v")
        (tmp_path / CREDENTIALS_FILE).write_bytes(b"\x00" * 40)
        with pytest.raises(InvalidPasswordError):
            SecretStore(tmp_path, PASSWORD)

    def test_delete_and_list(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k1", "v1")
        store.set("k2", "v2")
        store.delete("k1")

        assert store.list() == {"k2"}
        assert SecretStore(tmp_path, PASSWORD).list() == {"k2"}

    def test_get_missing_key(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        with pytest.raises(KeyNotFoundError) as exc_info:
            store.get("missing")
        assert exc_info.value.key == "missing"
        assert str(exc_info.value) == "key not found: missing"

    def test_missing_key_is_also_key_error(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        with pytest.raises(KeyError):
            store.get("missing")

    def test_delete_missing_key(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        with pytest.raises(KeyNotFoundError):
            store.delete("missing")

    def test_has_and_contains(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("present", "")
        assert store.has("present")
        assert "present" in store
        assert not store.has("absent")

    def test_clear(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k1", "v1")
        store.set("k2", "v2")
        store.clear()

        assert store.list() == set()
        assert SecretStore.exists(tmp_path)
        assert SecretStore(tmp_path, PASSWORD).list() == set()

    def test_salt_reused_across_opens(self, tmp_path):
        SecretStore(tmp_path, PASSWORD).set("k", "v")
        salt = (tmp_path / SALT_FILE).read_bytes()
        SecretStore(tmp_path, PASSWORD).set("k2", "v2")
        assert (tmp_path / SALT_FILE).read_bytes() == salt

    def test_bad_salt_with_existing_vault(self, tmp_path):
        SecretStore(tmp_path, PASSWORD).set("k", "v")
        (tmp_path / SALT_FILE).write_bytes(b"short")
        with pytest.raises(MigratorError):
            SecretStore(tmp_path, PASSWORD)

    def test_bad_salt_without_vault_is_regenerated(self, tmp_path):
        (tmp_path / SALT_FILE).write_bytes(b"short")
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k", "v")
        assert len((tmp_path / SALT_FILE).read_bytes()) == 16
        assert SecretStore(tmp_path, PASSWORD).get("k") == "v"

    def test_file_is_encrypted(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("profile:abc:password", "hunter2-plaintext")
        blob = (tmp_path / CREDENTIALS_FILE).read_bytes()
        assert b"hunter2-plaintext" not in blob
        assert b"profile:abc" not in blob

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_permissions(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k", "v")
        assert (tmp_path / CREDENTIALS_FILE).stat().st_mode & 0o777 == 0o600
        assert (tmp_path / SALT_FILE).stat().st_mode & 0o777 == 0o600

    def test_no_temp_file_left(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k", "v")
        assert not (tmp_path / (CREDENTIALS_FILE + ".tmp")).exists()

    def test_failed_write_leaves_state_unchanged(self, tmp_path, monkeypatch):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("k1", "v1")
        before = (tmp_path / CREDENTIALS_FILE).read_bytes()

        def failing_write(path, content):
            raise OSError("disk full")

        monkeypatch.setattr(SecretStore, "_atomic_write", staticmethod(failing_write))

        with pytest.raises(OSError):
            store.set("k2", "v2")
        with pytest.raises(OSError):
            store.delete("k1")
        with pytest.raises(OSError):
            store.clear()

        assert store.list() == {"k1"}
        assert store.get("k1") == "v1"
        assert (tmp_path / CREDENTIALS_FILE).read_bytes() == before

    def test_set_many_single_rewrite(self, tmp_path, monkeypatch):
        store = SecretStore(tmp_path, PASSWORD)
        writes = []
        original = SecretStore._atomic_write

        def counting(path, content):
            writes.append(path.name)
            original(path, content)

        monkeypatch.setattr(SecretStore, "_atomic_write", staticmethod(counting))
        store.set_many({"a": "1", "b": "2", "c": "3"})

        assert writes == [CREDENTIALS_FILE]
        assert SecretStore(tmp_path, PASSWORD).list() == {"a", "b", "c"}

    def test_set_many_failure_writes_nothing(self, tmp_path, monkeypatch):
        store = SecretStore(tmp_path, PASSWORD)
        store.set("a", "old")

        def failing_write(path, content):
            raise OSError("disk full")

        monkeypatch.setattr(SecretStore, "_atomic_write", staticmethod(failing_write))
        with pytest.raises(OSError):
            store.set_many({"a": "new", "b": "2"})

        assert store.get("a") == "old"
        assert store.list() == {"a"}

    def test_delete_many_ignores_missing(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        store.set_many({"a": "1", "b": "2", "c": "3"})

        assert store.delete_many(["a", "missing", "c"]) == ["a", "c"]
        assert store.delete_many(["missing"]) == []
        assert SecretStore(tmp_path, PASSWORD).list() == {"b"}

    def test_values_are_strings_in_json(self, tmp_path, monkeypatch):
        """The vault payload is a flat JSON object of strings."""
        captured = {}
        original = SecretStore._atomic_write

        def capture(path, content):
            captured[path.name] = content
            original(path, content)

        monkeypatch.setattr(SecretStore, "_atomic_write", staticmethod(capture))
        store = SecretStore(tmp_path, PASSWORD)
        store.set("a", "1")

        plaintext = EncryptionService.open_sealed(captured[CREDENTIALS_FILE], store._key)
        assert json.loads(plaintext) == {"a": "1"}

    def test_concurrent_writers(self, tmp_path):
        store = SecretStore(tmp_path, PASSWORD)
        errors = []

        def writer(n):
            try:
                for i in range(5):
                    store.set(f"w{n}:{i}", str(i))
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(store) == 20
        assert len(SecretStore(tmp_path, PASSWORD)) == 20


# ── ReadWriteLock Tests ─────────────────────────────────────────────


class TestReadWriteLock:

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=2)

        def reader():
            with lock.read():
                inside.wait()  # both readers must be inside at once

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert not inside.broken

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []
        writer_in = threading.Event()

        def writer():
            with lock.write():
                writer_in.set()
                time.sleep(0.05)
                events.append("writer-done")

        def reader():
            writer_in.wait()
            with lock.read():
                events.append("reader")

        w = threading.Thread(target=writer)
        r = threading.Thread(target=reader)
        w.start()
        r.start()
        w.join()
        r.join()
        assert events == ["writer-done", "reader"]
