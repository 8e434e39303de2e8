# Migration Engine - Export / Import of Airflow Connections
#
# Export: source DB --(source Fernet key)--> plaintext records
#         --(file key)--> encrypted CSV
# Import: encrypted CSV --(file key)--> plaintext records
#         --(target Fernet key)--> target DB
#
# The engine keeps no mutable state between calls; every call opens its own
# record store and runs to completion on the calling thread. Operational
# failures are reported through the result's ``error`` field, never raised.

import logging
from typing import Callable, Iterable, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..crypto import FernetCodec, generate_key, validate_key
from ..exceptions import (
    CollisionError,
    InterchangeFormatError,
    InvalidKeyError,
    InvalidTokenError,
    MigratorError,
    ProfileValidationError,
    RecordStoreError,
)
from .interchange import read_encrypted_csv, write_encrypted_csv
from .models import (
    CollisionStrategy,
    Connection,
    ExportRecord,
    ExportRequest,
    ExportResult,
    ImportRequest,
    ImportResult,
    ListConnectionsResult,
    Profile,
    TestConnectionResult,
)
from .record_store import RecordStore, SqlRecordStore, timed_test_connection

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Profile], RecordStore]


def _filter_ids(items: List, wanted: Iterable[str], key: Callable) -> List:
    """Keep ``items`` whose key is in ``wanted`` (all items if ``wanted`` is empty)."""
    wanted_set = set(wanted or ())
    if not wanted_set:
        return items
    return [item for item in items if key(item) in wanted_set]


def _decrypt_field(codec: FernetCodec, value: str):
    """Return (plaintext, was_encrypted); undecryptable values pass through."""
    if not value:
        return value, False
    try:
        return codec.decrypt_string(value), True
    except InvalidTokenError:
        return value, False


class Migrator:
    """
    Moves Airflow connections between environments through an encrypted file.

    Both the command line and any other front end drive this one class.

    Usage:
        migrator = Migrator()
        result = migrator.export(ExportRequest(source_profile=dev, output_path="conns.csv"))
        # hand result.file_encryption_key to whoever runs the import
        migrator.import_connections(ImportRequest(
            target_profile=prod,
            input_path="conns.csv",
            file_decryption_key=result.file_encryption_key,
            collision_strategy=CollisionStrategy.SKIP,
        ))
    """

    def __init__(
        self,
        store_factory: Optional[StoreFactory] = None,
        connect_timeout: Optional[int] = None,
    ):
        """
        Args:
            store_factory: Builds the record store for a profile
                (default: PostgreSQL via ``SqlRecordStore.from_profile``)
            connect_timeout: Database connect timeout in seconds
        """
        self.connect_timeout = connect_timeout
        self._store_factory = store_factory or self._default_store_factory
        self.audit = get_audit_logger()

    def _default_store_factory(self, profile: Profile) -> RecordStore:
        return SqlRecordStore.from_profile(profile, connect_timeout=self.connect_timeout)

    def _open_store(self, profile: Profile) -> RecordStore:
        try:
            return self._store_factory(profile)
        except RecordStoreError:
            raise
        except Exception as e:
            raise RecordStoreError(f"failed to connect to database: {e}") from e

    # ── Export ──────────────────────────────────────────────────────

    def export(self, request: ExportRequest) -> ExportResult:
        """
        Export connections from the source profile's database to an encrypted CSV.

        Password and extra fields are decrypted with the source Fernet key
        (values that do not decrypt are assumed to be plaintext), then every
        record is encrypted as a whole with the file key.
        """
        result = ExportResult(output_path=str(request.output_path))
        profile = request.source_profile

        try:
            profile.validate()
        except ProfileValidationError as e:
            return self._export_failed(result, profile, str(e))

        try:
            source_codec = FernetCodec(profile.fernet_key)
        except InvalidKeyError as e:
            return self._export_failed(result, profile, f"invalid source fernet key: {e}")

        file_key = request.file_encryption_key or generate_key()
        try:
            file_codec = FernetCodec(file_key)
        except InvalidKeyError as e:
            return self._export_failed(result, profile, f"invalid file encryption key: {e}")
        result.file_encryption_key = file_key

        self.audit.log_event(
            EventType.EXPORT_STARTED,
            EventSeverity.INFO,
            f"Export started from profile {profile.name}",
            details={
                "profile_id": profile.id,
                "output_path": result.output_path,
                "requested_ids": list(request.connection_ids or ()),
                "generated_key": not request.file_encryption_key,
            },
        )

        try:
            with self._open_store(profile) as store:
                connections = store.list_connections()
        except RecordStoreError as e:
            return self._export_failed(result, profile, str(e))

        connections = _filter_ids(connections, request.connection_ids, lambda c: c.id)

        records: List[ExportRecord] = []
        undecrypted = []
        for conn in connections:
            conn.password, conn.is_encrypted = _decrypt_field(source_codec, conn.password)
            conn.extra, conn.is_extra_encrypted = _decrypt_field(source_codec, conn.extra)
            if (conn.password and not conn.is_encrypted) or (conn.extra and not conn.is_extra_encrypted):
                undecrypted.append(conn.id)
            records.append(conn.to_export_record())

        if undecrypted:
            # Either plaintext in the source DB or a wrong source key.
            logger.warning(
                "%d connection(s) had fields that did not decrypt with the source key "
                "and were exported as-is: %s",
                len(undecrypted), ", ".join(undecrypted),
            )

        try:
            count = write_encrypted_csv(request.output_path, records, file_codec)
        except (OSError, MigratorError) as e:
            return self._export_failed(result, profile, f"failed to write CSV: {e}")

        result.exported_ids = [r.conn_id for r in records]
        result.connection_count = count
        result.success = True

        self.audit.log_event(
            EventType.EXPORT_COMPLETED,
            EventSeverity.INFO,
            f"Exported {count} connection(s) from profile {profile.name}",
            details={
                "profile_id": profile.id,
                "output_path": result.output_path,
                "count": count,
                "conn_ids": result.exported_ids,
            },
        )
        return result

    def _export_failed(self, result: ExportResult, profile: Profile, error: str) -> ExportResult:
        result.success = False
        result.error = error
        self.audit.log_event(
            EventType.EXPORT_FAILED,
            EventSeverity.ALERT,
            f"Export failed: {error}",
            details={"profile_id": getattr(profile, "id", None), "output_path": result.output_path},
        )
        return result

    # ── Import ──────────────────────────────────────────────────────

    def import_connections(self, request: ImportRequest) -> ImportResult:
        """
        Import connections from an encrypted CSV into the target profile's database.

        The whole file is decrypted and the collision policy evaluated before
        any row is written. Only the final write loop can fail part-way; in
        that case the result counts what was already written.
        """
        result = ImportResult()
        profile = request.target_profile

        try:
            strategy = CollisionStrategy(request.collision_strategy)
        except ValueError:
            return self._import_failed(
                result, profile, f"invalid collision strategy: {request.collision_strategy!r}"
            )

        try:
            profile.validate()
        except ProfileValidationError as e:
            return self._import_failed(result, profile, str(e))

        try:
            file_codec = FernetCodec(request.file_decryption_key)
        except InvalidKeyError as e:
            return self._import_failed(result, profile, f"invalid file decryption key: {e}")

        try:
            target_codec = FernetCodec(profile.fernet_key)
        except InvalidKeyError as e:
            return self._import_failed(result, profile, f"invalid target fernet key: {e}")

        try:
            records = read_encrypted_csv(request.input_path, file_codec)
        except (OSError, InvalidTokenError, InterchangeFormatError) as e:
            return self._import_failed(result, profile, f"failed to read CSV: {e}")

        records = _filter_ids(records, request.connection_ids, lambda r: r.conn_id)
        if not records:
            result.success = True
            return result

        prefix = request.connection_prefix or ""
        connections: List[Connection] = []
        seen = set()
        for record in records:
            conn = record.to_connection()
            conn.id = prefix + conn.id
            try:
                conn.validate()
            except ValueError as e:
                return self._import_failed(
                    result, profile, f"invalid connection {record.conn_id!r}: {e}"
                )
            if conn.id in seen:
                return self._import_failed(
                    result, profile, f"duplicate connection id in file: {conn.id}"
                )
            seen.add(conn.id)
            connections.append(conn)

        self.audit.log_event(
            EventType.IMPORT_STARTED,
            EventSeverity.INFO,
            f"Import started into profile {profile.name}",
            details={
                "profile_id": profile.id,
                "input_path": str(request.input_path),
                "strategy": strategy.value,
                "prefix": prefix,
                "count": len(connections),
            },
        )

        try:
            store = self._open_store(profile)
        except RecordStoreError as e:
            return self._import_failed(result, profile, str(e))

        with store:
            try:
                existing = set(store.get_existing_connection_ids([c.id for c in connections]))
            except RecordStoreError as e:
                return self._import_failed(result, profile, str(e))

            if strategy is CollisionStrategy.STOP and existing:
                collision = CollisionError(sorted(existing))
                result.conflicting_ids = collision.conflicting_ids
                self.audit.log_event(
                    EventType.IMPORT_COLLISION,
                    EventSeverity.ALERT,
                    "Import stopped: connections already exist",
                    details={"profile_id": profile.id, "conn_ids": collision.conflicting_ids},
                )
                return self._import_failed(result, profile, str(collision))

            for conn in connections:
                exists = conn.id in existing
                if exists and strategy is CollisionStrategy.SKIP:
                    result.skipped_ids.append(conn.id)
                    result.skipped_count += 1
                    continue

                # Always stored encrypted under the target environment's key
                if conn.password:
                    conn.password = target_codec.encrypt_string(conn.password)
                    conn.is_encrypted = True
                if conn.extra:
                    conn.extra = target_codec.encrypt_string(conn.extra)
                    conn.is_extra_encrypted = True

                try:
                    if exists:
                        store.update_connection(conn)
                        result.overwritten_ids.append(conn.id)
                        result.overwritten_count += 1
                    else:
                        store.insert_connection(conn)
                        result.imported_ids.append(conn.id)
                        result.imported_count += 1
                except RecordStoreError as e:
                    action = "update" if exists else "insert"
                    return self._import_failed(
                        result, profile, f"failed to {action} {conn.id}: {e}"
                    )

        result.success = True
        self.audit.log_event(
            EventType.IMPORT_COMPLETED,
            EventSeverity.INFO,
            f"Imported {result.imported_count} connection(s) into profile {profile.name}",
            details={
                "profile_id": profile.id,
                "imported": result.imported_ids,
                "skipped": result.skipped_ids,
                "overwritten": result.overwritten_ids,
            },
        )
        return result

    def _import_failed(self, result: ImportResult, profile: Profile, error: str) -> ImportResult:
        result.success = False
        result.error = error
        # Rows already written are not rolled back
        severity = EventSeverity.CRITICAL if result.written_count else EventSeverity.ALERT
        self.audit.log_event(
            EventType.IMPORT_FAILED,
            severity,
            f"Import failed: {error}",
            details={
                "profile_id": getattr(profile, "id", None),
                "imported": result.imported_ids,
                "overwritten": result.overwritten_ids,
            },
        )
        return result

    # ── Inspection ──────────────────────────────────────────────────

    def list_connections(
        self,
        profile: Profile,
        conn_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> ListConnectionsResult:
        """
        List connections in a profile's database (secret fields untouched).

        Args:
            conn_type: Only connections of this type
            search: Case-insensitive match on id or description
        """
        result = ListConnectionsResult()
        try:
            with self._open_store(profile) as store:
                connections = store.list_connections()
        except RecordStoreError as e:
            result.error = str(e)
            return result

        if conn_type:
            connections = [c for c in connections if c.conn_type == conn_type]
        if search:
            needle = search.lower()
            connections = [
                c for c in connections
                if needle in c.id.lower() or needle in c.description.lower()
            ]

        result.connections = connections
        result.count = len(connections)
        result.success = True
        return result

    def test_connection(self, profile: Profile) -> TestConnectionResult:
        """Check that the profile's database is reachable."""
        result = TestConnectionResult()
        try:
            with self._open_store(profile) as store:
                result.response_time_ms = timed_test_connection(store)
        except RecordStoreError as e:
            result.error = str(e)
            result.message = "Connection failed"
        else:
            result.success = True
            result.message = f"Successfully connected to {profile.db_name}"

        self.audit.log_event(
            EventType.CONNECTION_TESTED,
            EventSeverity.INFO if result.success else EventSeverity.WARNING,
            result.message,
            details={"profile_id": profile.id, "response_time_ms": result.response_time_ms},
        )
        return result

    # ── Keys ────────────────────────────────────────────────────────

    @staticmethod
    def validate_fernet_key(key: str) -> bool:
        return validate_key(key)

    @staticmethod
    def generate_fernet_key() -> str:
        return generate_key()
