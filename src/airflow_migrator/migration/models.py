"""
Migration Data Models

Profiles describe how to reach an Airflow metadata database; connections are
rows of its ``connection`` table; export records are connections in transit.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import URL

from ..exceptions import ProfileValidationError

DEFAULT_DB_PORT = 5432
DEFAULT_DB_SSL_MODE = "disable"
SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat_z(moment: datetime) -> str:
    """RFC 3339 with second precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return _utcnow()


# ── Collision Strategy ───────────────────────────────────────────────


class CollisionStrategy(str, Enum):
    """How import treats connection ids that already exist in the target."""
    STOP = "stop"  # abort before writing anything
    SKIP = "skip"  # leave existing rows alone, import the rest
    OVERWRITE = "overwrite"  # update existing rows in place


# ── Profile ──────────────────────────────────────────────────────────


@dataclass
class Profile:
    """
    Saved coordinates of one Airflow environment.

    ``db_password`` and ``fernet_key`` are secrets: they are stored in their
    own vault entries and never appear in ``summary()``.
    """
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    db_host: str = ""
    db_port: int = DEFAULT_DB_PORT
    db_name: str = ""
    db_user: str = ""
    db_password: str = ""
    db_ssl_mode: str = DEFAULT_DB_SSL_MODE
    fernet_key: str = ""
    connection_prefix: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def validate(self) -> None:
        """
        Check that the profile can be used for a migration.

        Raises:
            ProfileValidationError: Describing the first missing field
        """
        if not self.id:
            raise ProfileValidationError("profile ID is required")
        if not self.name:
            raise ProfileValidationError("profile name is required")
        if not self.db_host:
            raise ProfileValidationError("database host is required")
        if not isinstance(self.db_port, int) or not 0 < self.db_port <= 65535:
            raise ProfileValidationError(f"invalid database port: {self.db_port}")
        if not self.db_name:
            raise ProfileValidationError("database name is required")
        if not self.db_user:
            raise ProfileValidationError("database user is required")
        if not self.fernet_key:
            raise ProfileValidationError("fernet key is required")

    def url(self) -> URL:
        """SQLAlchemy URL for the PostgreSQL metadata database."""
        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user or None,
            password=self.db_password or None,
            host=self.db_host or None,
            port=self.db_port or None,
            database=self.db_name or None,
            query={"sslmode": self.db_ssl_mode or DEFAULT_DB_SSL_MODE},
        )

    def dsn(self) -> str:
        """URL string form of ``url()`` (includes the password, do not log)."""
        return self.url().render_as_string(hide_password=False)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def secret_keys(self) -> Dict[str, str]:
        """Vault keys holding this profile's entries."""
        return {
            "meta": f"profile:{self.id}:meta",
            "password": f"profile:{self.id}:password",
            "fernet_key": f"profile:{self.id}:fernet",
        }

    def summary(self) -> Dict[str, Any]:
        """Non-secret fields, safe for display, logging and vault metadata."""
        return {
            "id": self.id,
            "name": self.name,
            "db_host": self.db_host,
            "db_port": self.db_port,
            "db_name": self.db_name,
            "db_user": self.db_user,
            "db_ssl_mode": self.db_ssl_mode,
            "connection_prefix": self.connection_prefix,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_summary(
        cls,
        data: Dict[str, Any],
        db_password: str = "",
        fernet_key: str = "",
    ) -> "Profile":
        """Rebuild a profile from ``summary()`` output plus its secrets."""
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            db_host=str(data.get("db_host", "")),
            db_port=int(data.get("db_port") or DEFAULT_DB_PORT),
            db_name=str(data.get("db_name", "")),
            db_user=str(data.get("db_user", "")),
            db_ssl_mode=str(data.get("db_ssl_mode") or DEFAULT_DB_SSL_MODE),
            connection_prefix=str(data.get("connection_prefix", "")),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            db_password=db_password,
            fernet_key=fernet_key,
        )

    def __repr__(self) -> str:
        return (
            f"Profile(id={self.id!r}, name={self.name!r}, "
            f"db={self.db_user}@{self.db_host}:{self.db_port}/{self.db_name})"
        )


# ── Connections ──────────────────────────────────────────────────────


@dataclass
class Connection:
    """One row of Airflow's ``connection`` table."""
    id: str
    conn_type: str = ""
    description: str = ""
    host: str = ""
    schema: str = ""
    login: str = ""
    password: str = ""
    port: int = 0
    extra: str = ""
    is_encrypted: bool = False
    is_extra_encrypted: bool = False

    def validate(self) -> None:
        if not self.id:
            raise ValueError("connection ID is required")
        if not self.conn_type:
            raise ValueError("connection type is required")

    def to_export_record(self, exported_at: Optional[datetime] = None) -> "ExportRecord":
        return ExportRecord(
            conn_id=self.id,
            conn_type=self.conn_type,
            description=self.description,
            host=self.host,
            schema=self.schema,
            login=self.login,
            password=self.password,
            port=self.port,
            extra=self.extra,
            is_encrypted=self.is_encrypted,
            is_extra_encrypted=self.is_extra_encrypted,
            exported_at=_isoformat_z(exported_at or _utcnow()),
        )

    def __str__(self) -> str:
        # Never include password or extra
        return (
            f"Connection{{ID: {self.id}, Type: {self.conn_type}, "
            f"Host: {self.host}, Port: {self.port}}}"
        )

    __repr__ = __str__


@dataclass
class ExportRecord:
    """
    A connection as carried inside an export file.

    ``password`` and ``extra`` hold plaintext in memory; the whole record is
    Fernet-encrypted with the file key before it touches disk.
    ``is_encrypted`` / ``is_extra_encrypted`` record whether the source
    field was encrypted with the source environment's key.
    """
    conn_id: str
    conn_type: str = ""
    description: str = ""
    host: str = ""
    schema: str = ""
    login: str = ""
    password: str = ""
    port: int = 0
    extra: str = ""
    is_encrypted: bool = False
    is_extra_encrypted: bool = False
    exported_at: str = ""

    # Field order of the encrypted JSON blob (conn_id travels in its own column)
    BLOB_FIELDS = (
        "conn_type", "description", "host", "schema", "login", "password",
        "port", "extra", "is_encrypted", "is_extra_encrypted", "exported_at",
    )

    def to_blob(self) -> Dict[str, Any]:
        data = asdict(self)
        return {name: data[name] for name in self.BLOB_FIELDS}

    @classmethod
    def from_blob(cls, conn_id: str, data: Dict[str, Any]) -> "ExportRecord":
        return cls(
            conn_id=conn_id,
            conn_type=str(data.get("conn_type") or ""),
            description=str(data.get("description") or ""),
            host=str(data.get("host") or ""),
            schema=str(data.get("schema") or ""),
            login=str(data.get("login") or ""),
            password=str(data.get("password") or ""),
            port=int(data.get("port") or 0),
            extra=str(data.get("extra") or ""),
            is_encrypted=bool(data.get("is_encrypted", False)),
            is_extra_encrypted=bool(data.get("is_extra_encrypted", False)),
            exported_at=str(data.get("exported_at") or ""),
        )

    def to_connection(self) -> Connection:
        """Plaintext connection; re-encrypted with the target key on import."""
        return Connection(
            id=self.conn_id,
            conn_type=self.conn_type,
            description=self.description,
            host=self.host,
            schema=self.schema,
            login=self.login,
            password=self.password,
            port=self.port,
            extra=self.extra,
            is_encrypted=False,
            is_extra_encrypted=False,
        )

    def __repr__(self) -> str:
        return f"ExportRecord(conn_id={self.conn_id!r}, conn_type={self.conn_type!r})"


# ── Requests & Results ───────────────────────────────────────────────


@dataclass
class ExportRequest:
    source_profile: Profile
    output_path: str
    connection_ids: List[str] = field(default_factory=list)
    # Empty means: generate a new key and report it in the result
    file_encryption_key: str = ""


@dataclass
class ExportResult:
    success: bool = False
    output_path: str = ""
    connection_count: int = 0
    exported_ids: List[str] = field(default_factory=list)
    file_encryption_key: str = ""
    error: str = ""


@dataclass
class ImportRequest:
    target_profile: Profile
    input_path: str
    file_decryption_key: str
    collision_strategy: CollisionStrategy = CollisionStrategy.STOP
    connection_prefix: str = ""
    connection_ids: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    success: bool = False
    imported_count: int = 0
    skipped_count: int = 0
    overwritten_count: int = 0
    imported_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    overwritten_ids: List[str] = field(default_factory=list)
    conflicting_ids: List[str] = field(default_factory=list)
    error: str = ""

    @property
    def written_count(self) -> int:
        return self.imported_count + self.overwritten_count


@dataclass
class ListConnectionsResult:
    success: bool = False
    connections: List[Connection] = field(default_factory=list)
    count: int = 0
    error: str = ""


@dataclass
class TestConnectionResult:
    __test__ = False  # not a pytest test class

    success: bool = False
    message: str = ""
    response_time_ms: int = 0
    error: str = ""
