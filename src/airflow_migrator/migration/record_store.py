"""
Connection record stores.

``RecordStore`` is the capability the migration engine needs from an
Airflow metadata database. ``SqlRecordStore`` implements it with SQLAlchemy
Core against Airflow's ``connection`` table (PostgreSQL in production, any
SQLAlchemy dialect in tests).

Empty strings and a zero port are stored as NULL, mirroring how Airflow
itself leaves unset connection fields.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    exists,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import RecordStoreError
from .models import Connection, Profile

logger = logging.getLogger(__name__)

metadata = MetaData()

# Subset of Airflow's ``connection`` table used by the migrator.
connection_table = Table(
    "connection",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("conn_id", String(250), nullable=False, unique=True),
    Column("conn_type", String(500), nullable=False),
    Column("description", Text),
    Column("host", String(500)),
    Column("schema", String(500)),
    Column("login", Text),
    Column("password", Text),
    Column("port", Integer),
    Column("is_encrypted", Boolean),
    Column("is_extra_encrypted", Boolean),
    Column("extra", Text),
)


class RecordStore(ABC):
    """Abstract access to one environment's connection rows."""

    @abstractmethod
    def list_connections(self) -> List[Connection]:
        """All connections ordered by ``conn_id``."""

    @abstractmethod
    def get_existing_connection_ids(self, conn_ids: Iterable[str]) -> List[str]:
        """The subset of ``conn_ids`` already present."""

    @abstractmethod
    def insert_connection(self, conn: Connection) -> None:
        """Insert a new row; fails if ``conn.id`` exists."""

    @abstractmethod
    def update_connection(self, conn: Connection) -> None:
        """Replace every field of an existing row; fails if absent."""

    @abstractmethod
    def test_connection(self) -> None:
        """Raise ``RecordStoreError`` if the store is unreachable."""

    def get_connection(self, conn_id: str) -> Optional[Connection]:
        for conn in self.list_connections():
            if conn.id == conn_id:
                return conn
        return None

    def connection_exists(self, conn_id: str) -> bool:
        return bool(self.get_existing_connection_ids([conn_id]))

    def close(self) -> None:
        pass

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _null_if_empty(value: Any) -> Any:
    return value if value else None


class SqlRecordStore(RecordStore):
    """
    Record store over an Airflow metadata database.

    Usage:
        with SqlRecordStore.from_profile(profile) as store:
            for conn in store.list_connections():
                print(conn)
    """

    def __init__(self, engine: Union[Engine, URL, str], owns_engine: Optional[bool] = None):
        """
        Args:
            engine: SQLAlchemy engine, or a URL to build one from
            owns_engine: Dispose the engine on ``close()`` (default: only
                when this store created it)
        """
        if isinstance(engine, Engine):
            self.engine = engine
            self._owns_engine = bool(owns_engine)
        else:
            self.engine = create_engine(engine, pool_pre_ping=True)
            self._owns_engine = True if owns_engine is None else owns_engine

    @classmethod
    def from_profile(cls, profile: Profile, connect_timeout: Optional[int] = None) -> "SqlRecordStore":
        """Build a store for ``profile``'s PostgreSQL database."""
        connect_args: Dict[str, Any] = {}
        if connect_timeout:
            connect_args["connect_timeout"] = connect_timeout
        engine = create_engine(
            profile.url(),
            pool_pre_ping=True,
            pool_size=1,
            max_overflow=0,
            connect_args=connect_args,
        )
        logger.debug(
            "Created engine for %s@%s:%s/%s",
            profile.db_user, profile.db_host, profile.db_port, profile.db_name,
        )
        return cls(engine, owns_engine=True)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    def ensure_schema(self) -> None:
        """Create the ``connection`` table if missing (sandbox/test databases only)."""
        try:
            metadata.create_all(self.engine, tables=[connection_table])
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to create connection table: {e}") from e

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_connection(row: Any) -> Connection:
        m = row._mapping
        password = m["password"] or ""
        extra = m["extra"] or ""
        return Connection(
            id=m["conn_id"],
            conn_type=m["conn_type"] or "",
            description=m["description"] or "",
            host=m["host"] or "",
            schema=m["schema"] or "",
            login=m["login"] or "",
            password=password,
            port=m["port"] or 0,
            extra=extra,
            is_encrypted=bool(m["is_encrypted"]) and bool(password),
            is_extra_encrypted=bool(m["is_extra_encrypted"]) and bool(extra),
        )

    def _select_columns(self):
        t = connection_table
        return select(
            t.c.conn_id, t.c.conn_type, t.c.description, t.c.host, t.c.schema,
            t.c.login, t.c.password, t.c.port, t.c.extra,
            t.c.is_encrypted, t.c.is_extra_encrypted,
        )

    def list_connections(self) -> List[Connection]:
        query = self._select_columns().order_by(connection_table.c.conn_id)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).fetchall()
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to query connections: {e}") from e
        return [self._row_to_connection(row) for row in rows]

    def get_connection(self, conn_id: str) -> Optional[Connection]:
        query = self._select_columns().where(connection_table.c.conn_id == conn_id)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to get connection: {e}", conn_id) from e
        return self._row_to_connection(row) if row is not None else None

    def connection_exists(self, conn_id: str) -> bool:
        query = select(exists().where(connection_table.c.conn_id == conn_id))
        try:
            with self.engine.connect() as conn:
                return bool(conn.execute(query).scalar())
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to check connection: {e}", conn_id) from e

    def get_existing_connection_ids(self, conn_ids: Iterable[str]) -> List[str]:
        ids = list(conn_ids)
        if not ids:
            return []
        query = (
            select(connection_table.c.conn_id)
            .where(connection_table.c.conn_id.in_(ids))
            .order_by(connection_table.c.conn_id)
        )
        try:
            with self.engine.connect() as conn:
                return [row[0] for row in conn.execute(query)]
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to check existing connections: {e}") from e

    def test_connection(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to connect: {e}") from e

    # ── Writes ──────────────────────────────────────────────────────

    @staticmethod
    def _values(conn: Connection) -> Dict[str, Any]:
        return {
            "conn_type": conn.conn_type,
            "description": _null_if_empty(conn.description),
            "host": _null_if_empty(conn.host),
            "schema": _null_if_empty(conn.schema),
            "login": _null_if_empty(conn.login),
            "password": _null_if_empty(conn.password),
            "port": _null_if_empty(conn.port),
            "extra": _null_if_empty(conn.extra),
            "is_encrypted": conn.is_encrypted,
            "is_extra_encrypted": conn.is_extra_encrypted,
        }

    def insert_connection(self, conn: Connection) -> None:
        stmt = insert(connection_table).values(conn_id=conn.id, **self._values(conn))
        try:
            with self.engine.begin() as db:
                db.execute(stmt)
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to insert connection: {e}", conn.id) from e

    def update_connection(self, conn: Connection) -> None:
        stmt = (
            update(connection_table)
            .where(connection_table.c.conn_id == conn.id)
            .values(**self._values(conn))
        )
        try:
            with self.engine.begin() as db:
                result = db.execute(stmt)
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to update connection: {e}", conn.id) from e
        if result.rowcount == 0:
            raise RecordStoreError(f"connection not found: {conn.id}", conn.id)

    def delete_connection(self, conn_id: str) -> None:
        stmt = delete(connection_table).where(connection_table.c.conn_id == conn_id)
        try:
            with self.engine.begin() as db:
                result = db.execute(stmt)
        except SQLAlchemyError as e:
            raise RecordStoreError(f"failed to delete connection: {e}", conn_id) from e
        if result.rowcount == 0:
            raise RecordStoreError(f"connection not found: {conn_id}", conn_id)


def timed_test_connection(store: RecordStore) -> int:
    """Run ``store.test_connection()`` and return elapsed milliseconds."""
    start = time.monotonic()
    store.test_connection()
    return int((time.monotonic() - start) * 1000)
