"""
Connection migration between Airflow environments.

Usage:
    migrator = Migrator()
    result = migrator.export(ExportRequest(source_profile=dev, output_path="out.csv"))
"""

from .engine import Migrator
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
from .record_store import RecordStore, SqlRecordStore

__all__ = [
    "Migrator",
    "read_encrypted_csv",
    "write_encrypted_csv",
    "CollisionStrategy",
    "Connection",
    "ExportRecord",
    "ExportRequest",
    "ExportResult",
    "ImportRequest",
    "ImportResult",
    "ListConnectionsResult",
    "Profile",
    "TestConnectionResult",
    "RecordStore",
    "SqlRecordStore",
]
