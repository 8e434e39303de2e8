"""
Shared pytest fixtures for the Airflow Migrator test suite.

Autouse fixtures below isolate tests from the live user configuration:
  - Audit logger -> temp directory (prevents test events in ~/.config audit logs)
  - Config dir   -> temp directory (prevents test vaults next to real ones)
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import airflow_migrator.core.audit_log as audit_mod

    # Reset the singleton so the next get_audit_logger() builds a fresh
    # instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_config_dir(tmp_path, monkeypatch):
    """Point AIRFLOW_MIGRATOR_CONFIG at a temp directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setenv("AIRFLOW_MIGRATOR_CONFIG", str(config_dir))
    monkeypatch.delenv("AIRFLOW_MIGRATOR_PASSWORD", raising=False)
    return config_dir


def _memory_engine():
    # One shared connection so every session sees the same in-memory database
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def sqlite_engine():
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def make_store():
    """Factory for empty SqlRecordStores on private in-memory databases."""
    from airflow_migrator.migration.record_store import SqlRecordStore

    engines = []

    def _make():
        engine = _memory_engine()
        engines.append(engine)
        store = SqlRecordStore(engine)
        store.ensure_schema()
        return store

    yield _make

    for engine in engines:
        engine.dispose()
