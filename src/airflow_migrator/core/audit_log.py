# Audit Logging - Migration & Vault Events
#
# Append-only structured audit trail for every vault access and every
# export/import run. Events carry identifiers and counts, never secret
# material (passwords, Fernet keys, decrypted fields).

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of events written to the audit trail."""
    # Vault Events
    VAULT_OPENED = "vault.opened"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_SECRET_SET = "vault.secret.set"
    VAULT_SECRET_DELETED = "vault.secret.deleted"
    VAULT_CLEARED = "vault.cleared"
    VAULT_ERROR = "vault.error"

    # Profile Events
    PROFILE_SAVED = "profile.saved"
    PROFILE_DELETED = "profile.deleted"

    # Migration Events
    EXPORT_STARTED = "export.started"
    EXPORT_COMPLETED = "export.completed"
    EXPORT_FAILED = "export.failed"
    IMPORT_STARTED = "import.started"
    IMPORT_COMPLETED = "import.completed"
    IMPORT_FAILED = "import.failed"
    IMPORT_COLLISION = "import.collision"
    CONNECTION_TESTED = "connection.tested"

    # System Events
    SYSTEM_START = "system.start"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity
    - WARNING: Something unusual that did not stop the operation
    - ALERT: An operation failed or was refused
    - CRITICAL: Possible data loss (e.g. partially applied import)
    """
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for migration and vault events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Daily log file inside the configured directory
    - OS user / host context on every event
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: <config_dir>/audit_logs)
        """
        if log_dir is None:
            from ..config import load_config
            log_dir = load_config().audit_log_dir

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self.log_file = self._setup_file_handler()

        self.logger = structlog.get_logger("airflow_migrator.audit")

    def _setup_file_handler(self) -> Path:
        """Attach a handler writing to today's audit file."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        audit_logger = logging.getLogger("airflow_migrator.audit")
        audit_logger.setLevel(logging.INFO)
        # Audit events belong in the audit file only, not on the console
        audit_logger.propagate = False

        # One audit file at a time: drop handlers left by an earlier instance
        for handler in list(audit_logger.handlers):
            if not isinstance(handler, logging.FileHandler):
                continue
            if handler.baseFilename == os.path.abspath(log_file):
                return log_file
            audit_logger.removeHandler(handler)
            handler.close()

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders JSON
        audit_logger.addHandler(file_handler)
        return log_file

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an audit event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets!)
            user_context: User context (defaults to OS user and hostname)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        if severity in (EventSeverity.ALERT, EventSeverity.CRITICAL):
            self.logger.warning("audit_event", **event_data)
        else:
            self.logger.info("audit_event", **event_data)

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO
    ) -> str:
        """Log a vault event. Pass key names only, never values."""
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Vault: {message}",
            details=details
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_audit_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging audit events.

    Usage:
        log_audit_event(
            EventType.EXPORT_COMPLETED,
            EventSeverity.INFO,
            "Exported 12 connections",
            details={"profile_id": profile.id, "count": 12}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
