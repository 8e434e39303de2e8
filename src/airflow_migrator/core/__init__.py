# Core Module - Shared Utilities
#
# Audit logging shared by the vault, profile manager and migration engine.

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_audit_event,
)

__all__ = [
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_audit_event",
]
