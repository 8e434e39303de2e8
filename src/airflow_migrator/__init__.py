# Airflow Connection Migrator - Main Package
#
# Moves Airflow connections (with their encrypted passwords and extras)
# between environments through a Fernet-encrypted CSV file, keeping every
# environment's credentials in a local password-protected vault.

__version__ = "1.0.6"
__author__ = "Airflow Migrator Team"
__description__ = "Encrypted migration of Airflow connections between environments"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)
from .crypto import FernetCodec, generate_key, validate_key
from .migration import (
    CollisionStrategy,
    ExportRequest,
    ImportRequest,
    Migrator,
    Profile,
)
from .vault import ProfileManager, SecretStore

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "FernetCodec",
    "generate_key",
    "validate_key",
    "CollisionStrategy",
    "ExportRequest",
    "ImportRequest",
    "Migrator",
    "Profile",
    "ProfileManager",
    "SecretStore",
]
