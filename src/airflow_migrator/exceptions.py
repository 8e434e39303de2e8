"""
Airflow Migrator Exception Classes

Every exception carries a human-readable message suitable for display.
"""

from typing import Iterable, List, Optional


class MigratorError(Exception):
    """Base exception for all migrator operations"""
    pass


class InvalidKeyError(MigratorError):
    """Raised when a Fernet key is not 32 bytes of URL-safe or standard base64"""

    def __init__(self, message: str = "invalid fernet key: must be 32 bytes base64-encoded"):
        super().__init__(message)


class InvalidTokenError(MigratorError):
    """Raised when a token fails structural, signature or padding checks"""

    def __init__(self, message: str = "invalid fernet token"):
        super().__init__(message)


class InvalidSignatureError(InvalidTokenError):
    """Raised when a token's HMAC does not verify"""

    def __init__(self, message: str = "invalid HMAC signature"):
        super().__init__(message)


class TokenExpiredError(InvalidTokenError):
    """Raised when a token is older than the caller-supplied TTL"""

    def __init__(self, message: str = "fernet token expired"):
        super().__init__(message)


class InvalidPasswordError(MigratorError):
    """Raised when the vault cannot be decrypted with the master password"""

    def __init__(self, message: str = "invalid master password"):
        super().__init__(message)


class KeyNotFoundError(MigratorError, KeyError):
    """Raised when a vault key does not exist"""

    def __init__(self, key: str):
        self.key = key
        MigratorError.__init__(self, f"key not found: {key}")

    def __str__(self) -> str:
        return self.args[0]


class ProfileNotFoundError(MigratorError):
    """Raised when a profile id has no stored metadata"""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"profile not found: {profile_id}")


class ProfileValidationError(MigratorError):
    """Raised when a profile is missing required connection fields"""
    pass


class CollisionError(MigratorError):
    """Raised when the stop strategy finds connections already in the target"""

    def __init__(self, conflicting_ids: Iterable[str]):
        self.conflicting_ids: List[str] = list(conflicting_ids)
        super().__init__(
            "connections already exist: " + ", ".join(self.conflicting_ids)
        )


class RecordStoreError(MigratorError):
    """Raised when the underlying connection store fails"""

    def __init__(self, message: str, conn_id: Optional[str] = None):
        self.conn_id = conn_id
        super().__init__(message)


class InterchangeFormatError(MigratorError):
    """Raised when an export file is not a valid conn_id/encrypted_data CSV"""
    pass
