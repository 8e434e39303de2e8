# Vault Module - Local Credential Storage
#
# Master password -> Argon2id key -> AES-256-GCM encrypted JSON mapping.
# Holds database passwords and per-environment Fernet keys.

from .encryption import EncryptionService
from .profiles import ProfileManager
from .secret_store import SecretStore

__all__ = ["SecretStore", "EncryptionService", "ProfileManager"]
