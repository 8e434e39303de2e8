# Vault - Environment Profiles
#
# Each profile is three vault entries:
#   profile:<id>:meta      JSON summary (non-secret)
#   profile:<id>:password  database password
#   profile:<id>:fernet    the environment's Fernet key

import json
from typing import Any, Dict, List

from ..core import EventType, get_audit_logger
from ..exceptions import KeyNotFoundError, ProfileNotFoundError
from ..migration.models import Profile
from .secret_store import SecretStore

PROFILE_PREFIX = "profile:"
META_SUFFIX = ":meta"


class ProfileManager:
    """Create, load, list and delete profiles stored in a ``SecretStore``."""

    def __init__(self, store: SecretStore):
        self.store = store
        self.audit = get_audit_logger()

    def save(self, profile: Profile) -> Profile:
        """Persist ``profile`` (insert or replace) and return it."""
        profile.touch()
        keys = profile.secret_keys()
        self.store.set_many({
            keys["meta"]: json.dumps(profile.summary()),
            keys["password"]: profile.db_password,
            keys["fernet_key"]: profile.fernet_key,
        })

        self.audit.log_vault_event(
            EventType.PROFILE_SAVED,
            f"Profile saved: {profile.name}",
            details={"profile_id": profile.id},
        )
        return profile

    def get(self, profile_id: str) -> Profile:
        """
        Load a profile with its secrets.

        Raises:
            ProfileNotFoundError: If no metadata is stored for ``profile_id``
        """
        keys = Profile(id=profile_id).secret_keys()
        try:
            meta = json.loads(self.store.get(keys["meta"]))
        except KeyNotFoundError:
            raise ProfileNotFoundError(profile_id) from None

        return Profile.from_summary(
            meta,
            db_password=self._get_optional(keys["password"]),
            fernet_key=self._get_optional(keys["fernet_key"]),
        )

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of every profile, sorted by name."""
        summaries = []
        for key in self.store.list():
            if not (key.startswith(PROFILE_PREFIX) and key.endswith(META_SUFFIX)):
                continue
            try:
                summaries.append(json.loads(self.store.get(key)))
            except (KeyNotFoundError, ValueError):
                continue  # deleted concurrently or unreadable entry
        return sorted(summaries, key=lambda s: (str(s.get("name", "")).lower(), s.get("id", "")))

    def delete(self, profile_id: str) -> None:
        """
        Remove a profile and its secrets.

        Raises:
            ProfileNotFoundError: If no metadata is stored for ``profile_id``
        """
        keys = Profile(id=profile_id).secret_keys()
        if not self.store.has(keys["meta"]):
            raise ProfileNotFoundError(profile_id)

        # Missing secret entries are tolerated
        self.store.delete_many([keys["password"], keys["fernet_key"], keys["meta"]])

        self.audit.log_vault_event(
            EventType.PROFILE_DELETED,
            "Profile deleted",
            details={"profile_id": profile_id},
        )

    def _get_optional(self, key: str) -> str:
        try:
            return self.store.get(key)
        except KeyNotFoundError:
            return ""
