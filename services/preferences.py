import datetime
import logging
from typing import Any, Dict, Optional

from services.db import get_supabase
from services.i18n import SUPPORTED_LANGUAGES

_logger = logging.getLogger("preferences")

PREFERENCES_TABLE = "user_preferences"

DEFAULT_PREFERENCES = {
    "language": "hi",
    "theme": "light",
    "date_format": "DD/MM/YY",
    "timezone": "Asia/Kolkata",
    "auto_refresh": True,
    "refresh_interval": 30,
    "temperature_unit": "celsius",
    "notifications_enabled": True,
}

_CHOICES = {
    "language": SUPPORTED_LANGUAGES,
    "theme": ("light", "dark"),
    "temperature_unit": ("celsius", "fahrenheit"),
}


def validate_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(updates) - set(DEFAULT_PREFERENCES)
    if unknown:
        raise ValueError(f"Unknown preference fields: {sorted(unknown)}")

    for key, allowed in _CHOICES.items():
        if key in updates and updates[key] not in allowed:
            raise ValueError(f"{key} must be one of {list(allowed)}")
    for key in ("auto_refresh", "notifications_enabled"):
        if key in updates and not isinstance(updates[key], bool):
            raise ValueError(f"{key} must be true or false")
    if "refresh_interval" in updates:
        interval = updates["refresh_interval"]
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ValueError("refresh_interval must be a positive number of seconds")
    return dict(updates)


class PreferenceService:
    """
    Per-user display settings. The first load for a user writes the default
    row, so callers always get a full set of preferences back.
    """

    def __init__(self, client=None):
        self._client = client

    def _db(self):
        return self._client or get_supabase()

    def _find(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = (
            self._db().table(PREFERENCES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
            .data
        )
        return rows[0] if rows else None

    def load(self, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise ValueError("user_id is required")

        found = self._find(user_id)
        if found is not None:
            return found

        row = {"user_id": user_id, **DEFAULT_PREFERENCES}
        rows = self._db().table(PREFERENCES_TABLE).insert([row]).execute().data or []
        _logger.info("Default preferences created user_id=%s", user_id)
        return rows[0] if rows else row

    def update(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        changes = validate_updates(updates)
        current = self.load(user_id)
        if not changes:
            return current

        changes["updated_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
        rows = (
            self._db().table(PREFERENCES_TABLE)
            .update(changes)
            .eq("user_id", user_id)
            .execute()
            .data
        ) or []
        return rows[0] if rows else {**current, **changes}
