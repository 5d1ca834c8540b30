import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.db import get_supabase

_logger = logging.getLogger("manual_entries")

MANUAL_ENTRY_TABLE = "manual_entry"
_EDITABLE = {"entry_type", "title", "description", "data", "latitude", "longitude"}


class ManualEntryService:
    """Farmer-recorded observations kept next to the sensor rows."""

    def __init__(self, client=None):
        self._client = client

    def _db(self):
        return self._client or get_supabase()

    def list(
        self,
        entry_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = self._db().table(MANUAL_ENTRY_TABLE).select("*").order("timestamp", desc=True)
        if entry_type:
            query = query.eq("entry_type", entry_type)
        if start is not None and end is not None:
            query = query.gte("timestamp", start.isoformat()).lte("timestamp", end.isoformat())
        if limit:
            query = query.limit(limit)
        return query.execute().data or []

    def add(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        if not entry.get("entry_type") or not entry.get("title"):
            raise ValueError("Manual entry needs entry_type and title")
        unknown = set(entry) - _EDITABLE
        if unknown:
            raise ValueError(f"Unknown manual entry fields: {sorted(unknown)}")

        row = {"data": {}, **entry}
        rows = self._db().table(MANUAL_ENTRY_TABLE).insert([row]).execute().data or []
        _logger.info("Manual entry added type=%s", entry["entry_type"])
        return rows[0] if rows else row

    def update(self, entry_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        unknown = set(updates) - _EDITABLE
        if unknown:
            raise ValueError(f"Unknown manual entry fields: {sorted(unknown)}")

        rows = (
            self._db().table(MANUAL_ENTRY_TABLE)
            .update(updates)
            .eq("id", entry_id)
            .execute()
            .data
        ) or []
        return rows[0] if rows else None

    def delete(self, entry_id: str) -> None:
        self._db().table(MANUAL_ENTRY_TABLE).delete().eq("id", entry_id).execute()
