import logging
from typing import Any, Dict, List, Optional

import requests

from services.config import Config
from services.db import get_supabase

_logger = logging.getLogger("locations")

LOCATIONS_TABLE = "user_locations"


class LocationService:
    def __init__(self, client=None):
        self._client = client

    def _db(self):
        return self._client or get_supabase()

    def get_current(self) -> Optional[Dict[str, Any]]:
        try:
            rows = (
                self._db().table(LOCATIONS_TABLE)
                .select("*")
                .eq("is_current", True)
                .limit(1)
                .execute()
                .data
            )
        except Exception as exc:
            _logger.error("Error getting current location: %s", exc)
            return None
        return rows[0] if rows else None

    def save(self, location: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for required in ("place_name", "latitude", "longitude"):
            if location.get(required) in (None, ""):
                raise ValueError(f"Location is missing '{required}'")

        try:
            if location.get("is_current"):
                self._db().table(LOCATIONS_TABLE).update({"is_current": False}).eq("is_current", True).execute()
            rows = self._db().table(LOCATIONS_TABLE).insert([location]).execute().data
        except Exception as exc:
            _logger.error("Error saving location: %s", exc)
            return None
        return rows[0] if rows else None

    def list(self) -> List[Dict[str, Any]]:
        try:
            return (
                self._db().table(LOCATIONS_TABLE)
                .select("*")
                .order("created_at", desc=True)
                .execute()
                .data
            ) or []
        except Exception as exc:
            _logger.error("Error getting user locations: %s", exc)
            return []

    def set_current(self, location_id: str) -> bool:
        try:
            self._db().table(LOCATIONS_TABLE).update({"is_current": False}).eq("is_current", True).execute()
            self._db().table(LOCATIONS_TABLE).update({"is_current": True}).eq("id", location_id).execute()
        except Exception as exc:
            _logger.error("Error setting current location: %s", exc)
            return False
        return True

    def delete(self, location_id: str) -> bool:
        try:
            self._db().table(LOCATIONS_TABLE).delete().eq("id", location_id).execute()
        except Exception as exc:
            _logger.error("Error deleting location: %s", exc)
            return False
        return True


def reverse_geocode(latitude: float, longitude: float) -> str:
    try:
        response = requests.get(
            f"{Config.openweather_base_url}/geo/1.0/reverse",
            params={"lat": latitude, "lon": longitude, "limit": 1, "appid": Config.openweather_api_key},
            timeout=Config.http_timeout,
        )
        response.raise_for_status()
        places = response.json()
        if places:
            place = places[0]
            return f"{place['name']}, {place.get('state') or place.get('country')}"
    except Exception as exc:
        _logger.warning("Reverse geocoding failed: %s", exc)

    return f"{latitude:.4f}, {longitude:.4f}"


def search_places(query: str) -> List[Dict[str, Any]]:
    if not query or not query.strip():
        return []
    try:
        response = requests.get(
            f"{Config.openweather_base_url}/geo/1.0/direct",
            params={"q": query, "limit": 5, "appid": Config.openweather_api_key},
            timeout=Config.http_timeout,
        )
        response.raise_for_status()
    except Exception as exc:
        _logger.warning("Place search failed: %s", exc)
        return []

    return [
        {
            "name": place.get("name"),
            "latitude": place.get("lat"),
            "longitude": place.get("lon"),
            "country": place.get("country"),
            "state": place.get("state"),
        }
        for place in response.json()
    ]
