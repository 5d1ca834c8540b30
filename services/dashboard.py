import datetime
import json
import logging
import os
from typing import Any, Dict, Optional

from services.config import Config
from services.i18n import normalize_language, sensor_label, translate
from services.sensors import SensorService
from services.weather import WeatherService, WeatherSnapshot, generate_weather_advice, weather_icon

_logger = logging.getLogger("dashboard")

SNAPSHOT_FILE = "dashboard.json"


def _empty_raw():
    return {
        "readings": [],
        "status_counts": {"optimal": 0, "warning": 0, "critical": 0},
        "location": None,
        "weather": None,
        "saved_at": None,
    }


def overall_status(status_counts: Dict[str, int]) -> str:
    if status_counts.get("critical"):
        return "urgent_action"
    if status_counts.get("warning"):
        return "needs_attention"
    return "good_conditions"


def localize(raw: Dict[str, Any], language: str, offline: bool) -> Dict[str, Any]:
    """Attach copy for `language` to language-neutral dashboard data. Numbers pass through untouched."""
    language = normalize_language(language)
    readings = [
        {**r, "label": sensor_label(r["sensor_type"], language), "status_label": translate(r["status"], language)}
        for r in raw.get("readings") or []
    ]

    weather = raw.get("weather")
    weather_view = None
    if weather:
        weather_view = {
            **weather,
            "icon": weather_icon(weather.get("condition")),
            "advice": generate_weather_advice(WeatherSnapshot(**weather), language),
        }

    status_key = overall_status(raw.get("status_counts") or {})
    banners = []
    if offline:
        banners.append(translate("offline_banner", language))
    if not readings:
        banners.append(translate("no_sensor_data", language))
    if not weather:
        banners.append(translate("no_weather_data", language))

    return {
        "language": language,
        "offline": offline,
        "saved_at": raw.get("saved_at"),
        "title": translate("farm_status", language),
        "overall_status": status_key,
        "overall_status_label": translate(status_key, language),
        "status_counts": raw.get("status_counts") or {},
        "readings": readings,
        "location": raw.get("location"),
        "weather": weather_view,
        "banners": banners,
    }


class DashboardService:
    """
    Latest readings plus current weather for the farm. Every successful build
    is saved as a snapshot; offline mode and failed fetches serve that
    snapshot instead.
    """

    def __init__(self, sensors=None, weather=None, snapshots_dir: Optional[str] = None):
        self.sensors = sensors or SensorService()
        self.weather = weather or WeatherService()
        self.snapshots_dir = snapshots_dir or Config.snapshots_dir

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.snapshots_dir, SNAPSHOT_FILE)

    def build(self, language: str = "en", offline: bool = False) -> Dict[str, Any]:
        if offline:
            return localize(self.load_snapshot() or _empty_raw(), language, offline=True)

        try:
            raw = self.collect()
        except Exception as exc:
            _logger.error("Dashboard fetch failed, serving snapshot: %s", exc)
            return localize(self.load_snapshot() or _empty_raw(), language, offline=True)

        self.save_snapshot(raw)
        return localize(raw, language, offline=False)

    def collect(self) -> Dict[str, Any]:
        readings = self.sensors.get_latest_readings()

        counts = {"optimal": 0, "warning": 0, "critical": 0}
        for reading in readings:
            counts[reading.status] += 1

        location = None
        if readings and readings[0].latitude is not None and readings[0].longitude is not None:
            location = {"latitude": readings[0].latitude, "longitude": readings[0].longitude}

        weather = None
        if location:
            snapshot = self.weather.get_current(location["latitude"], location["longitude"])
            weather = snapshot.to_dict() if snapshot else None

        return {
            "readings": [r.to_dict() for r in readings],
            "status_counts": counts,
            "location": location,
            "weather": weather,
            "saved_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    def save_snapshot(self, raw: Dict[str, Any]) -> None:
        try:
            os.makedirs(self.snapshots_dir, exist_ok=True)
            tmp_path = f"{self.snapshot_path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(raw, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.snapshot_path)
        except OSError as exc:
            _logger.warning("Could not write dashboard snapshot: %s", exc)

    def load_snapshot(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.snapshot_path):
            return None
        try:
            with open(self.snapshot_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            _logger.warning("Could not read dashboard snapshot: %s", exc)
            return None


def build_dashboard(language: str = "en", offline: bool = False) -> Dict[str, Any]:
    return DashboardService().build(language, offline=offline)
