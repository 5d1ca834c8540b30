import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from services.db import get_supabase

_logger = logging.getLogger("sensors")

SENSOR_TABLE = "sensor_data"


class SensorType(str, Enum):
    SOIL_MOISTURE = "soil_moisture"
    EC = "ec"
    SOIL_TEMPERATURE = "soil_temperature"
    N = "n"
    P = "p"
    K = "k"
    PH = "ph"


class SensorStatus(str, Enum):
    OPTIMAL = "optimal"
    WARNING = "warning"
    CRITICAL = "critical"


# (optimal band, warning band), both inclusive; anything else is critical
SENSOR_THRESHOLDS = {
    SensorType.SOIL_MOISTURE: ((40, 60), (25, 75)),
    SensorType.EC: ((0.5, 2.0), (0.3, 3.0)),
    SensorType.SOIL_TEMPERATURE: ((18, 25), (10, 30)),
    SensorType.N: ((20, 50), (10, 80)),
    SensorType.P: ((10, 30), (5, 50)),
    SensorType.K: ((100, 300), (50, 400)),
    SensorType.PH: ((6.0, 7.5), (5.5, 8.0)),
}

SENSOR_UNITS = {
    SensorType.SOIL_MOISTURE: "%",
    SensorType.EC: "dS/m",
    SensorType.SOIL_TEMPERATURE: "°C",
    SensorType.N: "ppm",
    SensorType.P: "ppm",
    SensorType.K: "ppm",
    SensorType.PH: "",
}


def derive_sensor_status(sensor_type, value: float) -> str:
    (opt_lo, opt_hi), (warn_lo, warn_hi) = SENSOR_THRESHOLDS[SensorType(sensor_type)]
    if opt_lo <= value <= opt_hi:
        return SensorStatus.OPTIMAL.value
    if warn_lo <= value <= warn_hi:
        return SensorStatus.WARNING.value
    return SensorStatus.CRITICAL.value


def get_sensor_unit(sensor_type) -> str:
    return SENSOR_UNITS[SensorType(sensor_type)]


@dataclass
class SensorReading:
    id: str
    sensor_type: str
    value: float
    unit: str
    status: str
    timestamp: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def explode_record(record: Dict[str, Any], only: Optional[SensorType] = None) -> List[SensorReading]:
    """One wide `sensor_data` row -> one reading per non-null sensor column."""
    readings = []
    for sensor_type in SensorType:
        if only is not None and sensor_type != only:
            continue
        value = record.get(sensor_type.value)
        if value is None:
            continue
        readings.append(SensorReading(
            id=f"{record.get('id')}_{sensor_type.value}",
            sensor_type=sensor_type.value,
            value=value,
            unit=get_sensor_unit(sensor_type),
            status=derive_sensor_status(sensor_type, value),
            timestamp=record.get("timestamp"),
            latitude=record.get("latitude"),
            longitude=record.get("longitude"),
        ))
    return readings


class SensorService:
    """Read side of the `sensor_data` table; rows are written by the field devices."""

    def __init__(self, client=None):
        self._client = client

    def _db(self):
        return self._client or get_supabase()

    def get_sensor_data(
        self,
        sensor_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[SensorReading]:
        query = self._db().table(SENSOR_TABLE).select("*").order("timestamp", desc=True)
        if start is not None:
            query = query.gte("timestamp", start.isoformat())
        if end is not None:
            query = query.lte("timestamp", end.isoformat())
        if limit:
            query = query.limit(limit)

        rows = query.execute().data or []
        only = SensorType(sensor_type) if sensor_type else None

        readings = []
        for row in rows:
            readings.extend(explode_record(row, only=only))
        return readings

    def get_latest_readings(self) -> List[SensorReading]:
        rows = (
            self._db().table(SENSOR_TABLE)
            .select("*")
            .order("timestamp", desc=True)
            .limit(1)
            .execute()
            .data
        ) or []
        if not rows:
            return []
        return explode_record(rows[0])

    def get_latest_location(self) -> Optional[Dict[str, float]]:
        readings = self.get_latest_readings()
        if not readings:
            return None
        first = readings[0]
        if first.latitude is None or first.longitude is None:
            return None
        return {"latitude": first.latitude, "longitude": first.longitude}

    def get_status_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in SensorStatus}
        try:
            readings = self.get_latest_readings()
        except Exception as exc:
            _logger.error("Error getting status counts: %s", exc)
            return counts

        for reading in readings:
            counts[reading.status] += 1
        return counts

    def add_sensor_reading(self, reading: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(reading) - {t.value for t in SensorType} - {"latitude", "longitude", "timestamp"}
        if unknown:
            raise ValueError(f"Unknown sensor columns: {sorted(unknown)}")

        rows = self._db().table(SENSOR_TABLE).insert([reading]).execute().data or []
        return rows[0] if rows else reading
