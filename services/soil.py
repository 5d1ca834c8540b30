import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import requests

from services.config import Config
from services.ttl_cache import TTLCache, cache_key

_logger = logging.getLogger("soil")

# SoilGrids property -> (field name, divisor to conventional units)
SOIL_PROPERTIES = {
    "phh2o": ("soil_ph", 10),
    "soc": ("organic_carbon", 10),      # g/kg
    "nitrogen": ("nitrogen", 100),      # g/kg
    "cec": ("cec", 10),                 # cmol(c)/kg
    "clay": ("clay_content", 10),       # %
    "sand": ("sand_content", 10),       # %
    "silt": ("silt_content", 10),       # %
    "bdod": ("bdod", 100),              # kg/dm3
}


@dataclass
class SoilProfile:
    soil_ph: Optional[float] = None
    organic_carbon: Optional[float] = None
    nitrogen: Optional[float] = None
    cec: Optional[float] = None
    clay_content: Optional[float] = None
    sand_content: Optional[float] = None
    silt_content: Optional[float] = None
    bdod: Optional[float] = None
    depth: str = "0-5cm"
    source: str = "SoilGrids"
    confidence: float = 0.8

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _extract_mean(payload, prop, depth):
    layers = ((payload.get("properties") or {}).get("layers")) or []
    for layer in layers:
        if layer.get("name") != prop:
            continue
        for d in layer.get("depths", []):
            if d.get("label") == depth or (d.get("range") or {}).get("label") == depth:
                return (d.get("values") or {}).get("mean")
    return None


def parse_soil_payload(payload: Dict[str, Any], depth: str = "0-5cm") -> SoilProfile:
    values = {}
    for prop, (field_name, divisor) in SOIL_PROPERTIES.items():
        raw = _extract_mean(payload, prop, depth)
        values[field_name] = raw / divisor if raw is not None else None
    return SoilProfile(depth=depth, **values)


class SoilGridsService:
    def __init__(self, cache: Optional[TTLCache] = None):
        self._cache = cache or TTLCache(24 * 60 * 60, max_entries=256)

    def fetch_soil_data(self, latitude: float, longitude: float, depth: str = "0-5cm") -> SoilProfile:
        key = cache_key("soilgrids", latitude, longitude, depth)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        params = [("lon", longitude), ("lat", latitude), ("depth", depth), ("value", "mean")]
        params.extend(("property", prop) for prop in SOIL_PROPERTIES)

        response = requests.get(
            f"{Config.soilgrids_base_url}/properties/query",
            params=params,
            timeout=Config.http_timeout,
        )
        response.raise_for_status()

        profile = parse_soil_payload(response.json(), depth)
        self._cache.set(key, profile)
        _logger.info("SoilGrids profile fetched for %s,%s depth=%s", latitude, longitude, depth)
        return profile
