import logging
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, List, Optional, Tuple

import requests

from services.config import Config
from services.ttl_cache import TTLCache, cache_key

_logger = logging.getLogger("crops")

CACHE_TTL_SECONDS = 7 * 24 * 60 * 60

_SPARQL_TEMPLATE = """
SELECT ?crop ?cropLabel ?scientificName WHERE {
  ?crop rdfs:label "%s"@en;
        wdt:P225 ?scientificName.
  SERVICE wikibase:label { bd:serviceParam wikibase:language "en". }
}
LIMIT 1
"""


@dataclass
class CropInfo:
    crop_name: str
    scientific_name: str
    optimal_ph_range: Tuple[float, float]
    optimal_temp_range: Tuple[float, float]
    water_requirement: str          # low | medium | high
    growing_season: str
    npk_requirement: Dict[str, str]
    description: str
    source: str                     # ICAR | Wikidata

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_PROPERTIES = dict(
    optimal_ph_range=(6.0, 7.5),
    optimal_temp_range=(20, 30),
    water_requirement="medium",
    growing_season="Season varies by region",
    npk_requirement={"nitrogen": "Medium", "phosphorus": "Medium", "potassium": "Medium"},
    description="Crop information retrieved from agricultural database",
)

FALLBACK_CROPS = {
    "rice": CropInfo(
        "Rice", "Oryza sativa", (5.5, 7.0), (20, 35), "high", "Kharif (June-November)",
        {"nitrogen": "High", "phosphorus": "Medium", "potassium": "Medium"},
        "Major cereal crop, requires flooded conditions", "ICAR",
    ),
    "wheat": CropInfo(
        "Wheat", "Triticum aestivum", (6.0, 7.5), (12, 25), "medium", "Rabi (November-April)",
        {"nitrogen": "High", "phosphorus": "Medium", "potassium": "Low"},
        "Winter cereal crop, requires cool temperatures", "ICAR",
    ),
    "maize": CropInfo(
        "Maize/Corn", "Zea mays", (5.8, 7.0), (21, 30), "medium", "Kharif or Summer",
        {"nitrogen": "High", "phosphorus": "Medium", "potassium": "Medium"},
        "Versatile cereal crop, heat-loving", "ICAR",
    ),
    "chickpea": CropInfo(
        "Chickpea", "Cicer arietinum", (6.0, 8.0), (20, 30), "low", "Rabi (October-March)",
        {"nitrogen": "Low", "phosphorus": "High", "potassium": "Medium"},
        "Pulse crop, drought-tolerant", "ICAR",
    ),
    "tomato": CropInfo(
        "Tomato", "Solanum lycopersicum", (6.0, 7.0), (20, 27), "medium", "Year-round with irrigation",
        {"nitrogen": "Medium", "phosphorus": "High", "potassium": "High"},
        "Vegetable crop, requires regular watering", "ICAR",
    ),
    "potato": CropInfo(
        "Potato", "Solanum tuberosum", (5.5, 6.5), (15, 20), "medium", "Rabi (October-March)",
        {"nitrogen": "Medium", "phosphorus": "High", "potassium": "High"},
        "Tuber crop, prefers cool weather", "ICAR",
    ),
    "cotton": CropInfo(
        "Cotton", "Gossypium", (6.0, 7.5), (21, 30), "medium", "Kharif (April-October)",
        {"nitrogen": "High", "phosphorus": "Medium", "potassium": "High"},
        "Fiber crop, requires warm climate", "ICAR",
    ),
    "sugarcane": CropInfo(
        "Sugarcane", "Saccharum officinarum", (6.0, 7.5), (25, 35), "high", "Year-long crop (12-18 months)",
        {"nitrogen": "High", "phosphorus": "Medium", "potassium": "High"},
        "Long-duration crop, high water demand", "ICAR",
    ),
}

# corn is stored under maize
_ALIASES = {"corn": "maize", "paddy": "rice", "gram": "chickpea"}


def get_fallback_crop_info(crop_name: str) -> Optional[CropInfo]:
    name = (crop_name or "").strip().lower()
    name = _ALIASES.get(name, name)
    crop = FALLBACK_CROPS.get(name)
    return replace(crop) if crop else None


def is_suitable(crop: CropInfo, ph=None, temperature=None, rainfall=None) -> bool:
    if ph is not None:
        low, high = crop.optimal_ph_range
        if ph < low - 0.5 or ph > high + 0.5:
            return False

    if temperature is not None:
        low, high = crop.optimal_temp_range
        if temperature < low - 5 or temperature > high + 5:
            return False

    if rainfall is not None:
        if rainfall < 400 and crop.water_requirement == "high":
            return False
        if rainfall > 1500 and crop.water_requirement == "low":
            return False

    return True


class CropInformationService:
    def __init__(self, cache: Optional[TTLCache] = None, use_wikidata: bool = True):
        self._cache = cache or TTLCache(CACHE_TTL_SECONDS, max_entries=256)
        self.use_wikidata = use_wikidata

    def fetch_crop_info(self, crop_name: str) -> Optional[CropInfo]:
        key = cache_key("crop", (crop_name or "").strip().lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        info = None
        if self.use_wikidata:
            try:
                info = self._fetch_from_wikidata(crop_name)
            except Exception as exc:
                _logger.warning("Wikidata lookup failed for %s: %s", crop_name, exc)

        if info is None:
            info = get_fallback_crop_info(crop_name)

        if info is not None:
            self._cache.set(key, info)
        return info

    def _fetch_from_wikidata(self, crop_name: str) -> Optional[CropInfo]:
        label = crop_name.strip().lower().replace('"', "")
        if not label:
            return None

        response = requests.get(
            Config.wikidata_sparql_url,
            params={"query": _SPARQL_TEMPLATE % label, "format": "json"},
            headers={"Accept": "application/sparql-results+json", "User-Agent": "farmbot-backend/1.0"},
            timeout=Config.http_timeout,
        )
        response.raise_for_status()

        bindings = ((response.json().get("results") or {}).get("bindings")) or []
        if not bindings:
            return None

        result = bindings[0]
        fallback = get_fallback_crop_info(crop_name)
        base = asdict(fallback) if fallback else dict(DEFAULT_PROPERTIES)
        base.update(
            crop_name=result["cropLabel"]["value"],
            scientific_name=result["scientificName"]["value"],
            source="Wikidata",
        )
        return CropInfo(**base)

    def search_crops_by_conditions(self, ph=None, temperature=None, rainfall=None) -> List[CropInfo]:
        suitable = []
        for name in FALLBACK_CROPS:
            info = self.fetch_crop_info(name)
            if info and is_suitable(info, ph, temperature, rainfall):
                suitable.append(info)
        return suitable
