import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

import anyio

from services import knowledge
from services.crops import CropInformationService
from services.query_analyzer import FAO, OPENWEATHER, SOILGRIDS, WIKIDATA, QueryAnalysis
from services.sensors import SensorService
from services.soil import SoilGridsService
from services.weather import WeatherService, generate_weather_advice

_logger = logging.getLogger("data_retriever")

_FORECAST_INTENTS = ("weather_query", "irrigation_advice", "seasonal_planning")


@dataclass
class SourceResult:
    source: str
    data: Dict[str, Any]
    elapsed_ms: float


class DataRetriever:
    """
    Fans a QueryAnalysis out to the data sources it asks for.

    Every fetch runs in a worker thread inside one task group. A failing
    source is logged and dropped, the others still land. Results come back
    in plan order, not completion order, so merging stays deterministic.
    """

    def __init__(self, weather=None, crops=None, soil=None, sensors=None, knowledge_fn=None):
        self.weather = weather or WeatherService()
        self.crops = crops or CropInformationService()
        self.soil = soil or SoilGridsService()
        self.sensors = sensors or SensorService()
        self.knowledge_fn = knowledge_fn or _default_knowledge

    async def retrieve(self, analysis: QueryAnalysis, query: str = "", language: str = "en") -> List[SourceResult]:
        location = analysis.location
        if location is None and self._needs_location(analysis):
            location = await self._resolve_location()

        plan = self.plan(analysis, query, location, language)
        if not plan:
            return []

        results: List[Optional[SourceResult]] = [None] * len(plan)

        async def _run(index, source, fn):
            start = time.perf_counter()
            try:
                data = await anyio.to_thread.run_sync(fn)
            except Exception as exc:
                _logger.warning("Data source %s failed: %s", source, exc)
                return
            elapsed = (time.perf_counter() - start) * 1000.0
            _logger.info("[timing] step=retrieve.%s ms=%.2f", source, elapsed)
            if data:
                results[index] = SourceResult(source, data, elapsed)

        async with anyio.create_task_group() as tg:
            for index, (source, fn) in enumerate(plan):
                tg.start_soon(_run, index, source, fn)

        return [r for r in results if r is not None]

    def plan(self, analysis: QueryAnalysis, query: str, location, language: str) -> List[Tuple[str, Callable[[], Any]]]:
        apis = set(analysis.recommended_apis)
        params = analysis.parameters
        plan = []

        if OPENWEATHER in apis and location:
            plan.append(("weather", partial(self._fetch_weather, location, language)))
            if analysis.query_type in _FORECAST_INTENTS:
                plan.append(("forecast", partial(self._fetch_forecast, location)))

        if apis & {FAO, WIKIDATA}:
            if params.get("crop_name"):
                plan.append(("crop_info", partial(self._fetch_crop_info, params["crop_name"])))
            elif location:
                plan.append(("suitable_crops", partial(self._fetch_suitable_crops, params)))

        if SOILGRIDS in apis and location:
            plan.append(("soil", partial(self._fetch_soil, location)))

        if analysis.needs_sensor_data:
            plan.append(("sensors", self._fetch_sensors))

        if query:
            plan.append(("knowledge", partial(self._fetch_knowledge, query, params.get("crop_name"))))

        return plan

    @staticmethod
    def _needs_location(analysis: QueryAnalysis) -> bool:
        return bool(set(analysis.recommended_apis) & {OPENWEATHER, SOILGRIDS, FAO, WIKIDATA})

    async def _resolve_location(self) -> Optional[Dict[str, float]]:
        try:
            return await anyio.to_thread.run_sync(self.sensors.get_latest_location)
        except Exception as exc:
            _logger.warning("No location from sensor data: %s", exc)
            return None

    def _fetch_weather(self, location, language):
        snapshot = self.weather.get_current(location["latitude"], location["longitude"])
        if snapshot is None:
            return None
        return {
            "weather": snapshot.to_dict(),
            "weather_advice": generate_weather_advice(snapshot, language),
            "location": location,
        }

    def _fetch_forecast(self, location):
        days = self.weather.get_forecast(location["latitude"], location["longitude"])
        return {"forecast": [d.to_dict() for d in days]} if days else None

    def _fetch_crop_info(self, crop_name):
        info = self.crops.fetch_crop_info(crop_name)
        return {"crop_info": info.to_dict()} if info else None

    def _fetch_suitable_crops(self, params):
        crops = self.crops.search_crops_by_conditions(
            ph=params.get("soil_ph"),
            temperature=params.get("temperature"),
            rainfall=params.get("rainfall"),
        )
        return {"suitable_crops": [c.to_dict() for c in crops]} if crops else None

    def _fetch_soil(self, location):
        profile = self.soil.fetch_soil_data(location["latitude"], location["longitude"])
        return {"soil_data": profile.to_dict()}

    def _fetch_sensors(self):
        readings = self.sensors.get_latest_readings()
        return {"sensor_data": [r.to_dict() for r in readings]} if readings else None

    def _fetch_knowledge(self, query, crop_name):
        passages = self.knowledge_fn(query, crop_name)
        return {"knowledge": passages} if passages else None


def _default_knowledge(query, crop_name):
    return knowledge.retrieve_passages(query, crop=crop_name)
