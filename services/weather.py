import datetime
import logging
import math
from collections import Counter
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional

import requests

from services.config import Config
from services.db import get_supabase
from services.ttl_cache import TTLCache, cache_key

_logger = logging.getLogger("weather")

DAYS_HI = ["सोमवार", "मंगलवार", "बुधवार", "गुरुवार", "शुक्रवार", "शनिवार", "रविवार"]

API_DATA_TABLE = "api_data"
CURRENT_SOURCE = "OpenWeather"
FORECAST_SOURCE = "OpenWeather_Forecast"

CACHE_TTL_SECONDS = 30 * 60
FALLBACK_MAX_AGE_MINUTES = 24 * 60

WEATHER_ICONS = {
    "Clear": "☀️",
    "Clouds": "☁️",
    "Rain": "🌧️",
    "Drizzle": "🌦️",
    "Thunderstorm": "⛈️",
    "Snow": "❄️",
    "Mist": "🌫️",
    "Fog": "🌫️",
    "Haze": "🌫️",
}

ADVICE = {
    "en": {
        "hot": "It is very hot, shade the plants and water more often.",
        "cold": "It is cold, cover young plants and avoid early morning watering.",
        "humid": "Humidity is high, watch for fungal disease.",
        "dry": "The air is dry, mist the leaves if possible.",
        "rain": "Rain is expected, hold off irrigation.",
        "wind": "Strong winds, stake or support tall plants.",
        "good": "Weather is good, a fine time for field work.",
    },
    "hi": {
        "hot": "बहुत गर्मी है, पौधों को छाया दें और ज्यादा पानी दें",
        "cold": "ठंड है, पौधों को ढकें और सुबह पानी न दें",
        "humid": "नमी ज्यादा है, फंगल रोग से बचाव करें",
        "dry": "हवा सूखी है, पत्तियों पर पानी का छिड़काव करें",
        "rain": "बारिश आने वाली है, सिंचाई रोक दें",
        "wind": "तेज हवा चल रही है, पौधों को सहारा दें",
        "good": "मौसम अच्छा है, खेती के काम करने का अच्छा समय है",
    },
}


def _ms_to_kmh(ms: float) -> int:
    return int(round((ms or 0) * 3.6))


def calculate_distance_km(lat1, lon1, lat2, lon2) -> float:
    r = 6371
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return r * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class WeatherSnapshot:
    location: str
    latitude: float
    longitude: float
    temperature: float
    feels_like: Optional[float]
    humidity: float
    pressure: float
    wind_speed: int
    wind_direction: float
    condition: str
    description: str
    clouds: int
    visibility: int
    rainfall: float
    captured_at: str = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WeatherForecastDay:
    date: str
    temperature_min: int
    temperature_max: int
    humidity: int
    condition: str
    description: str
    rainfall: float
    wind_speed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_current_weather(payload: Dict[str, Any], lat: float, lon: float) -> WeatherSnapshot:
    main = payload.get("main") or {}
    wind = payload.get("wind") or {}
    weather = (payload.get("weather") or [{}])[0]
    return WeatherSnapshot(
        location=payload.get("name") or "Unknown",
        latitude=lat,
        longitude=lon,
        temperature=round(main.get("temp", 0)),
        feels_like=main.get("feels_like"),
        humidity=main.get("humidity", 0),
        pressure=main.get("pressure", 0),
        wind_speed=_ms_to_kmh(wind.get("speed", 0)),
        wind_direction=wind.get("deg", 0),
        condition=weather.get("main", "Unknown"),
        description=weather.get("description", ""),
        clouds=(payload.get("clouds") or {}).get("all", 0),
        visibility=round((payload.get("visibility") or 10000) / 1000),
        rainfall=(payload.get("rain") or {}).get("1h", 0),
    )


def parse_forecast(payload: Dict[str, Any], days: int = 5) -> List[WeatherForecastDay]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for item in payload.get("list", []):
        date = datetime.datetime.fromtimestamp(item.get("dt", 0), tz=datetime.timezone.utc).date().isoformat()
        grouped.setdefault(date, []).append(item)

    forecasts = []
    for date, items in grouped.items():
        temps = [i["main"]["temp"] for i in items]
        humidities = [i["main"]["humidity"] for i in items]
        winds = [(i.get("wind") or {}).get("speed", 0) for i in items]
        rainfall = sum((i.get("rain") or {}).get("3h", 0) for i in items)
        conditions = Counter(i["weather"][0]["main"] for i in items)
        descriptions = Counter(i["weather"][0]["description"] for i in items)

        forecasts.append(WeatherForecastDay(
            date=date,
            temperature_min=round(min(temps)),
            temperature_max=round(max(temps)),
            humidity=round(sum(humidities) / len(humidities)),
            condition=conditions.most_common(1)[0][0] if conditions else "Clear",
            description=descriptions.most_common(1)[0][0] if descriptions else "clear sky",
            rainfall=round(rainfall, 1),
            wind_speed=_ms_to_kmh(sum(winds) / len(winds)),
        ))

    return forecasts[:days]


def generate_weather_advice(snapshot: WeatherSnapshot, language: str = "hi") -> List[str]:
    t = ADVICE.get(language, ADVICE["en"])
    advice = []

    if snapshot.temperature > 35:
        advice.append(t["hot"])
    elif snapshot.temperature < 10:
        advice.append(t["cold"])

    if snapshot.humidity > 80:
        advice.append(t["humid"])
    elif snapshot.humidity < 30:
        advice.append(t["dry"])

    if snapshot.rainfall > 0 or "Rain" in (snapshot.condition or ""):
        advice.append(t["rain"])

    if snapshot.wind_speed > 25:
        advice.append(t["wind"])

    if (
        20 <= snapshot.temperature <= 30
        and 40 <= snapshot.humidity <= 70
        and snapshot.wind_speed < 15
    ):
        advice.append(t["good"])

    return advice


def weather_icon(condition: str) -> str:
    return WEATHER_ICONS.get(condition, "🌤️")


def format_forecast_summary(days: List[WeatherForecastDay], language: str = "hi") -> str:
    hindi = language == "hi"
    message = "🌦️ *मौसम पूर्वानुमान*\n" if hindi else "🌦️ *Weather forecast*\n"
    total_rain = 0.0
    dry_streak = 0

    for index, day in enumerate(days):
        total_rain += day.rainfall

        if index == 0:
            day_label = "आज" if hindi else "Today"
        elif index == 1:
            day_label = "कल" if hindi else "Tomorrow"
        else:
            date = datetime.date.fromisoformat(day.date)
            day_label = DAYS_HI[date.weekday()] if hindi else date.strftime("%A")

        if day.rainfall == 0 and index == dry_streak:
            dry_streak += 1

        message += (
            f"\n➤ *{day_label}*\n"
            f"🌡️ {day.temperature_min}-{day.temperature_max}°C\n"
            f"🌧️ {day.rainfall} mm\n"
            f"💨 {day.wind_speed} km/h\n"
        )

    if days and days[0].rainfall > 0:
        advice = (
            "आज बारिश की संभावना है। संभव हो तो सिंचाई न करें।" if hindi
            else "Rain is likely today. Skip irrigation if you can."
        )
    elif dry_streak >= 4:
        advice = (
            "लगातार सूखे दिन दिख रहे हैं। सिंचाई की योजना बनाएं।" if hindi
            else "Several dry days ahead. Plan your irrigation."
        )
    else:
        advice = (
            "हल्की बारिश की संभावना है। खेत की स्थिति पर नजर रखें।" if hindi
            else "Some light rain is possible. Keep an eye on the field."
        )

    if hindi:
        message += (
            f"\n📊 *सारांश*\n"
            f"🌧️ कुल बारिश: {round(total_rain, 1)} mm\n"
            f"☀️ लगातार सूखे दिन: {dry_streak}\n"
            f"🌱 सलाह: {advice}"
        )
    else:
        message += (
            f"\n📊 *Summary*\n"
            f"🌧️ Total rain: {round(total_rain, 1)} mm\n"
            f"☀️ Dry days in a row: {dry_streak}\n"
            f"🌱 Advice: {advice}"
        )
    return message


class WeatherService:
    def __init__(self, client=None, api_key: Optional[str] = None, cache: Optional[TTLCache] = None):
        self._client = client
        self.api_key = Config.openweather_api_key if api_key is None else api_key
        self._cache = cache or TTLCache(CACHE_TTL_SECONDS, max_entries=512)

    def _db(self):
        return self._client or get_supabase()

    def _fetch(self, path, lat, lon):
        if not self.api_key:
            raise ValueError("OpenWeather API key not configured")

        response = requests.get(
            f"{Config.openweather_base_url}/data/2.5/{path}",
            params={"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric"},
            timeout=Config.http_timeout,
        )
        response.raise_for_status()
        return response.json()

    def get_current(self, lat: float, lon: float) -> Optional[WeatherSnapshot]:
        key = cache_key("weather", round(lat, 2), round(lon, 2))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            payload = self._fetch("weather", lat, lon)
        except Exception as exc:
            _logger.error("Error fetching current weather: %s", exc)
            return self.get_cached_snapshot(lat, lon, FALLBACK_MAX_AGE_MINUTES)

        self._save_api_data(CURRENT_SOURCE, payload, lat, lon)
        snapshot = parse_current_weather(payload, lat, lon)
        self._cache.set(key, snapshot)
        return snapshot

    def get_forecast(self, lat: float, lon: float) -> List[WeatherForecastDay]:
        try:
            payload = self._fetch("forecast", lat, lon)
        except Exception as exc:
            _logger.error("Error fetching weather forecast: %s", exc)
            return []

        self._save_api_data(FORECAST_SOURCE, payload, lat, lon)
        return parse_forecast(payload)

    def _save_api_data(self, source, payload, lat, lon):
        try:
            self._db().table(API_DATA_TABLE).insert([{
                "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "api_source": source,
                "data": payload,
                "latitude": lat,
                "longitude": lon,
            }]).execute()
        except Exception as exc:
            _logger.warning("Error saving API data (%s): %s", source, exc)

    def _recent_rows(self, max_age_minutes, limit=None):
        cutoff = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=max_age_minutes)
        query = (
            self._db().table(API_DATA_TABLE)
            .select("*")
            .eq("api_source", CURRENT_SOURCE)
            .gte("timestamp", cutoff.isoformat())
            .order("timestamp", desc=True)
        )
        if limit:
            query = query.limit(limit)
        return query.execute().data or []

    def get_cached_snapshot(self, lat, lon, max_age_minutes) -> Optional[WeatherSnapshot]:
        try:
            rows = self._recent_rows(max_age_minutes, limit=1)
        except Exception as exc:
            _logger.error("Error getting cached weather data: %s", exc)
            return None
        if not rows:
            return None

        row = rows[0]
        if row.get("latitude") is not None and row.get("longitude") is not None:
            if calculate_distance_km(lat, lon, row["latitude"], row["longitude"]) > 1:
                return None

        snapshot = parse_current_weather(row.get("data") or {}, lat, lon)
        snapshot.captured_at = row.get("timestamp")
        return snapshot

    def get_history(self, lat: float, lon: float, days: int = 7) -> List[WeatherSnapshot]:
        try:
            rows = self._recent_rows(days * 24 * 60)
        except Exception as exc:
            _logger.error("Error getting historical weather data: %s", exc)
            return []

        history = []
        for row in rows:
            if row.get("latitude") is None or row.get("longitude") is None:
                continue
            if calculate_distance_km(lat, lon, row["latitude"], row["longitude"]) > 5:
                continue
            snapshot = parse_current_weather(row.get("data") or {}, lat, lon)
            snapshot.captured_at = row.get("timestamp")
            history.append(snapshot)
        return history
