import json
import logging
import re
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional

from services.crop_detector import get_default_detector
from services.groq_client import get_groq_client

_logger = logging.getLogger("query_analyzer")

QUERY_TYPES = (
    "crop_recommendation",
    "soil_analysis",
    "weather_query",
    "pest_disease",
    "fertilizer_advice",
    "irrigation_advice",
    "general_farming",
    "seasonal_planning",
)

OPENWEATHER = "OpenWeather"
FAO = "FAO"
WIKIDATA = "Wikidata"
SOILGRIDS = "SoilGrids"

SYSTEM_PROMPT = """You are an agricultural AI query analyzer. Your task is to analyze farming questions and extract:
1. Query type (crop_recommendation, soil_analysis, weather_query, pest_disease, fertilizer_advice, irrigation_advice, general_farming, seasonal_planning)
2. Parameters mentioned (soil_ph, rainfall, temperature, crop_name, season)
3. Which APIs to call (OpenWeather, FAO, Wikidata, SoilGrids)
4. Extracted entities (crop names, locations, seasons, etc.)

Respond ONLY with valid JSON in this exact format:
{
  "query_type": "crop_recommendation",
  "parameters": {
    "soil_ph": 6.5,
    "rainfall": 700
  },
  "recommended_apis": ["OpenWeather", "FAO"],
  "confidence": 0.9,
  "extracted_entities": ["rice", "maize"]
}"""

# Checked in order, first hit wins.
INTENT_RULES = [
    ("pest_disease", re.compile(
        r"\b(pests?|diseases?|insects?|fungus|fungal|blight|keet|rog)\b|कीट|कीड़|रोग|बीमारी")),
    ("fertilizer_advice", re.compile(
        r"\b(fertili[sz]ers?|npk|nitrogen|urea|dap|manure|compost|khad)\b|खाद|उर्वरक")),
    ("crop_recommendation", re.compile(
        r"\b(crops?|grow\w*|plant\w*|sow\w*|fasal)\b|फसल|उगा|बुवाई")),
    ("irrigation_advice", re.compile(
        r"\b(water\w*|irrigat\w*|drip|sprinkler|moisture|sinchai|pani)\b|सिंचाई|पानी|नमी")),
    ("weather_query", re.compile(
        r"\b(weather|rain\w*|temperature|forecast|humidity|mausam|barish)\b|मौसम|बारिश|तापमान")),
    ("soil_analysis", re.compile(
        r"\b(soil|ph|nutrients?|mitti)\b|मिट्टी")),
    ("seasonal_planning", re.compile(
        r"\b(seasons?|seasonal|kharif|rabi|zaid)\b|खरीफ|रबी|जायद")),
]

LAND_KEYWORDS = [
    # English
    "my land", "my field", "my farm", "field", "farm", "land", "soil", "moisture", "ph", "sensor",
    # Hindi
    "मेरी जमीन", "मेरा खेत", "खेत", "जमीन", "मिट्टी", "नमी", "सेंसर",
    "khet", "nammi", "jameen", "mitti",
]

_PH_RE = re.compile(r"\bph\s*(?:value|level|of|is)?\s*[:\-=]?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_RAINFALL_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:mm|millimet(?:er|re)s?)\b", re.IGNORECASE)
_TEMPERATURE_RE = re.compile(r"(-?\d+(?:\.\d+)?)\s*(?:°\s*c\b|celsius|degrees?|डिग्री)", re.IGNORECASE)
_SEASON_RE = re.compile(r"\b(kharif|rabi|zaid)\b|(खरीफ|रबी|जायद)", re.IGNORECASE)
_SEASON_HI = {"खरीफ": "kharif", "रबी": "rabi", "जायद": "zaid"}
_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

NUMERIC_PARAMETERS = ("soil_ph", "rainfall", "temperature")


@dataclass
class QueryAnalysis:
    query_type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    recommended_apis: List[str] = field(default_factory=list)
    confidence: float = 0.6
    extracted_entities: List[str] = field(default_factory=list)
    needs_sensor_data: bool = False

    @property
    def location(self) -> Optional[Dict[str, float]]:
        return self.parameters.get("location")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def needs_sensor_data(query: str) -> bool:
    text = (query or "").lower()
    if re.search(r"\bph\b", text):
        return True
    return any(word in text for word in LAND_KEYWORDS if word != "ph")


def classify_intent(query: str) -> str:
    text = (query or "").lower()
    for intent, pattern in INTENT_RULES:
        if pattern.search(text):
            return intent
    return "general_farming"


def extract_parameters(query: str) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    text = query or ""

    match = _PH_RE.search(text)
    if match:
        ph = float(match.group(1))
        if 0 <= ph <= 14:
            params["soil_ph"] = ph

    match = _RAINFALL_RE.search(text)
    if match:
        params["rainfall"] = float(match.group(1))

    match = _TEMPERATURE_RE.search(text)
    if match:
        params["temperature"] = float(match.group(1))

    match = _SEASON_RE.search(text)
    if match:
        params["season"] = (match.group(1) or "").lower() or _SEASON_HI[match.group(2)]

    crop = get_default_detector().best_crop(text)
    if crop:
        params["crop_name"] = crop

    return params


def _as_float(value):
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def clean_model_parameters(parameters: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keeps only model-supplied parameters the retrieval step can use: a location
    with numeric coordinates, numeric readings and string names. Anything else
    is dropped so the regex pass or the sensor location can fill it.
    """
    cleaned: Dict[str, Any] = {}
    for key, value in parameters.items():
        if key == "location":
            if isinstance(value, dict):
                lat = _as_float(value.get("latitude"))
                lon = _as_float(value.get("longitude"))
                if lat is not None and lon is not None:
                    cleaned["location"] = {"latitude": lat, "longitude": lon}
        elif key in NUMERIC_PARAMETERS:
            number = _as_float(value)
            if number is not None:
                cleaned[key] = number
        elif key in ("crop_name", "season"):
            if isinstance(value, str) and value.strip():
                cleaned[key] = value.strip()
        elif value is not None:
            cleaned[key] = value
    if "soil_ph" in cleaned and not 0 <= cleaned["soil_ph"] <= 14:
        del cleaned["soil_ph"]
    return cleaned


def recommend_sources(query_type: str, parameters: Dict[str, Any]) -> List[str]:
    apis = []
    if query_type in ("weather_query", "crop_recommendation", "irrigation_advice", "seasonal_planning"):
        apis.append(OPENWEATHER)
    if query_type == "crop_recommendation" or parameters.get("crop_name"):
        apis.append(FAO)
    if query_type == "soil_analysis":
        apis.append(SOILGRIDS)
    return apis


class QueryAnalyzer:
    def __init__(self, llm=None, use_llm: bool = True):
        self._llm = llm
        self.use_llm = use_llm

    @property
    def llm(self):
        return self._llm or get_groq_client()

    def analyze(self, query: str, location: Optional[Dict[str, float]] = None) -> QueryAnalysis:
        if self.use_llm:
            try:
                analysis = self._analyze_with_llm(query, location)
            except Exception as exc:
                _logger.warning("Query analysis via LLM failed, using keyword fallback: %s", exc)
                analysis = self.fallback_analysis(query, location)
        else:
            analysis = self.fallback_analysis(query, location)

        analysis.needs_sensor_data = needs_sensor_data(query)
        return analysis

    def _analyze_with_llm(self, query, location) -> QueryAnalysis:
        user_prompt = f'Analyze this farming question: "{query}"\n'
        if location:
            user_prompt += f"User location: Lat {location['latitude']}, Lon {location['longitude']}\n"
        user_prompt += "\nExtract parameters and determine which APIs are needed. Return JSON only."

        raw = self.llm.chat(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0.3,
            max_tokens=500,
        )
        match = _JSON_BLOCK_RE.search(raw or "")
        if not match:
            raise ValueError("No JSON found in response")

        data = json.loads(match.group(0))
        if not isinstance(data, dict):
            raise ValueError("Analysis JSON is not an object")

        query_type = data.get("query_type")
        if query_type not in QUERY_TYPES:
            query_type = "general_farming"

        parameters = data.get("parameters") if isinstance(data.get("parameters"), dict) else {}
        parameters = clean_model_parameters(parameters)
        # regex hits only fill gaps the model left
        for key, value in extract_parameters(query).items():
            parameters.setdefault(key, value)
        if location:
            parameters["location"] = location

        try:
            confidence = min(max(float(data.get("confidence", 0.8)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.8

        apis = [str(a) for a in data.get("recommended_apis") or [] if a]
        entities = [str(e) for e in data.get("extracted_entities") or [] if e]

        return QueryAnalysis(
            query_type=query_type,
            parameters=parameters,
            recommended_apis=apis or recommend_sources(query_type, parameters),
            confidence=confidence,
            extracted_entities=entities,
        )

    def fallback_analysis(self, query: str, location: Optional[Dict[str, float]] = None) -> QueryAnalysis:
        query_type = classify_intent(query)
        parameters = extract_parameters(query)
        if location:
            parameters["location"] = location

        entities = [parameters["crop_name"]] if parameters.get("crop_name") else []
        return QueryAnalysis(
            query_type=query_type,
            parameters=parameters,
            recommended_apis=recommend_sources(query_type, parameters),
            confidence=0.6,
            extracted_entities=entities,
            needs_sensor_data=needs_sensor_data(query),
        )
