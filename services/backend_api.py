import logging
import time
from typing import Any, Dict, List, Optional

import requests

from services.config import Config
from services.response_parser import parse_response

_logger = logging.getLogger("backend_api")

# timing_analysis key -> (label, source) for the per-step breakdown
EVENT_LABELS = [
    ("history_retrieval_ms", "History Retrieval", "conversation_store"),
    ("image_analysis_ms", "Image Analysis", "groq_vision"),
    ("query_analysis_ms", "Query Analysis", "groq"),
    ("weather_fetch_ms", "Weather", "openweather"),
    ("forecast_fetch_ms", "Forecast", "openweather"),
    ("crop_info_fetch_ms", "Crop Info", "wikidata"),
    ("suitable_crops_fetch_ms", "Crop Search", "wikidata"),
    ("soil_fetch_ms", "Soil Analysis", "soilgrids"),
    ("sensors_fetch_ms", "Sensor Data", "sensor_service"),
    ("knowledge_fetch_ms", "RAG Search", "chroma"),
    ("llm_inference_ms", "LLM Inference", "groq"),
]


class ApiError(Exception):
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def _error_message(response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"API error: {response.status_code}"
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        for key in ("detail", "error", "message"):
            if data.get(key):
                return str(data[key])
    return f"API error: {response.status_code}"


def _clean_params(params):
    return {k: v for k, v in (params or {}).items() if v is not None and v != ""}


class ApiClient:
    """Thin client for this backend's REST surface, authenticated with X-API-Key."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, http=None, timeout=None):
        self.base_url = (base_url or Config.backend_api_url).rstrip("/")
        self.api_key = Config.backend_api_key if api_key is None else api_key
        self._http = http or requests
        self.timeout = timeout or Config.http_timeout
        if not self.api_key:
            _logger.warning("BACKEND_API_KEY is not set. Backend API calls may fail.")

    def _request(self, method, endpoint, **kwargs) -> Any:
        headers = {"X-API-Key": self.api_key or ""}
        response = self._http.request(
            method,
            f"{self.base_url}{endpoint}",
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )
        if not 200 <= response.status_code < 300:
            raise ApiError(_error_message(response), response.status_code)
        return response.json()

    def get(self, endpoint, params=None):
        return self._request("GET", endpoint, params=_clean_params(params))

    def post(self, endpoint, data):
        return self._request("POST", endpoint, json=data)

    def post_form(self, endpoint, data, files=None):
        return self._request("POST", endpoint, data=_clean_params(data), files=files)

    def delete(self, endpoint, params=None):
        return self._request("DELETE", endpoint, params=_clean_params(params))

    def health_check(self) -> bool:
        try:
            response = self._http.request("GET", f"{self.base_url}/health", timeout=self.timeout)
            return 200 <= response.status_code < 300
        except requests.RequestException as exc:
            _logger.error("Backend health check failed: %s", exc)
            return False


def event_breakdown(timing: Dict[str, float]) -> List[Dict[str, Any]]:
    return [
        {"label": label, "ms": timing[key], "source": source}
        for key, label, source in EVENT_LABELS
        if timing.get(key)
    ]


def transform_backend_response(payload: Dict[str, Any], started: float) -> Dict[str, Any]:
    parsed = parse_response(payload.get("answer", ""))
    rag_info = payload.get("rag_info") or {}
    context_used = payload.get("context_used") or {}

    sources = ["backend_api"]
    if rag_info.get("success"):
        sources.append("rag_knowledge")
    if context_used.get("sensor_available"):
        sources.append("sensor_data")

    return {
        "advice": payload.get("answer", ""),
        "confidence": 0.9 if rag_info.get("success") else 0.7,
        "sources": sources,
        "response_time_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "conversation_id": payload.get("conversation_id"),
        "follow_up_questions": parsed.follow_up_questions,
        "recommendations": parsed.recommendations,
        "related_topics": parsed.related_topics,
        "event_breakdown": event_breakdown(payload.get("timing_analysis") or {}),
        "rag_info": rag_info or None,
        "detected_language": payload.get("detected_language"),
        "raw_backend_response": payload,
    }


class AiClient:
    def __init__(self, api: Optional[ApiClient] = None, auth_id: Optional[str] = None):
        self.api = api or ApiClient()
        self.auth_id = auth_id or Config.default_auth_id

    def process_query(self, query, conversation_id=None, language="en", location=None, image=None) -> Dict[str, Any]:
        """`image` is a (filename, bytes, mime_type) tuple."""
        started = time.perf_counter()
        form = {
            "query": query,
            "auth_id": self.auth_id,
            "conversation_id": conversation_id,
            "language": language,
        }
        if location:
            form["lat"] = str(location["latitude"])
            form["lon"] = str(location["longitude"])

        files = {"image": image} if image else None
        payload = self.api.post_form("/api/ai/ask", form, files=files)
        return transform_backend_response(payload, started)

    def get_user_conversations(self, limit=20) -> List[Dict[str, Any]]:
        try:
            payload = self.api.get("/api/ai/conversations", {"auth_id": self.auth_id})
        except (ApiError, requests.RequestException) as exc:
            _logger.error("Error getting user conversations: %s", exc)
            return []

        conversations = []
        for conv in payload.get("conversations") or []:
            conversation_id = conv["conversation_id"]
            conversations.append({
                "id": conversation_id,
                "title": conv.get("title") or f"Conversation {conversation_id[:8]}",
                "updated_at": conv.get("last_message"),
            })
        return conversations[:limit]

    def get_conversation_history(self, conversation_id) -> List[Dict[str, Any]]:
        if not conversation_id or not conversation_id.strip():
            return []
        try:
            payload = self.api.get("/api/ai/conversation/history", {"conversation_id": conversation_id})
        except (ApiError, requests.RequestException) as exc:
            _logger.error("Error getting conversation history: %s", exc)
            return []
        return payload.get("messages") or []

    def delete_conversation(self, conversation_id) -> bool:
        if not conversation_id:
            return False
        try:
            self.api.delete("/api/ai/conversation", {"conversation_id": conversation_id})
        except (ApiError, requests.RequestException) as exc:
            _logger.error("Error deleting conversation: %s", exc)
            return False
        return True
