from typing import Any, Dict, Iterable, List, Optional

from services.data_retriever import SourceResult
from services.query_analyzer import QueryAnalysis

# context key -> data_used flag reported with every answer
DATA_USED_KEYS = {
    "weather": "weather",
    "forecast": "weather",
    "crop_info": "crop_info",
    "suitable_crops": "crop_info",
    "soil_data": "soil_data",
    "sensor_data": "sensor_data",
    "knowledge": "knowledge",
    "image_tags": "image",
}


def merge_context(base: Optional[Dict[str, Any]], *parts: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow merge, later parts win per key. A None value never erases an earlier one."""
    merged = {k: v for k, v in (base or {}).items() if v is not None}
    for part in parts:
        if not part:
            continue
        for key, value in part.items():
            if value is not None:
                merged[key] = value
    return merged


def base_context(analysis: QueryAnalysis) -> Dict[str, Any]:
    params = dict(analysis.parameters)
    return {
        "query_type": analysis.query_type,
        "location": params.pop("location", None),
        "user_parameters": params or None,
    }


def build_context(
    analysis: QueryAnalysis,
    results: Iterable[SourceResult],
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    results = list(results)
    context = merge_context(base_context(analysis), *(r.data for r in results), extra)
    context["sources"] = [r.source for r in results]
    return context


def data_used(context: Dict[str, Any]) -> Dict[str, bool]:
    flags = {flag: False for flag in DATA_USED_KEYS.values()}
    for key, flag in DATA_USED_KEYS.items():
        if context.get(key):
            flags[flag] = True
    return flags


def sources_used(context: Dict[str, Any]) -> List[str]:
    return list(context.get("sources") or [])
