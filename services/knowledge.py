import logging
import time
from typing import Any, Dict, List, Optional

import chromadb
from google import genai

from services.config import Config

_logger = logging.getLogger("knowledge")

_DEFAULT_TOP_K = 3
_DEFAULT_DISTANCE_THRESHOLD = 0.35
_EMBED_MODEL = "text-embedding-004"

_gemini_client = None
_chroma_client = None
_collection = None


def is_configured() -> bool:
    return bool(Config.chroma_host and Config.gemini_api_key)


def _get_gemini_client():
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = genai.Client(api_key=Config.gemini_api_key)
    return _gemini_client


def _get_collection():
    global _chroma_client, _collection
    if _collection is not None:
        return _collection

    _chroma_client = chromadb.HttpClient(
        host=Config.chroma_host,
        port=Config.chroma_port,
        ssl=Config.chroma_ssl,
        headers=Config.chroma_headers,
    )

    try:
        _collection = _chroma_client.get_collection(name=Config.chroma_collection_name)
    except Exception as exc:
        _logger.error("Chroma collection missing: %s (%s)", Config.chroma_collection_name, exc)
        _collection = None
        return None

    _logger.info(
        "Chroma connected: %s:%s collection=%s",
        Config.chroma_host,
        Config.chroma_port,
        Config.chroma_collection_name,
    )
    return _collection


def embed_texts(texts: List[str]) -> List[List[float]]:
    if not texts:
        return []
    start = time.perf_counter()
    result = _get_gemini_client().models.embed_content(model=_EMBED_MODEL, contents=texts)
    _logger.debug("[timing] step=gemini.embed ms=%.2f texts=%d", (time.perf_counter() - start) * 1000.0, len(texts))
    return [e.values for e in result.embeddings]


def _normalize_crop_tag(crop_name):
    return (crop_name or "").strip().lower().replace(" ", "_")


def to_passages(response: Dict[str, Any], distance_threshold: float) -> List[Dict[str, Any]]:
    """Flatten the first query's Chroma result into passages under the distance threshold."""
    documents = (response.get("documents") or [[]])[0]
    metadatas = (response.get("metadatas") or [[]])[0]
    distances = (response.get("distances") or [[]])[0]

    passages = []
    seen = set()
    for idx, doc in enumerate(documents):
        distance = distances[idx] if idx < len(distances) else 1.0
        if distance >= distance_threshold or doc in seen:
            continue
        seen.add(doc)
        meta = (metadatas[idx] if idx < len(metadatas) else None) or {}
        passages.append({
            "text": doc,
            "crop": meta.get("crop", ""),
            "region": meta.get("region", ""),
            "source": meta.get("source", ""),
            "similarity": round(1.0 - float(distance), 4),
        })
    return passages


def retrieve_passages(
    query: str,
    crop: Optional[str] = None,
    *,
    top_k=_DEFAULT_TOP_K,
    distance_threshold=_DEFAULT_DISTANCE_THRESHOLD,
) -> List[Dict[str, Any]]:
    if not query or not is_configured():
        return []

    collection = _get_collection()
    if collection is None:
        _logger.warning("Knowledge collection unavailable; returning no passages")
        return []

    where = {"crop": _normalize_crop_tag(crop)} if crop else None
    response = collection.query(
        query_embeddings=embed_texts([query]),
        n_results=top_k,
        where=where,
    )
    return to_passages(response, distance_threshold)


def warm_knowledge_store():
    if not is_configured():
        return False
    try:
        return _get_collection() is not None
    except Exception as exc:
        _logger.warning("Knowledge store warmup failed: %s", exc)
        return False
