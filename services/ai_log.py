import datetime
import logging
from typing import Any, Dict, List, Optional

from services.db import get_supabase
from services.utility import parse_timestamp

_logger = logging.getLogger("ai_log")

AI_LOG_TABLE = "ai_log"
CONVERSATIONS_TABLE = "conversations"
STATS_WINDOW = 100


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def build_log_row(
    query: str,
    response: str,
    sources: Optional[List[str]],
    status: str,
    language: str,
    confidence: Optional[float],
    model_used: Optional[str],
    response_time_ms: Optional[float],
    conversation_id: Optional[str] = None,
) -> Dict[str, Any]:
    now = _utcnow().isoformat()
    return {
        "timestamp": now,
        "created_at": now,
        "query": query,
        "response": response,
        "sources": sources or None,
        "status": status,
        "language": language,
        "confidence": confidence,
        "model_used": model_used,
        "response_time": int(response_time_ms) if response_time_ms is not None else None,
        "conversation_id": conversation_id,
        "intelligence_level": "rag",
    }


def log_query(client=None, **fields) -> bool:
    """Best effort: a failed insert never fails the answer it describes."""
    row = build_log_row(**fields)
    try:
        (client or get_supabase()).table(AI_LOG_TABLE).insert([row]).execute()
        return True
    except Exception as exc:
        _logger.warning("Error logging AI query: %s", exc)
        return False


def summarize(logs: List[Dict[str, Any]], conversations: List[Dict[str, Any]], now=None) -> Dict[str, Any]:
    now = now or _utcnow()
    total = len(logs)
    successful = sum(1 for log in logs if log.get("status") == "success")
    avg_time = sum(log.get("response_time") or 0 for log in logs) / total if total else 0

    day_ago = now - datetime.timedelta(days=1)
    active = 0
    for conv in conversations:
        updated = conv.get("updated_at")
        if not updated:
            continue
        try:
            if parse_timestamp(updated) > day_ago:
                active += 1
        except ValueError:
            _logger.warning("Skipping conversation with unreadable updated_at=%r", updated)

    return {
        "total_queries": total,
        "avg_response_time": round(avg_time, 2),
        "success_rate": successful / total if total else 0,
        "last_query_time": logs[0].get("created_at") if logs else None,
        "conversation_stats": {
            "total_conversations": len(conversations),
            "active_conversations": active,
        },
    }


def performance_stats(client=None) -> Dict[str, Any]:
    db = client or get_supabase()
    try:
        logs = (
            db.table(AI_LOG_TABLE)
            .select("response_time, created_at, status, conversation_id")
            .order("created_at", desc=True)
            .limit(STATS_WINDOW)
            .execute()
            .data
        ) or []
        conversations = (
            db.table(CONVERSATIONS_TABLE)
            .select("id, created_at, updated_at")
            .order("updated_at", desc=True)
            .execute()
            .data
        ) or []
    except Exception as exc:
        _logger.error("Error fetching performance stats: %s", exc)
        return summarize([], [])

    return summarize(logs, conversations)
