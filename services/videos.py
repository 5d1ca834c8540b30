import logging
import re
from typing import Any, Dict, List, Optional

from services.db import get_supabase
from services.i18n import normalize_language

_logger = logging.getLogger("videos")

VIDEOS_TABLE = "educational_videos"

VIDEO_TOPICS = (
    "ph_levels",
    "soil_moisture",
    "fertilizer",
    "weather",
    "soil_health",
    "water_quality",
    "crop_management",
    "pest_control",
    "irrigation",
    "general",
)

_WATCH_ID_RE = re.compile(r"[?&]v=([^&]+)")
_SHORT_ID_RE = re.compile(r"youtu\.be/([^?&]+)")


def format_duration(seconds) -> str:
    """125 -> '2:05'; empty when the duration is unknown."""
    if not seconds:
        return ""
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}:{rest:02d}"


def embed_url(video_url: str) -> str:
    url = video_url or ""
    if "/embed/" in url:
        return url

    video_id = None
    match = _WATCH_ID_RE.search(url)
    if match:
        video_id = match.group(1)
    match = _SHORT_ID_RE.search(url)
    if match:
        video_id = match.group(1)

    return f"https://www.youtube.com/embed/{video_id}" if video_id else url


def present(video: Dict[str, Any], language: str) -> Dict[str, Any]:
    """Row plus the title, description and player URL for one language."""
    hindi = normalize_language(language) == "hi"
    return {
        **video,
        "title": video.get("title_hi" if hindi else "title_en") or video.get("title_en") or "",
        "description": video.get("description_hi" if hindi else "description_en") or "",
        "embed_url": embed_url(video.get("video_url")),
        "duration_label": format_duration(video.get("duration")),
    }


class VideoService:
    """Active rows of the educational_videos table, per language and topic."""

    def __init__(self, client=None):
        self._client = client

    def _db(self):
        return self._client or get_supabase()

    def by_language(self, language: str) -> List[Dict[str, Any]]:
        try:
            return (
                self._db().table(VIDEOS_TABLE)
                .select("*")
                .eq("language", normalize_language(language))
                .eq("is_active", True)
                .order("order_index", desc=False)
                .execute()
                .data
            ) or []
        except Exception as exc:
            _logger.error("Error fetching videos language=%s: %s", language, exc)
            return []

    def by_topic(self, topic: str, language: str) -> List[Dict[str, Any]]:
        if topic not in VIDEO_TOPICS:
            raise ValueError(f"Unknown video topic: {topic}")
        try:
            return (
                self._db().table(VIDEOS_TABLE)
                .select("*")
                .eq("topic", topic)
                .eq("language", normalize_language(language))
                .eq("is_active", True)
                .order("order_index", desc=False)
                .execute()
                .data
            ) or []
        except Exception as exc:
            _logger.error("Error fetching videos topic=%s: %s", topic, exc)
            return []

    def available_topics(self, language: str) -> List[str]:
        try:
            rows = (
                self._db().table(VIDEOS_TABLE)
                .select("topic")
                .eq("language", normalize_language(language))
                .eq("is_active", True)
                .execute()
                .data
            ) or []
        except Exception as exc:
            _logger.error("Error fetching video topics: %s", exc)
            return []

        topics = []
        for row in rows:
            if row.get("topic") and row["topic"] not in topics:
                topics.append(row["topic"])
        return topics

    def get(self, video_id: str) -> Optional[Dict[str, Any]]:
        try:
            rows = (
                self._db().table(VIDEOS_TABLE)
                .select("*")
                .eq("id", video_id)
                .eq("is_active", True)
                .limit(1)
                .execute()
                .data
            )
        except Exception as exc:
            _logger.error("Error fetching video id=%s: %s", video_id, exc)
            return None
        return rows[0] if rows else None

    def grouped_by_topic(self, language: str) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for video in self.by_language(language):
            grouped.setdefault(video.get("topic") or "general", []).append(video)
        return grouped
