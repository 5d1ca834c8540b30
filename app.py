import hmac
import inspect
import logging
from contextlib import asynccontextmanager
from functools import lru_cache, partial
from typing import Any, Dict, Optional

import anyio
from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from services import ai_log
from services.audio import transcribe
from services.config import Config
from services.conversation import ConversationStore, get_conversation_store
from services.dashboard import DashboardService
from services.insights import SENSOR_TRENDS, WEATHER_TRENDS, sensor_insights, weather_insights
from services.i18n import normalize_language
from services.knowledge import warm_knowledge_store
from services.locations import LocationService, reverse_geocode, search_places
from services.manual_entries import ManualEntryService
from services.preferences import PreferenceService
from services.rag import RagService, get_rag_service
from services.sensors import SensorService
from services.videos import VIDEO_TOPICS, VideoService, present
from services.weather import WeatherService, format_forecast_summary, generate_weather_advice

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
logger = logging.getLogger("app")


async def _call_maybe_async(fn, *args, **kwargs):
    """Await coroutine functions; run everything else in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args, **kwargs)

    result = await anyio.to_thread.run_sync(partial(fn, *args, **kwargs))
    if inspect.isawaitable(result):
        return await result
    return result


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("Starting initialization...")
        Config.check_env_variables()
        if not Config.backend_api_key:
            logger.warning("BACKEND_API_KEY is not set; /api routes are open")
        await _call_maybe_async(warm_knowledge_store)
        yield
    except Exception as e:
        logger.error("CRITICAL CRASH DURING LIFESPAN: %s", e, exc_info=True)
        raise e


# ---------------- dependencies ----------------

def verify_api_key(x_api_key: Optional[str] = Header(default=None)):
    expected = Config.backend_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


@lru_cache
def get_sensor_service() -> SensorService:
    return SensorService()


@lru_cache
def get_weather_service() -> WeatherService:
    return WeatherService()


@lru_cache
def get_dashboard_service() -> DashboardService:
    return DashboardService(sensors=get_sensor_service(), weather=get_weather_service())


@lru_cache
def get_manual_entry_service() -> ManualEntryService:
    return ManualEntryService()


@lru_cache
def get_location_service() -> LocationService:
    return LocationService()


@lru_cache
def get_video_service() -> VideoService:
    return VideoService()


@lru_cache
def get_preference_service() -> PreferenceService:
    return PreferenceService()


def _location(lat: Optional[float], lon: Optional[float]) -> Optional[Dict[str, float]]:
    if lat is None and lon is None:
        return None
    if lat is None or lon is None:
        raise HTTPException(status_code=400, detail="lat and lon must be given together")
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise HTTPException(status_code=400, detail="lat/lon out of range")
    return {"latitude": lat, "longitude": lon}


async def _read_image(image: Optional[UploadFile]):
    if image is None:
        return None
    data = await image.read()
    if not data:
        return None
    return data, image.content_type or "image/jpeg"


class TitleUpdate(BaseModel):
    conversation_id: str
    title: str


class ManualEntryIn(BaseModel):
    entry_type: str
    title: str
    description: Optional[str] = None
    data: Dict[str, Any] = {}
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class LocationIn(BaseModel):
    place_name: str
    latitude: float
    longitude: float
    is_current: bool = True


app = FastAPI(title="FarmBot backend", lifespan=lifespan)
api = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    return JSONResponse({
        "message": "FarmBot backend is running",
        "endpoints": [
            "POST /api/ai/ask - ask the farming assistant",
            "POST /api/ai/ask/stream - same, streamed as plain text",
            "GET /api/ai/conversations - conversations for an auth id",
            "GET /api/dashboard - sensor and weather dashboard",
        ],
    })


# ---------------- AI ----------------

@api.post("/ai/ask")
async def ask(
    query: str = Form(...),
    auth_id: Optional[str] = Form(None),
    conversation_id: Optional[str] = Form(None),
    lat: Optional[float] = Form(None),
    lon: Optional[float] = Form(None),
    language: str = Form("en"),
    image: Optional[UploadFile] = File(None),
    rag: RagService = Depends(get_rag_service),
):
    if not query.strip():
        raise HTTPException(status_code=400, detail="query must not be empty")

    location = _location(lat, lon)
    return await rag.answer_question(
        query.strip(),
        location=location,
        conversation_id=conversation_id or None,
        language=normalize_language(language),
        auth_id=auth_id,
        image=await _read_image(image),
    )


@api.post("/ai/ask/stream")
async def ask_stream(
    query: str = Form(...),
    auth_id: Optional[str] = Form(None),
    conversation_id: Optional[str] = Form(None),
    lat: Optional[float] = Form(None),
    lon: Optional[float] = Form(None),
    language: str = Form("en"),
    image: Optional[UploadFile] = File(None),
    rag: RagService = Depends(get_rag_service),
):
    if not query.strip():
        raise HTTPException(status_code=400, detail="query must not be empty")

    prepared = await rag.prepare(
        query.strip(),
        location=_location(lat, lon),
        conversation_id=conversation_id or None,
        language=normalize_language(language),
        auth_id=auth_id,
        image=await _read_image(image),
    )
    return StreamingResponse(
        rag.stream_answer(prepared),
        media_type="text/plain; charset=utf-8",
        headers={"X-Conversation-Id": prepared.conversation_id},
    )


@api.get("/ai/conversations")
async def list_conversations(
    auth_id: str = Query(...),
    limit: int = Query(20, ge=1, le=100),
    store: ConversationStore = Depends(get_conversation_store),
):
    sessions = await store.list_for_user(auth_id, limit)
    conversations = [
        {"conversation_id": s.id, "title": s.title, "last_message": s.updated_at.isoformat()}
        for s in sessions
    ]
    return {"auth_id": auth_id, "conversations": conversations, "total": len(conversations)}


@api.get("/ai/conversations/search")
async def search_conversations(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    store: ConversationStore = Depends(get_conversation_store),
):
    sessions = await store.search(q, limit)
    return {"conversations": [s.header() for s in sessions], "total": len(sessions)}


@api.get("/ai/conversation/history")
async def conversation_history(
    conversation_id: str = Query(...),
    limit: Optional[int] = Query(None, ge=1),
    store: ConversationStore = Depends(get_conversation_store),
):
    if not conversation_id.strip():
        raise HTTPException(status_code=400, detail="conversation_id must not be empty")

    session = await store.get(conversation_id)
    messages = await store.history(conversation_id, limit)
    return {
        "conversation_id": conversation_id,
        "messages": [
            {**m.to_dict(), "conversation_id": conversation_id, "auth_id": session.auth_id if session else None}
            for m in messages
        ],
        "total": len(messages),
    }


@api.get("/ai/conversation/insights")
async def conversation_insights(
    conversation_id: str = Query(...),
    store: ConversationStore = Depends(get_conversation_store),
):
    return await store.insights(conversation_id)


@api.delete("/ai/conversation")
async def delete_conversation(
    conversation_id: str = Query(...),
    store: ConversationStore = Depends(get_conversation_store),
):
    return {"success": await store.delete(conversation_id)}


@api.patch("/ai/conversation/title")
async def update_conversation_title(
    body: TitleUpdate,
    store: ConversationStore = Depends(get_conversation_store),
):
    try:
        ok = await store.update_title(body.conversation_id, body.title)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": ok}


@api.post("/ai/weather-insights")
async def ai_weather_insights(
    temperature: float = Form(...),
    humidity: float = Form(...),
    weather_description: str = Form(""),
    trend: str = Form("stable"),
    language: str = Form("en"),
):
    if trend not in WEATHER_TRENDS:
        raise HTTPException(status_code=400, detail=f"trend must be one of {', '.join(WEATHER_TRENDS)}")

    text = await _call_maybe_async(
        weather_insights, temperature, humidity, weather_description, trend, normalize_language(language)
    )
    return {"success": True, "insights": text}


@api.post("/ai/sensor-insights")
async def ai_sensor_insights(
    sensor_name: str = Form(...),
    value: float = Form(...),
    unit: str = Form(""),
    status: str = Form(...),
    trend: str = Form("stable"),
    language: str = Form("en"),
):
    if status not in ("optimal", "warning", "critical"):
        raise HTTPException(status_code=400, detail="status must be optimal, warning or critical")
    if trend not in SENSOR_TRENDS:
        raise HTTPException(status_code=400, detail=f"trend must be one of {', '.join(SENSOR_TRENDS)}")

    text = await _call_maybe_async(
        sensor_insights, sensor_name, value, unit, status, trend, normalize_language(language)
    )
    return {"success": True, "insights": text}


@api.post("/ai/transcribe")
async def ai_transcribe(audio: UploadFile = File(...), language: str = Form("en")):
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="audio must not be empty")

    text = await _call_maybe_async(
        transcribe, data, audio.content_type or "audio/webm", normalize_language(language)
    )
    return {"success": bool(text), "transcript": text}


@api.get("/ai/stats")
async def ai_stats():
    return await _call_maybe_async(ai_log.performance_stats)


# ---------------- farm data ----------------

@api.get("/sensors/latest")
async def sensors_latest(sensors: SensorService = Depends(get_sensor_service)):
    readings = await _call_maybe_async(sensors.get_latest_readings)
    counts = {"optimal": 0, "warning": 0, "critical": 0}
    for reading in readings:
        counts[reading.status] += 1
    return {"readings": [r.to_dict() for r in readings], "status_counts": counts}


@api.get("/weather/current")
async def weather_current(
    lat: float = Query(...),
    lon: float = Query(...),
    language: str = Query("en"),
    weather: WeatherService = Depends(get_weather_service),
):
    _location(lat, lon)
    snapshot = await _call_maybe_async(weather.get_current, lat, lon)
    if snapshot is None:
        raise HTTPException(status_code=503, detail="Weather data unavailable")
    return {**snapshot.to_dict(), "advice": generate_weather_advice(snapshot, normalize_language(language))}


@api.get("/weather/forecast")
async def weather_forecast(
    lat: float = Query(...),
    lon: float = Query(...),
    language: str = Query("en"),
    weather: WeatherService = Depends(get_weather_service),
):
    _location(lat, lon)
    days = await _call_maybe_async(weather.get_forecast, lat, lon)
    return {
        "days": [d.to_dict() for d in days],
        "summary": format_forecast_summary(days, normalize_language(language)) if days else "",
    }


@api.get("/weather/history")
async def weather_history(
    lat: float = Query(...),
    lon: float = Query(...),
    days: int = Query(7, ge=1, le=30),
    weather: WeatherService = Depends(get_weather_service),
):
    _location(lat, lon)
    snapshots = await _call_maybe_async(weather.get_history, lat, lon, days)
    return {"history": [s.to_dict() for s in snapshots], "total": len(snapshots)}


@api.get("/dashboard")
async def dashboard(
    language: str = Query("en"),
    offline: bool = Query(False),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await _call_maybe_async(service.build, language, offline)


@api.get("/manual-entries")
async def list_manual_entries(
    entry_type: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    service: ManualEntryService = Depends(get_manual_entry_service),
):
    return {"entries": await _call_maybe_async(service.list, entry_type, None, None, limit)}


@api.post("/manual-entries")
async def add_manual_entry(
    body: ManualEntryIn,
    service: ManualEntryService = Depends(get_manual_entry_service),
):
    try:
        return await _call_maybe_async(service.add, body.model_dump(exclude_none=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@api.patch("/manual-entries/{entry_id}")
async def update_manual_entry(
    entry_id: str,
    body: Dict[str, Any],
    service: ManualEntryService = Depends(get_manual_entry_service),
):
    try:
        entry = await _call_maybe_async(service.update, entry_id, body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if entry is None:
        raise HTTPException(status_code=404, detail="Manual entry not found")
    return entry


@api.delete("/manual-entries/{entry_id}")
async def delete_manual_entry(entry_id: str, service: ManualEntryService = Depends(get_manual_entry_service)):
    await _call_maybe_async(service.delete, entry_id)
    return {"success": True}


@api.get("/locations")
async def list_locations(service: LocationService = Depends(get_location_service)):
    return {
        "locations": await _call_maybe_async(service.list),
        "current": await _call_maybe_async(service.get_current),
    }


@api.post("/locations")
async def save_location(body: LocationIn, service: LocationService = Depends(get_location_service)):
    try:
        return await _call_maybe_async(service.save, body.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@api.put("/locations/{location_id}/current")
async def set_current_location(location_id: str, service: LocationService = Depends(get_location_service)):
    return {"success": await _call_maybe_async(service.set_current, location_id)}


@api.delete("/locations/{location_id}")
async def delete_location(location_id: str, service: LocationService = Depends(get_location_service)):
    return {"success": await _call_maybe_async(service.delete, location_id)}


@api.get("/locations/reverse")
async def locations_reverse(lat: float = Query(...), lon: float = Query(...)):
    _location(lat, lon)
    return {"place_name": await _call_maybe_async(reverse_geocode, lat, lon)}


@api.get("/locations/search")
async def locations_search(q: str = Query(..., min_length=2)):
    return {"places": await _call_maybe_async(search_places, q)}


@api.get("/videos")
async def list_videos(
    language: str = Query("en"),
    topic: Optional[str] = Query(None),
    service: VideoService = Depends(get_video_service),
):
    language = normalize_language(language)
    if topic is None:
        videos = await _call_maybe_async(service.by_language, language)
    elif topic not in VIDEO_TOPICS:
        raise HTTPException(status_code=400, detail=f"Unknown video topic: {topic}")
    else:
        videos = await _call_maybe_async(service.by_topic, topic, language)
    return {"videos": [present(v, language) for v in videos], "total": len(videos)}


@api.get("/videos/topics")
async def video_topics(language: str = Query("en"), service: VideoService = Depends(get_video_service)):
    return {"topics": await _call_maybe_async(service.available_topics, normalize_language(language))}


@api.get("/videos/grouped")
async def videos_grouped(language: str = Query("en"), service: VideoService = Depends(get_video_service)):
    language = normalize_language(language)
    grouped = await _call_maybe_async(service.grouped_by_topic, language)
    return {"topics": {topic: [present(v, language) for v in videos] for topic, videos in grouped.items()}}


@api.get("/videos/{video_id}")
async def get_video(video_id: str, language: str = Query("en"), service: VideoService = Depends(get_video_service)):
    video = await _call_maybe_async(service.get, video_id)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return present(video, normalize_language(language))


@api.get("/preferences")
async def get_preferences(
    user_id: str = Query(..., min_length=1),
    service: PreferenceService = Depends(get_preference_service),
):
    return await _call_maybe_async(service.load, user_id)


@api.patch("/preferences")
async def update_preferences(
    body: Dict[str, Any],
    user_id: str = Query(..., min_length=1),
    service: PreferenceService = Depends(get_preference_service),
):
    try:
        return await _call_maybe_async(service.update, user_id, body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=Config.port, reload=False)
