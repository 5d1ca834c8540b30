import pytest
from fastapi.testclient import TestClient

import app as app_module
from conftest import FakeLLM, FakeSupabase
from services.config import Config
from services.conversation import get_conversation_store
from services.dashboard import DashboardService
from services.manual_entries import ManualEntryService
from services.preferences import PreferenceService
from services.rag import get_rag_service
from services.videos import VIDEOS_TABLE, VideoService
from test_dashboard import CountingSensors, CountingWeather
from test_rag import ANSWER, make_service
from test_videos_preferences import VIDEOS


@pytest.fixture
def rag():
    return make_service(FakeLLM(ANSWER, chunks=["🌱 Advice: ", "mulch the rows."]))


@pytest.fixture
def client(rag, tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "backend_api_key", "")
    overrides = app_module.app.dependency_overrides
    overrides[get_rag_service] = lambda: rag
    overrides[get_conversation_store] = lambda: rag.store
    overrides[app_module.get_dashboard_service] = lambda: DashboardService(
        CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path)
    )
    overrides[app_module.get_manual_entry_service] = lambda: ManualEntryService(client=FakeSupabase())
    overrides[app_module.get_video_service] = lambda: VideoService(client=FakeSupabase({VIDEOS_TABLE: VIDEOS}))
    prefs = PreferenceService(client=FakeSupabase())
    overrides[app_module.get_preference_service] = lambda: prefs
    yield TestClient(app_module.app)
    overrides.clear()


def test_health_is_open(client, monkeypatch):
    monkeypatch.setattr(Config, "backend_api_key", "secret")
    assert client.get("/health").json() == {"status": "ok"}


def test_api_key_is_enforced(client, monkeypatch):
    monkeypatch.setattr(Config, "backend_api_key", "secret")

    assert client.get("/api/dashboard").status_code == 401
    assert client.get("/api/dashboard", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/api/dashboard", headers={"X-API-Key": "secret"}).status_code == 200


def test_ask_and_read_back_history(client):
    response = client.post("/api/ai/ask", data={
        "query": "Which crop should I grow, my soil ph is 6.5?",
        "auth_id": "42",
        "lat": "28.61",
        "lon": "77.21",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["message_count"] == 2
    assert body["recommendations"]["immediate"] == ["Test soil moisture"]

    history = client.get("/api/ai/conversation/history", params={"conversation_id": body["conversation_id"]}).json()
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]
    assert history["messages"][0]["auth_id"] == "42"

    insights = client.get("/api/ai/conversation/insights", params={"conversation_id": body["conversation_id"]}).json()
    assert insights["total_messages"] == 2


def test_ask_validation(client):
    assert client.post("/api/ai/ask", data={"query": "   "}).status_code == 400
    assert client.post("/api/ai/ask", data={"query": "rain?", "lat": "28.6"}).status_code == 400
    assert client.post("/api/ai/ask", data={"query": "rain?", "lat": "128.6", "lon": "77"}).status_code == 400


def test_ask_stream(client):
    response = client.post("/api/ai/ask/stream", data={"query": "When should I irrigate?"})

    assert response.status_code == 200
    assert response.text == "🌱 Advice: mulch the rows."
    conversation_id = response.headers["x-conversation-id"]

    history = client.get("/api/ai/conversation/history", params={"conversation_id": conversation_id}).json()
    assert history["total"] == 2


def test_title_update(client):
    body = client.post("/api/ai/ask", data={"query": "pani kab dena hai"}).json()
    conversation_id = body["conversation_id"]

    bad = client.patch("/api/ai/conversation/title", json={"conversation_id": conversation_id, "title": " "})
    assert bad.status_code == 400

    ok = client.patch("/api/ai/conversation/title", json={"conversation_id": conversation_id, "title": "Irrigation"})
    assert ok.json() == {"success": True}


def test_delete_conversation(client):
    body = client.post("/api/ai/ask", data={"query": "pani kab dena hai"}).json()

    assert client.delete("/api/ai/conversation", params={"conversation_id": body["conversation_id"]}).json() == {"success": True}
    history = client.get("/api/ai/conversation/history", params={"conversation_id": body["conversation_id"]}).json()
    assert history["messages"] == []


def test_insight_endpoints_validate_inputs(client):
    assert client.post("/api/ai/weather-insights", data={
        "temperature": "30", "humidity": "50", "trend": "sideways",
    }).status_code == 400
    assert client.post("/api/ai/sensor-insights", data={
        "sensor_name": "pH", "value": "6.5", "status": "fine",
    }).status_code == 400


def test_dashboard_languages_share_numbers(client):
    en = client.get("/api/dashboard", params={"language": "en"}).json()
    hi = client.get("/api/dashboard", params={"language": "hi", "offline": "true"}).json()

    assert hi["offline"] is True
    assert [r["value"] for r in en["readings"]] == [r["value"] for r in hi["readings"]]
    assert en["overall_status_label"] != hi["overall_status_label"]


def test_manual_entry_validation(client):
    response = client.post("/api/manual-entries", json={"entry_type": "observation", "title": "Leaf spots"})
    assert response.status_code == 200
    assert response.json()["title"] == "Leaf spots"

    assert client.post("/api/manual-entries", json={"entry_type": "observation"}).status_code == 422


def test_transcribe_rejects_empty_audio(client):
    response = client.post("/api/ai/transcribe", files={"audio": ("clip.webm", b"", "audio/webm")})
    assert response.status_code == 400


def test_conversations_listing_requires_auth_id(client):
    assert client.get("/api/ai/conversations").status_code == 422

    client.post("/api/ai/ask", data={"query": "pani kab dena hai", "auth_id": "77"})
    listing = client.get("/api/ai/conversations", params={"auth_id": "77"}).json()
    assert listing["total"] == 1


def test_manual_entry_update_unknown_id(client):
    response = client.patch("/api/manual-entries/missing", json={"title": "x"})
    assert response.status_code == 404

    bad = client.patch("/api/manual-entries/missing", json={"owner": "me"})
    assert bad.status_code == 400


def test_video_routes(client):
    listing = client.get("/api/videos", params={"language": "hi"}).json()
    assert [v["title"] for v in listing["videos"]] == ["मिट्टी का pH"]

    assert client.get("/api/videos", params={"topic": "astrology"}).status_code == 400
    assert client.get("/api/videos/topics").json()["topics"] == ["ph_levels", "irrigation"]
    assert set(client.get("/api/videos/grouped").json()["topics"]) == {"ph_levels", "irrigation"}

    video = client.get("/api/videos/v1").json()
    assert video["embed_url"] == "https://www.youtube.com/embed/abc123"
    assert client.get("/api/videos/v3").status_code == 404


def test_preference_routes(client):
    assert client.get("/api/preferences").status_code == 422

    prefs = client.get("/api/preferences", params={"user_id": "u1"}).json()
    assert prefs["theme"] == "light"

    updated = client.patch("/api/preferences", params={"user_id": "u1"}, json={"theme": "dark"})
    assert updated.json()["theme"] == "dark"
    assert client.patch("/api/preferences", params={"user_id": "u1"}, json={"theme": "neon"}).status_code == 400
