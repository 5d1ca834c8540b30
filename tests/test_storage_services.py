import datetime

import pytest
import requests

from conftest import FakeLLM, FakeSupabase
from services import ai_log, audio
from services.locations import LOCATIONS_TABLE, LocationService
from services.manual_entries import MANUAL_ENTRY_TABLE, ManualEntryService
from services.vision import describe_image


def _log_fields(**overrides):
    fields = dict(
        query="q", response="a", sources=["weather"], status="success", language="en",
        confidence=0.7, model_used="m", response_time_ms=812.6, conversation_id="c-1",
    )
    fields.update(overrides)
    return fields


def test_log_query_writes_row():
    db = FakeSupabase()

    assert ai_log.log_query(client=db, **_log_fields()) is True

    row = db.tables[ai_log.AI_LOG_TABLE][0]
    assert row["response_time"] == 812
    assert row["conversation_id"] == "c-1"
    assert row["intelligence_level"] == "rag"


def test_log_query_never_raises():
    assert ai_log.log_query(client=FakeSupabase(fail=True), **_log_fields(sources=[])) is False


def test_summarize():
    now = datetime.datetime(2024, 6, 2, 12, tzinfo=datetime.timezone.utc)
    logs = [
        {"status": "success", "response_time": 1000, "created_at": "2024-06-02T11:00:00+00:00"},
        {"status": "error", "response_time": 500, "created_at": "2024-06-02T10:00:00+00:00"},
    ]
    conversations = [
        {"id": "a", "updated_at": "2024-06-02T09:00:00Z"},
        {"id": "b", "updated_at": "2024-05-20T09:00:00Z"},
        {"id": "c", "updated_at": None},
    ]

    stats = ai_log.summarize(logs, conversations, now=now)

    assert stats == {
        "total_queries": 2,
        "avg_response_time": 750,
        "success_rate": 0.5,
        "last_query_time": "2024-06-02T11:00:00+00:00",
        "conversation_stats": {"total_conversations": 3, "active_conversations": 1},
    }


def test_summarize_reads_postgres_timestamps():
    now = datetime.datetime(2024, 6, 2, 12, tzinfo=datetime.timezone.utc)
    conversations = [
        {"id": "a", "updated_at": "2024-06-02T10:30:45.12345+00:00"},
        {"id": "b", "updated_at": "2024-06-02 08:00:00.5+00"},
        {"id": "c", "updated_at": "2024-06-02T07:00:00"},
        {"id": "d", "updated_at": "yesterday"},
    ]

    stats = ai_log.summarize([], conversations, now=now)

    assert stats["conversation_stats"] == {"total_conversations": 4, "active_conversations": 3}


def test_performance_stats_zeroes_on_error():
    stats = ai_log.performance_stats(client=FakeSupabase(fail=True))
    assert stats["total_queries"] == 0
    assert stats["success_rate"] == 0


def test_manual_entries():
    db = FakeSupabase()
    service = ManualEntryService(client=db)

    added = service.add({"entry_type": "water_quality", "title": "Canal water", "data": {"ph": 7.9}})
    service.add({"entry_type": "observation", "title": "Yellow leaves"})

    assert [e["title"] for e in service.list(entry_type="water_quality")] == ["Canal water"]
    assert service.update(added["id"], {"title": "Canal water (June)"})["title"] == "Canal water (June)"
    service.delete(added["id"])
    assert len(db.tables[MANUAL_ENTRY_TABLE]) == 1
    assert db.tables[MANUAL_ENTRY_TABLE][0]["data"] == {}


@pytest.mark.parametrize("entry", [
    {"title": "no type"},
    {"entry_type": "observation"},
    {"entry_type": "observation", "title": "x", "owner": "me"},
])
def test_manual_entry_validation(entry):
    with pytest.raises(ValueError):
        ManualEntryService(client=FakeSupabase()).add(entry)


def test_saving_current_location_clears_previous():
    db = FakeSupabase({LOCATIONS_TABLE: [{"id": "old", "place_name": "Home", "latitude": 1, "longitude": 2, "is_current": True}]})
    service = LocationService(client=db)

    service.save({"place_name": "Field", "latitude": 28.6, "longitude": 77.2, "is_current": True})

    assert service.get_current()["place_name"] == "Field"
    with pytest.raises(ValueError):
        service.save({"place_name": "", "latitude": 1, "longitude": 2})


def test_transcribe_without_key_or_audio(monkeypatch):
    monkeypatch.setattr(audio.Config, "deepgram_api_key", "")
    assert audio.transcribe(b"abc") == ""
    assert audio.transcribe(b"", api_key="key") == ""


def test_transcribe_posts_to_deepgram(monkeypatch):
    seen = {}

    class Response:
        def raise_for_status(self):
            pass

        def json(self):
            return {"results": {"channels": [{"alternatives": [{"transcript": " gehu me pani "}]}]}}

    def fake_post(url, **kwargs):
        seen.update(url=url, **kwargs)
        return Response()

    monkeypatch.setattr(audio.requests, "post", fake_post)

    assert audio.transcribe(b"\x00\x01", "audio/ogg", "hi", api_key="k") == "gehu me pani"
    assert seen["params"] == {"model": "nova-2", "language": "hi"}
    assert seen["headers"]["Authorization"] == "Token k"


def test_transcribe_swallows_http_errors(monkeypatch):
    def fake_post(url, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(audio.requests, "post", fake_post)
    assert audio.transcribe(b"\x00", api_key="k") == ""


def test_describe_image_splits_tags():
    llm = FakeLLM("wheat leaf, yellow spots , ")

    result = describe_image(b"\x89PNG", "image/png", llm=llm)

    assert result == {"tags": ["wheat leaf", "yellow spots"], "raw": "wheat leaf, yellow spots ,"}
    content = llm.calls[0]["messages"][0]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
