import pytest

from services.dashboard import DashboardService, localize, overall_status
from services.i18n import normalize_language, sensor_label, translate
from services.sensors import explode_record
from test_data_retriever import make_snapshot

ROW = {
    "id": 9, "timestamp": "2024-06-01T08:00:00+00:00",
    "soil_moisture": 30, "ph": 6.8, "k": 500, "latitude": 28.61, "longitude": 77.21,
}


class CountingSensors:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def get_latest_readings(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("supabase down")
        return explode_record(ROW)


class CountingWeather:
    def __init__(self):
        self.calls = 0

    def get_current(self, lat, lon):
        self.calls += 1
        return make_snapshot(latitude=lat, longitude=lon)


def test_overall_status():
    assert overall_status({"optimal": 3}) == "good_conditions"
    assert overall_status({"optimal": 2, "warning": 1}) == "needs_attention"
    assert overall_status({"warning": 1, "critical": 1}) == "urgent_action"


def test_build_saves_snapshot(tmp_path):
    service = DashboardService(CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path))

    view = service.build("en")

    assert view["offline"] is False
    assert view["status_counts"] == {"optimal": 1, "warning": 1, "critical": 1}
    assert view["overall_status"] == "urgent_action"
    assert view["weather"]["icon"] == "☀️"
    assert view["banners"] == []
    assert service.load_snapshot()["location"] == {"latitude": 28.61, "longitude": 77.21}


def test_offline_serves_snapshot_without_fetching(tmp_path):
    DashboardService(CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path)).build("en")
    sensors, weather = CountingSensors(), CountingWeather()
    service = DashboardService(sensors, weather, snapshots_dir=str(tmp_path))

    view = service.build("hi", offline=True)

    assert sensors.calls == 0
    assert weather.calls == 0
    assert view["offline"] is True
    assert view["banners"] == [translate("offline_banner", "hi")]
    assert [r["value"] for r in view["readings"]] == [30, 500, 6.8]


def test_failed_fetch_falls_back_to_snapshot(tmp_path):
    DashboardService(CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path)).build("en")

    view = DashboardService(CountingSensors(fail=True), CountingWeather(), snapshots_dir=str(tmp_path)).build("en")

    assert view["offline"] is True
    assert len(view["readings"]) == 3


def test_offline_without_snapshot_is_empty(tmp_path):
    view = DashboardService(CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path)).build("en", offline=True)

    assert view["readings"] == []
    assert view["weather"] is None
    assert translate("no_sensor_data", "en") in view["banners"]


def test_numbers_match_across_languages(tmp_path):
    raw = DashboardService(CountingSensors(), CountingWeather(), snapshots_dir=str(tmp_path)).collect()

    en = localize(raw, "en", offline=False)
    hi = localize(raw, "hi", offline=False)

    assert [r["value"] for r in en["readings"]] == [r["value"] for r in hi["readings"]]
    assert en["weather"]["temperature"] == hi["weather"]["temperature"]
    assert en["status_counts"] == hi["status_counts"]
    assert en["readings"][0]["label"] == "Soil Moisture"
    assert hi["readings"][0]["label"] == "मिट्टी की नमी"


@pytest.mark.parametrize("raw,expected", [("hi-IN", "hi"), ("EN", "en"), ("fr", "en"), (None, "en")])
def test_normalize_language(raw, expected):
    assert normalize_language(raw) == expected


def test_translate_fallbacks():
    assert translate("farm_status", "hi") == "खेत की स्थिति"
    assert translate("farm_status", "fr") == "Farm Status"
    assert translate("no_such_key", "hi") == "no_such_key"
    assert sensor_label("ph", "en") == "pH"
