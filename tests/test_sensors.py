import pytest

from conftest import FakeSupabase
from services.sensors import (
    SENSOR_TABLE,
    SensorService,
    derive_sensor_status,
    explode_record,
    get_sensor_unit,
)

ROWS = [
    {
        "id": 1, "timestamp": "2024-06-01T08:00:00+00:00",
        "soil_moisture": 30, "ph": 6.8, "n": None, "latitude": 28.6, "longitude": 77.2,
    },
    {
        "id": 2, "timestamp": "2024-06-02T08:00:00+00:00",
        "soil_moisture": 45, "ph": 9.1, "ec": 1.2, "latitude": 28.6, "longitude": 77.2,
    },
]


@pytest.mark.parametrize("sensor_type,value,expected", [
    ("soil_moisture", 50, "optimal"),
    ("soil_moisture", 30, "warning"),
    ("soil_moisture", 90, "critical"),
    ("ph", 6.0, "optimal"),
    ("ph", 5.5, "warning"),
    ("ph", 5.4, "critical"),
    ("soil_moisture", 20, "critical"),
    ("k", 350, "warning"),
])
def test_derive_sensor_status(sensor_type, value, expected):
    assert derive_sensor_status(sensor_type, value) == expected


def test_units():
    assert get_sensor_unit("ec") == "dS/m"
    assert get_sensor_unit("ph") == ""


def test_explode_record_skips_null_columns():
    readings = explode_record(ROWS[0])

    assert [r.sensor_type for r in readings] == ["soil_moisture", "ph"]
    assert readings[0].id == "1_soil_moisture"
    assert readings[0].status == "warning"
    assert readings[1].unit == ""


def test_latest_readings_use_newest_row():
    service = SensorService(client=FakeSupabase({SENSOR_TABLE: ROWS}))

    readings = service.get_latest_readings()

    assert {r.sensor_type: r.value for r in readings} == {"soil_moisture": 45, "ec": 1.2, "ph": 9.1}
    assert service.get_latest_location() == {"latitude": 28.6, "longitude": 77.2}
    assert service.get_status_counts() == {"optimal": 2, "warning": 0, "critical": 1}


def test_sensor_data_filtered_by_type():
    service = SensorService(client=FakeSupabase({SENSOR_TABLE: ROWS}))

    readings = service.get_sensor_data(sensor_type="ph")

    assert [r.value for r in readings] == [9.1, 6.8]


def test_empty_table_has_no_location():
    service = SensorService(client=FakeSupabase())
    assert service.get_latest_readings() == []
    assert service.get_latest_location() is None


def test_status_counts_survive_db_failure():
    service = SensorService(client=FakeSupabase(fail=True))
    assert service.get_status_counts() == {"optimal": 0, "warning": 0, "critical": 0}


def test_add_reading_rejects_unknown_columns():
    service = SensorService(client=FakeSupabase())
    with pytest.raises(ValueError):
        service.add_sensor_reading({"soil_moisture": 40, "voltage": 3.3})
