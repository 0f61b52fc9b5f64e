import pytest

from smart_irrigation_controller.controller.core.telemetry import (
    UNKNOWN_DEVICE_ID,
    Telemetry,
    decode_message,
    normalize_soil,
)
from smart_irrigation_controller.controller.exceptions import TelemetryDecodeError


@pytest.mark.parametrize("raw, expected", [
    (28, 28.0),
    (28.5, 28.5),
    ("28", 28.0),
    (" 28.5 ", 28.5),
    ("28%", 28.0),
    ("28 %", 28.0),
    ("", None),
    ("%", None),
    ("wet", None),
    (None, None),
    (True, None),
    ("nan", None),
    ([28], None),
])
def test_normalize_soil(raw, expected):
    assert normalize_soil(raw) == expected


def test_from_payload_primary_keys():
    t = Telemetry.from_payload({
        "deviceId": "A", "soilPct": "31%", "temperature": 22.5, "humidity": 60,
        "crop": "Maize", "lat": 50.1, "lon": 14.4,
    })

    assert t.device_id == "A"
    assert t.soil_pct == 31.0
    assert t.temperature == 22.5
    assert t.humidity == 60.0
    assert t.crop == "maize"
    assert t.has_location


def test_from_payload_aliases():
    t = Telemetry.from_payload({
        "zoneId": "Z1", "soil": 40, "temp": "19", "cropName": "WHEAT", "latitude": "1.5", "longitude": "2.5",
    })

    assert t.device_id == "Z1"
    assert t.soil_pct == 40.0
    assert t.temperature == 19.0
    assert t.crop == "wheat"
    assert (t.lat, t.lon) == (1.5, 2.5)


def test_from_payload_defaults():
    t = Telemetry.from_payload({})

    assert t.device_id == UNKNOWN_DEVICE_ID
    assert t.soil_pct is None
    assert t.crop == "tomato"
    assert not t.has_location


def test_from_payload_keeps_raw_copy():
    payload = {"id": 7, "soilPct": 20}

    t = Telemetry.from_payload(payload)
    payload["soilPct"] = 99

    assert t.device_id == "7"
    assert t.raw == {"id": 7, "soilPct": 20}


@pytest.mark.parametrize("message", [
    b'{"deviceId": "A", "soilPct": 20}',
    '{"deviceId": "A", "soilPct": 20}',
    {"deviceId": "A", "soilPct": 20},
])
def test_decode_message_accepts_json_objects(message):
    assert decode_message(message) == {"deviceId": "A", "soilPct": 20}


@pytest.mark.parametrize("message", [
    b"not json",
    b"\xff\xfe",
    "[1, 2, 3]",
    "42",
    12,
    None,
])
def test_decode_message_rejects_non_objects(message):
    with pytest.raises(TelemetryDecodeError):
        decode_message(message)
