# smart_irrigation_controller/controller/core/telemetry.py

import json
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from smart_irrigation_controller.controller.core.crop_profiles import DEFAULT_CROP
from smart_irrigation_controller.controller.exceptions import TelemetryDecodeError


UNKNOWN_DEVICE_ID = "unknown"


@dataclass
class Telemetry:
    """One telemetry reading from a field device, normalized."""
    device_id: str
    soil_pct: Optional[float]
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    crop: str = DEFAULT_CROP
    lat: Optional[float] = None
    lon: Optional[float] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lon is not None

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Telemetry":
        """
        Normalize a decoded telemetry payload.

        Field aliases accepted from device firmware:
        deviceId|zoneId|id, soilPct|soil, temperature|temp, crop|cropName, lat|latitude, lon|longitude.
        """
        device_id = _first_present(payload, "deviceId", "zoneId", "id")
        crop = _first_present(payload, "crop", "cropName")
        return Telemetry(
            device_id=str(device_id) if device_id is not None else UNKNOWN_DEVICE_ID,
            soil_pct=normalize_soil(_first_present(payload, "soilPct", "soil")),
            temperature=_to_float(_first_present(payload, "temperature", "temp")),
            humidity=_to_float(payload.get("humidity")),
            crop=str(crop).strip().lower() if crop not in (None, "") else DEFAULT_CROP,
            lat=_to_float(_first_present(payload, "lat", "latitude")),
            lon=_to_float(_first_present(payload, "lon", "longitude")),
            raw=dict(payload),
        )


def decode_message(message: Any) -> dict[str, Any]:
    """
    Decode a raw transport message into a JSON object.

    :raises TelemetryDecodeError: if the message is not a JSON object.
    """
    if isinstance(message, dict):
        return message
    if isinstance(message, (bytes, bytearray)):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TelemetryDecodeError(f"Telemetry is not valid UTF-8: {e}") from e
    if not isinstance(message, str):
        raise TelemetryDecodeError(f"Unsupported telemetry message type: {type(message).__name__}")
    try:
        payload = json.loads(message)
    except json.JSONDecodeError as e:
        raise TelemetryDecodeError(f"Telemetry is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise TelemetryDecodeError("Telemetry JSON must be an object")
    return payload


def normalize_soil(raw: Any) -> Optional[float]:
    """
    Coerce a soil reading to a float percent.

    Accepts numbers, numeric strings and percent-suffixed strings ("28%").
    Returns None for anything unreadable.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw.endswith("%"):
            raw = raw[:-1].strip()
        if not raw:
            return None
    return _to_float(raw)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None
