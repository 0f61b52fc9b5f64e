from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

import smart_irrigation_controller.controller.utils.time_utils as time_utils


class ForceCommand(str, Enum):
    ON = "ON"
    OFF = "OFF"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accepts epoch milliseconds or an ISO8601 string."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        raise ValueError("timestamp must be epoch milliseconds or ISO8601")
    if isinstance(value, (int, float)):
        return time_utils.from_epoch_ms(value)
    if isinstance(value, str):
        value = value.strip()
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        try:
            return time_utils.from_iso(value)
        except ValueError as e:
            raise ValueError(f"invalid ISO8601 timestamp: {value!r}") from e
    raise ValueError("timestamp must be epoch milliseconds or ISO8601")


# ========================= Request models =========================

class _DeviceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=1, description="Identifier of the target device")


class DeviceStateRequest(_DeviceRequest):
    pass


class ForceStateRequest(_DeviceRequest):
    relay_state: Optional[bool] = Field(None, alias="relayState")
    last_on_ts: Optional[datetime] = Field(None, alias="lastOnTs", description="Epoch ms or ISO8601")
    last_off_ts: Optional[datetime] = Field(None, alias="lastOffTs", description="Epoch ms or ISO8601")

    @field_validator("last_on_ts", "last_off_ts", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Optional[datetime]:
        return _parse_timestamp(value)


class ForceActionRequest(_DeviceRequest):
    action: ForceCommand


class ManualLockRequest(_DeviceRequest):
    locked: bool


# ========================= Response models =========================

class DeviceStateResponse(BaseModel):
    device_id: str
    relay_state: bool
    last_action_ts: Optional[datetime] = None
    last_on_ts: Optional[datetime] = None
    last_off_ts: Optional[datetime] = None
    last_telemetry: dict[str, Any] = Field(default_factory=dict)
    manual_lock: bool = False


class DebugStateResponse(BaseModel):
    device_id: str
    state: Optional[DeviceStateResponse] = None
    events: list[dict[str, Any]]


class ThresholdResponse(BaseModel):
    threshold_on: int
    threshold_off: int
    details: dict[str, Any]


class DecisionResponse(BaseModel):
    device_id: str
    action: str
    reason: str
    actuated: bool
    extra: dict[str, Any] = Field(default_factory=dict)


class DevicesResponse(BaseModel):
    devices: list[DeviceStateResponse]
