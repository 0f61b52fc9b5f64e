"""
Data models representing the persistent state of irrigation devices and the decision audit trail.

These dataclasses provide a separation between:
- persistent per-device snapshot state from `DeviceStateManager`
- write-once decision records appended to the `IrrigationEventLog`
- the outcome of one decision cycle returned by the `Controller`
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from smart_irrigation_controller.controller.core.enums import IrrigationAction, DecisionReason
import smart_irrigation_controller.controller.utils.time_utils as time_utils


# ========================================
# Device Persistent Snapshot (DeviceStateManager)
# ========================================

@dataclass
class DeviceState:
    """
    Persistent state of one irrigation device.

    relay_state is the controller's single source of truth for whether the relay is commanded ON.
    last_on_ts / last_off_ts / last_action_ts only move when an action is actually committed.
    """
    device_id: str
    relay_state: bool = False
    last_action_ts: Optional[datetime] = None
    last_on_ts: Optional[datetime] = None
    last_off_ts: Optional[datetime] = None
    last_telemetry: dict[str, Any] = field(default_factory=dict)
    manual_lock: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "relay_state": self.relay_state,
            "last_action_ts": time_utils.to_iso(self.last_action_ts),
            "last_on_ts": time_utils.to_iso(self.last_on_ts),
            "last_off_ts": time_utils.to_iso(self.last_off_ts),
            "last_telemetry": dict(self.last_telemetry),
            "manual_lock": self.manual_lock,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DeviceState":
        return DeviceState(
            device_id=str(data["device_id"]),
            relay_state=bool(data.get("relay_state", False)),
            last_action_ts=time_utils.from_iso(data.get("last_action_ts")),
            last_on_ts=time_utils.from_iso(data.get("last_on_ts")),
            last_off_ts=time_utils.from_iso(data.get("last_off_ts")),
            last_telemetry=dict(data.get("last_telemetry") or {}),
            manual_lock=bool(data.get("manual_lock", False)),
        )


# ========================================
# Decision audit record (IrrigationEventLog)
# ========================================

@dataclass(frozen=True)
class IrrigationEvent:
    """One decision cycle, as recorded in the append-only event log."""
    device_id: str
    action: IrrigationAction
    reason: DecisionReason
    timestamp: datetime
    threshold_on: Optional[int] = None
    threshold_off: Optional[int] = None
    soil_pct: Optional[float] = None
    telemetry: Optional[dict[str, Any]] = None
    forecast: Optional[dict[str, Any]] = None
    details: Optional[dict[str, Any]] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "action": self.action.value,
            "reason": self.reason.value,
            "timestamp": time_utils.to_iso(self.timestamp),
            "threshold_on": self.threshold_on,
            "threshold_off": self.threshold_off,
            "soil_pct": self.soil_pct,
            "telemetry": self.telemetry,
            "forecast": self.forecast,
            "details": self.details,
            "extra": dict(self.extra),
        }


# ========================================
# Controller decision outcome
# ========================================

@dataclass(frozen=True)
class Decision:
    """Outcome of one decision cycle, returned to the caller of the Controller."""
    action: IrrigationAction
    reason: DecisionReason
    event: IrrigationEvent

    @property
    def actuated(self) -> bool:
        return self.action is not IrrigationAction.RECOMMEND
