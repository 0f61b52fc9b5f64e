# smart_irrigation_controller/controller/core/event_log.py

from datetime import timezone
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from smart_irrigation_controller.controller.core.status_models import IrrigationEvent
from smart_irrigation_controller.controller.db.models import IrrigationEventRecord
from smart_irrigation_controller.controller.utils.logger import get_logger


RECENT_EVENTS_LIMIT = 50


class IrrigationEventLog:
    """Append-only audit trail of controller decisions, one record per decision cycle."""

    def __init__(self, engine: Engine) -> None:
        self.logger = get_logger("IrrigationEventLog")
        self.engine = engine

    def append(self, event: IrrigationEvent) -> bool:
        """Writes the event. A failed write is logged and reported as False, never raised."""
        record = IrrigationEventRecord(
            device_id=event.device_id,
            action=event.action.value,
            reason=event.reason.value,
            timestamp=event.timestamp.astimezone(timezone.utc),
            threshold_on=event.threshold_on,
            threshold_off=event.threshold_off,
            soil_pct=event.soil_pct,
            telemetry=event.telemetry,
            forecast=event.forecast,
            details=event.details,
            extra=event.extra or None,
        )
        try:
            with Session(self.engine) as session:
                session.add(record)
                session.commit()
        except SQLAlchemyError as e:
            self.logger.warning(f"Failed to append irrigation event for device '{event.device_id}': {e}")
            return False
        return True

    def recent(self, device_id: str, limit: int = RECENT_EVENTS_LIMIT) -> list[dict[str, Any]]:
        """Returns the newest events for a device, newest first."""
        statement = (
            select(IrrigationEventRecord)
            .where(IrrigationEventRecord.device_id == device_id)
            .order_by(col(IrrigationEventRecord.timestamp).desc(), col(IrrigationEventRecord.id).desc())
            .limit(limit)
        )
        with Session(self.engine) as session:
            records = session.exec(statement).all()
            return [_record_to_dict(r) for r in records]


def _record_to_dict(record: IrrigationEventRecord) -> dict[str, Any]:
    timestamp = record.timestamp
    # SQLite hands back the stored UTC value without an offset
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    else:
        timestamp = timestamp.astimezone(timezone.utc)
    return {
        "id": record.id,
        "device_id": record.device_id,
        "action": record.action,
        "reason": record.reason,
        "timestamp": timestamp.isoformat(),
        "threshold_on": record.threshold_on,
        "threshold_off": record.threshold_off,
        "soil_pct": record.soil_pct,
        "telemetry": record.telemetry,
        "forecast": record.forecast,
        "details": record.details,
        "extra": record.extra or {},
    }
