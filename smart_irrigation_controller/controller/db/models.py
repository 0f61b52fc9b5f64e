# smart_irrigation_controller/controller/db/models.py

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class CropProfileRecord(SQLModel, table=True):
    __tablename__ = "crop_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    kc: float
    target_fraction: float = 0.75
    root_depth_cm: float = 30.0
    field_capacity_pct: float = 40.0
    wilting_point_pct: float = 10.0
    hysteresis_pct: float = 5.0
    notes: Optional[str] = None


class IrrigationEventRecord(SQLModel, table=True):
    __tablename__ = "irrigation_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(index=True)
    action: str
    reason: str
    # Always written as aware UTC
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), index=True, nullable=False))
    threshold_on: Optional[int] = None
    threshold_off: Optional[int] = None
    soil_pct: Optional[float] = None
    telemetry: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    forecast: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    details: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    extra: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
