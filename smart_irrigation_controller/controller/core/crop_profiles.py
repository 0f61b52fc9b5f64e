# smart_irrigation_controller/controller/core/crop_profiles.py

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Optional


DEFAULT_CROP = "tomato"

DEFAULT_KC = 0.9
DEFAULT_TARGET_FRACTION = 0.75
DEFAULT_ROOT_DEPTH_CM = 30.0
DEFAULT_FIELD_CAPACITY_PCT = 40.0
DEFAULT_WILTING_POINT_PCT = 10.0
DEFAULT_HYSTERESIS_PCT = 5.0


# Accepted keys per field, the first one is the wire name used in event details.
_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "kc": ("Kc", "kc"),
    "target_fraction": ("targetFraction", "target_fraction"),
    "root_depth_cm": ("rootDepth_cm", "root_depth_cm"),
    "field_capacity_pct": ("fieldCapacityPct", "field_capacity_pct"),
    "wilting_point_pct": ("wiltingPointPct", "wilting_point_pct"),
    "hysteresis_pct": ("hysteresisPct", "hysteresis_pct"),
}


@dataclass(frozen=True)
class CropProfile:
    """
    Crop reference parameters used by the threshold model.

    - kc:                 crop coefficient scaling ETo to ETc
    - target_fraction:    target moisture as a fraction of field capacity
    - root_depth_cm:      root zone depth
    - field_capacity_pct: soil moisture percent at field capacity
    - wilting_point_pct:  soil moisture percent at the wilting point
    - hysteresis_pct:     gap between ON and OFF thresholds
    """
    name: str = DEFAULT_CROP
    kc: float = DEFAULT_KC
    target_fraction: float = DEFAULT_TARGET_FRACTION
    root_depth_cm: float = DEFAULT_ROOT_DEPTH_CM
    field_capacity_pct: float = DEFAULT_FIELD_CAPACITY_PCT
    wilting_point_pct: float = DEFAULT_WILTING_POINT_PCT
    hysteresis_pct: float = DEFAULT_HYSTERESIS_PCT

    @staticmethod
    def from_dict(data: Optional[dict[str, Any]], name: Optional[str] = None) -> "CropProfile":
        """
        Build a profile from a (possibly partial) dict. Accepts both the camelCase wire keys
        and snake_case keys. Missing, null or non-numeric fields fall back to defaults.
        """
        data = data or {}
        defaults = CropProfile()
        values: dict[str, Any] = {}
        for attr, keys in _FIELD_KEYS.items():
            raw = next((data[k] for k in keys if data.get(k) is not None), None)
            values[attr] = _number_or_default(raw, getattr(defaults, attr))

        resolved_name = name or data.get("name") or DEFAULT_CROP
        return CropProfile(name=str(resolved_name).strip().lower(), **values)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation, using the same key names as threshold details."""
        return {
            "name": self.name,
            "Kc": self.kc,
            "targetFraction": self.target_fraction,
            "rootDepth_cm": self.root_depth_cm,
            "fieldCapacityPct": self.field_capacity_pct,
            "wiltingPointPct": self.wilting_point_pct,
            "hysteresisPct": self.hysteresis_pct,
        }

    def renamed(self, name: str) -> "CropProfile":
        return replace(self, name=name)

    def validate(self) -> None:
        """
        Check the physical constraints of the profile.

        :raises ValueError: if any parameter is out of range.
        """
        if not self.name:
            raise ValueError("Crop profile name must not be empty")
        if self.kc <= 0:
            raise ValueError(f"Kc must be > 0, got {self.kc}")
        if not 0 <= self.target_fraction <= 1:
            raise ValueError(f"targetFraction must be within [0, 1], got {self.target_fraction}")
        if self.root_depth_cm <= 0:
            raise ValueError(f"rootDepth_cm must be > 0, got {self.root_depth_cm}")
        if not 0 <= self.field_capacity_pct <= 100:
            raise ValueError(f"fieldCapacityPct must be within [0, 100], got {self.field_capacity_pct}")
        if not 0 <= self.wilting_point_pct <= 100:
            raise ValueError(f"wiltingPointPct must be within [0, 100], got {self.wilting_point_pct}")
        if self.wilting_point_pct >= self.field_capacity_pct:
            raise ValueError("wiltingPointPct must be lower than fieldCapacityPct")
        if self.hysteresis_pct < 0:
            raise ValueError(f"hysteresisPct must be >= 0, got {self.hysteresis_pct}")


def _number_or_default(raw: Any, default: float) -> float:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


# Built-in catalogue, also used to seed the crop profile table.
BUILTIN_CROP_PROFILES: dict[str, CropProfile] = {
    p.name: p for p in (
        CropProfile("tomato", kc=0.9, target_fraction=0.75, root_depth_cm=30, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=5),
        CropProfile("maize", kc=1.15, target_fraction=0.7, root_depth_cm=50, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=5),
        CropProfile("wheat", kc=0.8, target_fraction=0.65, root_depth_cm=40, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=5),
        CropProfile("potato", kc=1.0, target_fraction=0.75, root_depth_cm=30, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=4),
        CropProfile("cotton", kc=0.95, target_fraction=0.7, root_depth_cm=50, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=5),
        CropProfile("sugarcane", kc=1.2, target_fraction=0.8, root_depth_cm=60, field_capacity_pct=45, wilting_point_pct=12, hysteresis_pct=6),
        CropProfile("banana", kc=1.1, target_fraction=0.8, root_depth_cm=60, field_capacity_pct=45, wilting_point_pct=12, hysteresis_pct=6),
        CropProfile("soybean", kc=0.9, target_fraction=0.7, root_depth_cm=40, field_capacity_pct=40, wilting_point_pct=10, hysteresis_pct=5),
    )
}
