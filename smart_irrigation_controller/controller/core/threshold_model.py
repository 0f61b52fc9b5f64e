# smart_irrigation_controller/controller/core/threshold_model.py

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from smart_irrigation_controller.controller.core.crop_profiles import CropProfile
from smart_irrigation_controller.controller.core.telemetry import Telemetry
from smart_irrigation_controller.controller.weather.forecast_snapshot import ForecastSnapshot
from smart_irrigation_controller.controller.utils.logger import get_logger


logger = get_logger("ThresholdModel")


DEFAULT_DAY_TEMPERATURE_C = 25.0
ETO_BASE_TEMPERATURE_C = 10.0
ETO_PER_DEGREE_MM = 0.1
RAIN_INFILTRATION_FACTOR = 0.8
MIN_MM_PER_PCT = 5.0
SAFETY_MARGIN_PCT = 3.0


@dataclass
class ThresholdResult:
    """
    Result of the threshold model. Contains the ON/OFF band and the full computation context.

    - threshold_on:  soil moisture percent at or below which irrigation should start
    - threshold_off: soil moisture percent at or above which irrigation should stop
    - details:       diagnostic breakdown (ETo, ETc, rain24, rainEff, deltaPct, baselinePct, crop parameters)
    """
    threshold_on: int
    threshold_off: int
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold_on": self.threshold_on,
            "threshold_off": self.threshold_off,
            "details": dict(self.details),
        }


# =====================================================================
# Public API
# =====================================================================

def compute_threshold(
    telemetry: Optional[Telemetry],
    forecast: Optional[ForecastSnapshot],
    crop_profile: Optional[CropProfile],
) -> ThresholdResult:
    """
    Compute the ON/OFF soil moisture band for one device.

    The function is pure and total: missing or malformed inputs fall back to defaults.
    Evapotranspiration uses a linear temperature proxy, not Penman-Monteith.
    """
    profile = crop_profile or CropProfile()

    rain24 = _rain_next_24h(forecast)
    t_day = _day_temperature(telemetry, forecast)

    eto = max(0.0, ETO_PER_DEGREE_MM * (t_day - ETO_BASE_TEMPERATURE_C))
    etc = eto * profile.kc
    rain_eff = rain24 * RAIN_INFILTRATION_FACTOR
    deficit_mm = max(0.0, etc - rain_eff)

    # mm of water per percent of soil moisture within the root zone
    mm_per_pct = max(MIN_MM_PER_PCT, profile.root_depth_cm)
    delta_pct = deficit_mm / mm_per_pct

    baseline_pct = profile.field_capacity_pct * profile.target_fraction
    raw_threshold_on = baseline_pct + delta_pct

    threshold_on = _round_half_up(_clamp(
        raw_threshold_on,
        profile.wilting_point_pct + SAFETY_MARGIN_PCT,
        profile.field_capacity_pct - SAFETY_MARGIN_PCT,
    ))
    threshold_off = _round_half_up(_clamp(threshold_on + profile.hysteresis_pct, threshold_on, 100))

    details = {
        "ETo": eto,
        "ETc": etc,
        "rain24": rain24,
        "rainEff": rain_eff,
        "tDay": t_day,
        "deficitMm": deficit_mm,
        "mmPerPct": mm_per_pct,
        "deltaPct": delta_pct,
        "baselinePct": baseline_pct,
        "rawThresholdOn": raw_threshold_on,
        "crop": profile.name,
        "fieldCapacityPct": profile.field_capacity_pct,
        "wiltingPointPct": profile.wilting_point_pct,
        "rootDepth_cm": profile.root_depth_cm,
        "Kc": profile.kc,
        "targetFraction": profile.target_fraction,
        "hysteresisPct": profile.hysteresis_pct,
    }

    logger.debug(
        "Threshold for crop %s: ETo=%.3f ETc=%.3f rain24=%.2f deltaPct=%.4f baseline=%.2f -> on=%d off=%d",
        profile.name, eto, etc, rain24, delta_pct, baseline_pct, threshold_on, threshold_off,
    )

    return ThresholdResult(threshold_on=threshold_on, threshold_off=threshold_off, details=details)


# =====================================================================
# Helpers
# =====================================================================

def _rain_next_24h(forecast: Optional[ForecastSnapshot]) -> float:
    """Next-day forecast rain in mm. Absent or malformed forecasts count as no rain."""
    if forecast is None:
        return 0.0
    try:
        rain = float(forecast.daily_rain_mm[0] or 0.0)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError):
        return 0.0
    return rain if math.isfinite(rain) else 0.0


def _day_temperature(telemetry: Optional[Telemetry], forecast: Optional[ForecastSnapshot]) -> float:
    if telemetry is not None and telemetry.temperature is not None:
        return telemetry.temperature
    current = getattr(forecast, "current_temp", None)
    if isinstance(current, (int, float)) and not isinstance(current, bool) and math.isfinite(current):
        return float(current)
    return DEFAULT_DAY_TEMPERATURE_C


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (29.5 -> 30, not banker's rounding)."""
    return int(math.floor(value + 0.5))
