from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class ForecastSnapshot:
    """
    Weather forecast inputs for the threshold model.

    daily_rain_mm[0] is the expected rain for the next 24 hours.
    """
    daily_rain_mm: tuple[float, ...] = ()
    current_temp: Optional[float] = None

    @staticmethod
    def from_openweather(data: dict[str, Any]) -> "ForecastSnapshot":
        """Build a snapshot from an OpenWeather One Call response ('daily'[].rain, 'current'.temp)."""
        daily = data.get("daily") or []
        rain = tuple(float(day.get("rain") or 0.0) for day in daily if isinstance(day, dict))
        current = data.get("current") or {}
        temp = current.get("temp") if isinstance(current, dict) else None
        return ForecastSnapshot(
            daily_rain_mm=rain,
            current_temp=float(temp) if isinstance(temp, (int, float)) and not isinstance(temp, bool) else None,
        )

    def to_dict(self) -> dict:
        return {
            "daily_rain_mm": list(self.daily_rain_mm),
            "current_temp": self.current_temp,
        }
