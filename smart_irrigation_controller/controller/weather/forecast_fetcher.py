import requests
from typing import Optional

from smart_irrigation_controller.controller.config.controller_config import WeatherSettings
from smart_irrigation_controller.controller.utils.logger import get_logger
from smart_irrigation_controller.controller.weather.forecast_snapshot import ForecastSnapshot


EXCLUDED_PARTS = "minutely,alerts"


def hide_confidential_params(params: dict, keys: list[str]) -> dict:
    """Returns a copy of the params with the given keys masked, for logging."""
    return {k: ("***" if k in keys else v) for k, v in params.items()}


class ForecastFetcher:
    """
    Fetches the rain forecast and current temperature from the OpenWeather One Call API.

    Best-effort: without an API key, or on any HTTP/network/format error, `fetch` returns None
    and the threshold model falls back to "no rain" and the default day temperature.
    """

    def __init__(self, settings: WeatherSettings) -> None:
        self.logger = get_logger("ForecastFetcher")
        self.settings = settings

    def fetch(self, lat: float, lon: float) -> Optional[ForecastSnapshot]:
        if not self.settings.api_enabled:
            return None

        params = {
            "lat": lat,
            "lon": lon,
            "exclude": EXCLUDED_PARTS,
            "units": "metric",
            "appid": self.settings.api_key,
        }
        self.logger.debug(
            f"Performing API call to {self.settings.onecall_url} with params: {hide_confidential_params(params, ['appid'])}"
        )

        try:
            response = requests.get(self.settings.onecall_url, params=params, timeout=self.settings.timeout_s)
        except requests.RequestException as e:
            self.logger.warning(f"Forecast request failed for ({lat}, {lon}): {e}")
            return None

        if response.status_code != 200:
            self.logger.warning(f"Forecast API returned {response.status_code} for ({lat}, {lon})")
            return None

        try:
            data = response.json()
        except ValueError as e:
            self.logger.warning(f"Forecast API returned invalid JSON: {e}")
            return None
        if not isinstance(data, dict):
            self.logger.warning("Forecast API returned an unexpected payload shape.")
            return None

        try:
            return ForecastSnapshot.from_openweather(data)
        except (TypeError, ValueError, AttributeError) as e:
            self.logger.warning(f"Unexpected forecast format: {e}")
            return None
