# smart_irrigation_controller/controller/interfaces.py

from typing import Optional, Protocol

from smart_irrigation_controller.controller.core.crop_profiles import CropProfile
from smart_irrigation_controller.controller.core.enums import RelayCommand
from smart_irrigation_controller.controller.core.relay_publisher import PublishResults
from smart_irrigation_controller.controller.core.status_models import IrrigationEvent
from smart_irrigation_controller.controller.weather.forecast_snapshot import ForecastSnapshot


# ==================================================================================================================
# COLLABORATOR INTERFACES OF THE CONTROLLER
# ==================================================================================================================

class RelayPublisherLike(Protocol):
    """
    Interface for relay command delivery.
    """

    def publish(self, topic: str, command: RelayCommand) -> PublishResults:
        """Deliver the command; report per-encoding success instead of raising."""

        ...


class ForecastProviderLike(Protocol):
    """
    Interface for best-effort weather forecast retrieval.
    """

    def fetch(self, lat: float, lon: float) -> Optional[ForecastSnapshot]:
        """Return None when no forecast is available. Must not hang or raise."""

        ...


class EventLogLike(Protocol):

    def append(self, event: IrrigationEvent) -> bool:
        ...

    def recent(self, device_id: str, limit: int = ...) -> list[dict]:
        ...


class CropProfileSourceLike(Protocol):

    def resolve(self, name: Optional[str]) -> CropProfile:
        """Always returns a usable profile, falling back to defaults."""

        ...
