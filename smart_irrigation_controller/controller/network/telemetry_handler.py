from typing import Any, Optional

from smart_irrigation_controller.controller.core.irrigation_controller import IrrigationController
from smart_irrigation_controller.controller.core.status_models import Decision
from smart_irrigation_controller.controller.core.telemetry import Telemetry, decode_message
from smart_irrigation_controller.controller.exceptions import TelemetryDecodeError
from smart_irrigation_controller.controller.utils.logger import get_logger


class TelemetryHandler:
    """Bridges incoming MQTT telemetry messages to the irrigation controller."""

    def __init__(self, irrigation_controller: IrrigationController):
        self.irrigation_controller = irrigation_controller
        self.logger = get_logger("TelemetryHandler")

    def handle(self, topic: str, message: Any) -> Optional[Decision]:
        """Process one incoming telemetry message. Undecodable messages are dropped."""
        try:
            payload = decode_message(message)
        except TelemetryDecodeError as e:
            self.logger.warning(f"Dropping telemetry on {topic}: {e}")
            return None

        try:
            telemetry = Telemetry.from_payload(payload)
            return self.irrigation_controller.handle_telemetry(telemetry)
        except Exception as e:
            # Keep the telemetry dispatcher alive
            self.logger.error(f"Error handling telemetry on {topic}: {e}", exc_info=True)
            return None
