import threading
from typing import Optional

from smart_irrigation_controller.controller.config.config_loader import load_controller_config
from smart_irrigation_controller.controller.config.controller_config import ControllerConfig
from smart_irrigation_controller.controller.core.crop_profile_repository import CropProfileRepository
from smart_irrigation_controller.controller.core.device_state_manager import DeviceStateManager
from smart_irrigation_controller.controller.core.event_log import IrrigationEventLog
from smart_irrigation_controller.controller.core.irrigation_controller import IrrigationController
from smart_irrigation_controller.controller.core.relay_publisher import RelayPublisher
from smart_irrigation_controller.controller.db.session import build_engine
from smart_irrigation_controller.controller.network.mqtt_client import MQTTClient
from smart_irrigation_controller.controller.network.telemetry_handler import TelemetryHandler
from smart_irrigation_controller.controller.utils.logger import get_logger
from smart_irrigation_controller.controller.weather.forecast_fetcher import ForecastFetcher


class ControllerService:
    """Central orchestrator: wires storage, weather, transport and the irrigation controller together."""

    def __init__(self, config: Optional[ControllerConfig] = None, mqtt_client: Optional[MQTTClient] = None):
        self.logger = get_logger("ControllerService")
        self.config = config or load_controller_config()

        self.engine = build_engine(self.config.storage.database_url)
        self.state_manager = DeviceStateManager(self.config.storage.state_file)
        self.event_log = IrrigationEventLog(self.engine)
        self.crop_profiles = CropProfileRepository(self.engine)
        self.forecast_fetcher = ForecastFetcher(self.config.weather)

        # The handler needs the controller and the controller needs the client's publish; the client is set afterwards
        self.telemetry_handler = TelemetryHandler(None)
        self.mqtt_client = mqtt_client or MQTTClient(self.telemetry_handler, self.config.mqtt)
        self.relay_publisher = RelayPublisher(
            self.mqtt_client.publish,
            retry_count=self.config.mqtt.retry_count,
            retry_delay_ms=self.config.mqtt.retry_delay_ms,
        )
        self.controller = IrrigationController(
            config=self.config,
            state_manager=self.state_manager,
            event_log=self.event_log,
            crop_profiles=self.crop_profiles,
            relay_publisher=self.relay_publisher,
            forecast_provider=self.forecast_fetcher,
        )
        self.telemetry_handler.irrigation_controller = self.controller

        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                self.logger.debug("ControllerService already running.")
                return
            self.logger.info("Starting ControllerService...")
            self.mqtt_client.start()
            self._running = True
            self.logger.info("ControllerService started successfully.")

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self.logger.info("Stopping ControllerService...")
            self.mqtt_client.stop()
            self.mqtt_client.join(timeout=3)
            self._running = False
            self.logger.info("ControllerService stopped.")
