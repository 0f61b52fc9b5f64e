from dataclasses import dataclass, field
from typing import Optional


DEFAULT_RELAY_TOPICS = {"A": "esp32/relay1", "B": "esp32/relay2"}


@dataclass
class TimingSettings:
    """Interlock windows, all in milliseconds."""
    min_on_ms: int = 60 * 1000
    min_interval_between_on_ms: int = 30 * 1000
    min_interval_after_off_ms: int = 5 * 1000
    min_interval_between_off_ms: int = 5 * 1000
    max_on_ms: int = 4 * 60 * 60 * 1000


@dataclass
class MqttSettings:
    broker_host: str = "127.0.0.1"
    broker_port: int = 1883
    client_id: str = "irrigation_controller"
    username: Optional[str] = None
    password: Optional[str] = None
    telemetry_topic: str = "esp32/telemetry"
    retry_count: int = 1
    retry_delay_ms: int = 800
    publish_timeout_s: float = 3.0


@dataclass
class RelayTopicSettings:
    """Relay topic per device: fixed overrides for well-known devices, template for the rest."""
    overrides: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RELAY_TOPICS))
    template: str = "esp32/relay/{device_id}"

    def topic_for(self, device_id: str) -> str:
        return self.overrides.get(device_id) or self.template.format(device_id=device_id)


@dataclass
class WeatherSettings:
    api_key: Optional[str] = None
    onecall_url: str = "https://api.openweathermap.org/data/2.5/onecall"
    timeout_s: float = 7.0

    @property
    def api_enabled(self) -> bool:
        return bool(self.api_key)


@dataclass
class StorageSettings:
    state_file: Optional[str] = None
    database_url: Optional[str] = None


@dataclass
class ControllerConfig:
    """
    A class to hold the configuration of the irrigation controller.
    """
    timing: TimingSettings = field(default_factory=TimingSettings)
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    relay_topics: RelayTopicSettings = field(default_factory=RelayTopicSettings)
    weather: WeatherSettings = field(default_factory=WeatherSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @staticmethod
    def from_dict(data: dict) -> 'ControllerConfig':
        """
        Creates a ControllerConfig instance from a dictionary. Missing sections and keys keep their defaults.
        """
        relay = data.get("relay_topics", {})
        return ControllerConfig(
            timing=TimingSettings(**data.get("timing", {})),
            mqtt=MqttSettings(**data.get("mqtt", {})),
            relay_topics=RelayTopicSettings(
                overrides=dict(relay.get("overrides", DEFAULT_RELAY_TOPICS)),
                template=relay.get("template", RelayTopicSettings.template),
            ),
            weather=WeatherSettings(**data.get("weather", {})),
            storage=StorageSettings(**data.get("storage", {})),
        )
