import json
import os
from typing import Any, Callable, Mapping, Optional

from smart_irrigation_controller.controller.config.controller_config import ControllerConfig
from smart_irrigation_controller.controller.config.secrets import get_secret
from smart_irrigation_controller.controller.exceptions import ConfigurationError
from smart_irrigation_controller.controller.utils.logger import get_logger


logger = get_logger("config_loader")


# Environment variable -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "MIN_ON_MS": ("timing", "min_on_ms", int),
    "MIN_INTERVAL_BETWEEN_ON_MS": ("timing", "min_interval_between_on_ms", int),
    "MIN_INTERVAL_AFTER_OFF_MS": ("timing", "min_interval_after_off_ms", int),
    "MIN_INTERVAL_BETWEEN_OFF_MS": ("timing", "min_interval_between_off_ms", int),
    "MAX_ON_MS": ("timing", "max_on_ms", int),
    "TELEMETRY_TOPIC": ("mqtt", "telemetry_topic", str),
    "MQTT_RETRY_COUNT": ("mqtt", "retry_count", int),
    "MQTT_RETRY_DELAY_MS": ("mqtt", "retry_delay_ms", int),
    "MQTT_PUBLISH_TIMEOUT_S": ("mqtt", "publish_timeout_s", float),
    "MQTT_HOST": ("mqtt", "broker_host", str),
    "MQTT_PORT": ("mqtt", "broker_port", int),
    "MQTT_CLIENT_ID": ("mqtt", "client_id", str),
    "MQTT_USER": ("mqtt", "username", str),
    "RELAY_TOPIC_TEMPLATE": ("relay_topics", "template", str),
    "OPENWEATHER_URL": ("weather", "onecall_url", str),
    "OPENWEATHER_TIMEOUT_S": ("weather", "timeout_s", float),
    "STATE_FILE": ("storage", "state_file", str),
    "DATABASE_URL": ("storage", "database_url", str),
}

# Secret name -> (section, key)
SECRETS: dict[str, tuple[str, str]] = {
    "MQTT_PASS": ("mqtt", "password"),
    "OPENWEATHER_API_KEY": ("weather", "api_key"),
}


def load_controller_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ControllerConfig:
    """
    Loads the controller configuration.

    Values come from (lowest to highest precedence): built-in defaults, the optional JSON file at `path`,
    environment variables. Secrets are read via `get_secret` (environment, then the SECRETS_FILE JSON).

    :raises ConfigurationError: if the file or any value is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, dict[str, Any]] = {}

    if path is not None:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file {path} not found") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a JSON object")

    for var, (section, key, parser) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            data.setdefault(section, {})[key] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {var}: {raw!r}") from e

    secrets_file = env.get("SECRETS_FILE")
    for name, (section, key) in SECRETS.items():
        try:
            value = get_secret(name, secrets_file, environ=env)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if value is not None:
            data.setdefault(section, {})[key] = value

    try:
        config = ControllerConfig.from_dict(data)
    except TypeError as e:
        raise ConfigurationError(f"Unknown configuration key: {e}") from e

    _validate(config)
    if not config.weather.api_enabled:
        logger.warning("OPENWEATHER_API_KEY not configured. Thresholds will be computed without forecast data.")
    return config


def _validate(config: ControllerConfig) -> None:
    timing = config.timing
    for name in ("min_on_ms", "min_interval_between_on_ms", "min_interval_after_off_ms",
                 "min_interval_between_off_ms", "max_on_ms"):
        value = getattr(timing, name)
        if not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"timing.{name} must be a non-negative integer, got {value!r}")
    if timing.max_on_ms <= timing.min_on_ms:
        raise ConfigurationError("timing.max_on_ms must be greater than timing.min_on_ms")

    mqtt = config.mqtt
    if not isinstance(mqtt.retry_count, int) or mqtt.retry_count < 0:
        raise ConfigurationError(f"mqtt.retry_count must be a non-negative integer, got {mqtt.retry_count!r}")
    if not isinstance(mqtt.retry_delay_ms, int) or mqtt.retry_delay_ms < 0:
        raise ConfigurationError(f"mqtt.retry_delay_ms must be a non-negative integer, got {mqtt.retry_delay_ms!r}")
    if not 0 < mqtt.broker_port < 65536:
        raise ConfigurationError(f"mqtt.broker_port out of range: {mqtt.broker_port}")
    if mqtt.publish_timeout_s <= 0:
        raise ConfigurationError("mqtt.publish_timeout_s must be positive")
    if not mqtt.telemetry_topic:
        raise ConfigurationError("mqtt.telemetry_topic must not be empty")

    if "{device_id}" not in config.relay_topics.template:
        raise ConfigurationError("relay_topics.template must contain '{device_id}'")
