"""
Headless entry point for the irrigation controller (MQTT only, no HTTP API).

Runs with:
python -m smart_irrigation_controller.controller.main [config.json]
"""

import sys
import time

from smart_irrigation_controller.__version__ import __version__ as version
from smart_irrigation_controller.controller.config.config_loader import load_controller_config
from smart_irrigation_controller.controller.controller_service import ControllerService
from smart_irrigation_controller.controller.exceptions import ConfigurationError
from smart_irrigation_controller.controller.utils.logger import get_logger


logger = get_logger("smart_irrigation_controller.main")


def main(argv: list[str] | None = None) -> int:
    """Main function to start the irrigation controller."""
    args = sys.argv[1:] if argv is None else argv
    logger.info("Initializing irrigation controller...")
    logger.info(f"Version: {version}")

    try:
        config = load_controller_config(args[0] if args else None)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"Invalid configuration: {e}")
        return 1

    service = ControllerService(config)
    service.start()
    print(f"Irrigation controller {version} running. Press Ctrl+C to stop.")

    try:
        while service.mqtt_client.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        service.stop()
        logger.info("Irrigation controller stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
