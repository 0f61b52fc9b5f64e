# smart_irrigation_controller/controller/exceptions.py


class ControllerError(Exception):
    """Base exception for the irrigation controller."""
    pass

class RelayPublishError(ControllerError):
    """
    Exception raised when a relay command could not be delivered to the broker.
    Attributes:
        topic (str): The topic the command was published to.
    """
    def __init__(self, message: str, topic: str):
        super().__init__(message)
        self.topic = topic

class TelemetryDecodeError(ControllerError):
    """Exception raised when a telemetry message is not a JSON object."""
    pass

class ConfigurationError(ControllerError):
    """Exception raised when the controller configuration is invalid."""
    pass
