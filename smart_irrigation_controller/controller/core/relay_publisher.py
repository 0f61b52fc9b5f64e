# smart_irrigation_controller/controller/core/relay_publisher.py

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from smart_irrigation_controller.controller.core.enums import PayloadFormat, RelayCommand
from smart_irrigation_controller.controller.utils.logger import get_logger


@dataclass
class PublishResults:
    """Per-encoding delivery outcome of one relay command."""
    successes: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def delivered(self) -> bool:
        """A command counts as delivered when at least one encoding got through."""
        return len(self.successes) > 0

    def to_dict(self) -> dict:
        return {"successes": list(self.successes), "failures": dict(self.failures)}


def encode_command(command: RelayCommand, payload_format: PayloadFormat) -> str:
    if payload_format is PayloadFormat.PLAIN:
        return command.value
    if payload_format is PayloadFormat.NUMERIC:
        return "1" if command is RelayCommand.ON else "0"
    return json.dumps({"cmd": command.value})


class RelayPublisher:
    """
    Delivers relay commands in every payload encoding, to cover heterogeneous receiver firmware.

    Each encoding is attempted up to `1 + retry_count` times with a fixed delay between attempts.
    The publish function must raise on failure; errors are collected, never propagated.
    """

    def __init__(
        self,
        publish_fn: Callable[[str, str], None],
        retry_count: int = 1,
        retry_delay_ms: int = 800,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.logger = get_logger(self.__class__.__name__)
        self._publish_fn = publish_fn
        self.retry_count = max(0, retry_count)
        self.retry_delay_s = max(0, retry_delay_ms) / 1000.0
        self._sleep = sleep

    def publish(self, topic: str, command: RelayCommand) -> PublishResults:
        results = PublishResults()
        for payload_format in PayloadFormat:
            payload = encode_command(command, payload_format)
            last_error: Exception | None = None
            for attempt in range(self.retry_count + 1):
                try:
                    self._publish_fn(topic, payload)
                except Exception as e:  # any transport error counts as a failed attempt
                    last_error = e
                    self.logger.warning(
                        f"Publish failed topic={topic} fmt={payload_format.value} attempt={attempt + 1}: {e}"
                    )
                else:
                    last_error = None
                    results.successes.append(payload_format.value)
                    self.logger.info(f"Publish success topic={topic} fmt={payload_format.value} payload={payload}")
                    break
                if attempt < self.retry_count:
                    self._sleep(self.retry_delay_s)
            if last_error is not None:
                results.failures[payload_format.value] = str(last_error) or type(last_error).__name__
        return results
