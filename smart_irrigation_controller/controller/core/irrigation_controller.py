# smart_irrigation_controller/controller/core/irrigation_controller.py

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from smart_irrigation_controller.controller.config.controller_config import ControllerConfig
from smart_irrigation_controller.controller.core.device_state_manager import DeviceStateManager
from smart_irrigation_controller.controller.core.enums import DecisionReason, IrrigationAction, RelayCommand
from smart_irrigation_controller.controller.core.status_models import Decision, DeviceState, IrrigationEvent
from smart_irrigation_controller.controller.core.telemetry import Telemetry
from smart_irrigation_controller.controller.core.threshold_model import ThresholdResult, compute_threshold
from smart_irrigation_controller.controller.interfaces import (
    CropProfileSourceLike,
    EventLogLike,
    ForecastProviderLike,
    RelayPublisherLike,
)
from smart_irrigation_controller.controller.utils.logger import get_logger
from smart_irrigation_controller.controller.weather.forecast_snapshot import ForecastSnapshot
import smart_irrigation_controller.controller.utils.time_utils as time_utils


@dataclass
class _Cycle:
    """Inputs of one decision cycle, carried into every event it produces."""
    device_id: str
    now: datetime
    telemetry: dict[str, Any] = field(default_factory=dict)
    soil_pct: Optional[float] = None
    threshold: Optional[ThresholdResult] = None
    forecast: Optional[ForecastSnapshot] = None


# (action on success, reason on success, reason on delivery failure)
_AUTOMATIC = {
    RelayCommand.ON: (IrrigationAction.ON, DecisionReason.SOIL_BELOW_THRESHOLD_ON, DecisionReason.PUBLISH_FAILED_ON),
    RelayCommand.OFF: (IrrigationAction.OFF, DecisionReason.SOIL_ABOVE_THRESHOLD_OFF, DecisionReason.PUBLISH_FAILED_OFF),
}
_FORCED = {
    RelayCommand.ON: (IrrigationAction.FORCE_ON, DecisionReason.OPERATOR_FORCE_ON, DecisionReason.PUBLISH_FAILED_FORCE_ON),
    RelayCommand.OFF: (IrrigationAction.FORCE_OFF, DecisionReason.OPERATOR_FORCE_OFF, DecisionReason.PUBLISH_FAILED_FORCE_OFF),
}
_WATCHDOG = (IrrigationAction.OFF, DecisionReason.WATCHDOG_FORCED_OFF, DecisionReason.PUBLISH_FAILED_WATCHDOG_OFF)


class IrrigationController:
    """
    Hysteretic soil-moisture controller with time-based interlocks.

    Every telemetry event produces exactly one IrrigationEvent. Relay state and interlock timestamps
    only change when a command was delivered on at least one payload encoding.
    Events for the same device are serialized by the state manager's per-device lock.
    """

    def __init__(
        self,
        config: ControllerConfig,
        state_manager: DeviceStateManager,
        event_log: EventLogLike,
        crop_profiles: CropProfileSourceLike,
        relay_publisher: RelayPublisherLike,
        forecast_provider: Optional[ForecastProviderLike] = None,
        clock: Callable[[], datetime] = time_utils.now,
    ) -> None:
        self.logger = get_logger(self.__class__.__name__)
        self.config = config
        self.timing = config.timing
        self.state_manager = state_manager
        self.event_log = event_log
        self.crop_profiles = crop_profiles
        self.relay_publisher = relay_publisher
        self.forecast_provider = forecast_provider
        self._clock = clock


    # ===========================================================================================================
    # Public API
    # ===========================================================================================================

    def handle_telemetry(self, telemetry: Telemetry) -> Decision:
        """Run one decision cycle for the device that sent the telemetry."""
        with self.state_manager.device_lock(telemetry.device_id):
            return self._decide(telemetry)


    def force_action(self, device_id: str, command: RelayCommand) -> Decision:
        """Operator override: actuate immediately, bypassing every interlock and the manual lock."""
        with self.state_manager.device_lock(device_id):
            state = self.state_manager.get_or_create(device_id)
            cycle = _Cycle(device_id=device_id, now=self._clock(), telemetry=dict(state.last_telemetry))
            self.logger.warning(f"Operator force {command.value} for device '{device_id}'.")
            return self._actuate(state, cycle, command, *_FORCED[command])


    def query_threshold(
        self,
        device_id: Optional[str] = None,
        crop: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
    ) -> ThresholdResult:
        """On-demand threshold band for display. Uses the device's latest telemetry when known."""
        telemetry: Optional[Telemetry] = None
        if device_id is not None:
            state = self.state_manager.get(device_id)
            if state is not None and state.last_telemetry:
                telemetry = Telemetry.from_payload(state.last_telemetry)

        crop_name = crop or (telemetry.crop if telemetry is not None else None)
        if lat is None and lon is None and telemetry is not None:
            lat, lon = telemetry.lat, telemetry.lon

        forecast = self._fetch_forecast(lat, lon)
        return compute_threshold(telemetry, forecast, self.crop_profiles.resolve(crop_name))


    # ===========================================================================================================
    # Decision cycle
    # ===========================================================================================================

    def _decide(self, telemetry: Telemetry) -> Decision:
        device_id = telemetry.device_id
        self.logger.info(
            f"Telemetry device={device_id} soil={telemetry.soil_pct} temp={telemetry.temperature} "
            f"hum={telemetry.humidity} crop={telemetry.crop}"
        )

        state = self.state_manager.get_or_create(device_id)
        state = replace(state, last_telemetry=dict(telemetry.raw))
        self.state_manager.save(state)

        profile = self.crop_profiles.resolve(telemetry.crop)
        forecast = self._fetch_forecast(telemetry.lat, telemetry.lon)
        threshold = compute_threshold(telemetry, forecast, profile)

        cycle = _Cycle(
            device_id=device_id,
            now=self._clock(),
            telemetry=dict(telemetry.raw),
            soil_pct=telemetry.soil_pct,
            threshold=threshold,
            forecast=forecast,
        )

        if state.manual_lock:
            self.logger.info(f"Device '{device_id}' is manually locked. Skipping automatic decision.")
            return self._recommend(cycle, DecisionReason.MANUAL_LOCK_ACTIVE)

        # Watchdog: safety cutoff, bypasses every other gate
        if state.relay_state:
            on_for_ms = time_utils.elapsed_ms(state.last_on_ts, cycle.now)
            if on_for_ms > self.timing.max_on_ms:
                self.logger.warning(f"Watchdog forcing OFF for device '{device_id}' (on for {on_for_ms} ms).")
                return self._actuate(state, cycle, RelayCommand.OFF, *_WATCHDOG, extra={"on_for_ms": on_for_ms})

        soil = telemetry.soil_pct
        if soil is None:
            self.logger.info(f"Device '{device_id}' sent no numeric soil reading.")
            return self._recommend(cycle, DecisionReason.NO_NUMERIC_SOIL)

        if soil <= threshold.threshold_on and not state.relay_state:
            return self._evaluate_on(state, cycle)

        if soil >= threshold.threshold_off and state.relay_state:
            return self._evaluate_off(state, cycle)

        repeated = None
        if soil <= threshold.threshold_on:
            repeated = self._repeated_request(
                cycle, state.last_on_ts, self.timing.min_interval_between_on_ms, DecisionReason.BLOCKED_BY_MIN_BETWEEN_ON
            )
        elif soil >= threshold.threshold_off:
            repeated = self._repeated_request(
                cycle, state.last_off_ts, self.timing.min_interval_between_off_ms,
                DecisionReason.MIN_INTERVAL_BETWEEN_OFF_NOT_ELAPSED,
            )
        if repeated is not None:
            return repeated

        self.logger.debug(
            f"no_action device={device_id} soil={soil} thresholds on={threshold.threshold_on} off={threshold.threshold_off}"
        )
        return self._recommend(cycle, DecisionReason.NO_ACTION)


    def _evaluate_on(self, state: DeviceState, cycle: _Cycle) -> Decision:
        since_on = time_utils.elapsed_ms(state.last_on_ts, cycle.now)
        since_off = time_utils.elapsed_ms(state.last_off_ts, cycle.now)

        # A recent OFF gets its own, shorter cool-down than the between-ON window
        if time_utils.to_epoch_ms(state.last_off_ts) > time_utils.to_epoch_ms(state.last_on_ts):
            required, elapsed = self.timing.min_interval_after_off_ms, since_off
            block_reason = DecisionReason.BLOCKED_AFTER_OFF_WAIT
        else:
            required, elapsed = self.timing.min_interval_between_on_ms, since_on
            block_reason = DecisionReason.BLOCKED_BY_MIN_BETWEEN_ON

        self.logger.debug(
            f"[ON-GATE] device={cycle.device_id} soil={cycle.soil_pct} threshold_on={cycle.threshold.threshold_on} "
            f"lastOn={time_utils.to_iso(state.last_on_ts)} ({since_on} ms ago) "
            f"lastOff={time_utils.to_iso(state.last_off_ts)} ({since_off} ms ago)"
        )

        if elapsed < required:
            remaining = required - elapsed
            self.logger.info(f"ON blocked for device '{cycle.device_id}': {block_reason.value} ({remaining} ms left).")
            return self._recommend(cycle, block_reason, {
                "elapsed_ms": elapsed,
                "required_ms": required,
                "remaining_ms": remaining,
            })

        return self._actuate(state, cycle, RelayCommand.ON, *_AUTOMATIC[RelayCommand.ON])


    def _evaluate_off(self, state: DeviceState, cycle: _Cycle) -> Decision:
        since_on = time_utils.elapsed_ms(state.last_on_ts, cycle.now)
        min_on_left = max(0, self.timing.min_on_ms - since_on)
        if min_on_left > 0:
            self.logger.info(f"Skipping OFF for device '{cycle.device_id}': min on time left {min_on_left} ms.")
            return self._recommend(cycle, DecisionReason.MIN_ON_NOT_ELAPSED, {
                "elapsed_ms": since_on,
                "required_ms": self.timing.min_on_ms,
                "remaining_ms": min_on_left,
            })

        since_off = time_utils.elapsed_ms(state.last_off_ts, cycle.now)
        if since_off < self.timing.min_interval_between_off_ms:
            remaining = self.timing.min_interval_between_off_ms - since_off
            self.logger.info(f"Skipping OFF for device '{cycle.device_id}': min interval between OFF ({remaining} ms left).")
            return self._recommend(cycle, DecisionReason.MIN_INTERVAL_BETWEEN_OFF_NOT_ELAPSED, {
                "elapsed_ms": since_off,
                "required_ms": self.timing.min_interval_between_off_ms,
                "remaining_ms": remaining,
            })

        return self._actuate(state, cycle, RelayCommand.OFF, *_AUTOMATIC[RelayCommand.OFF])


    def _repeated_request(
        self,
        cycle: _Cycle,
        last_ts: Optional[datetime],
        required: int,
        reason: DecisionReason,
    ) -> Optional[Decision]:
        """
        A demand for the state the relay is already in, shortly after it was entered (e.g. a re-delivered
        message), is reported as blocked by the interval gate rather than as a no-op.
        """
        if last_ts is None:
            return None
        elapsed = time_utils.elapsed_ms(last_ts, cycle.now)
        if elapsed >= required:
            return None
        remaining = required - elapsed
        self.logger.info(f"Repeated request for device '{cycle.device_id}' blocked: {reason.value} ({remaining} ms left).")
        return self._recommend(cycle, reason, {
            "elapsed_ms": elapsed,
            "required_ms": required,
            "remaining_ms": remaining,
        })


    # ===========================================================================================================
    # Outcomes
    # ===========================================================================================================

    def _actuate(
        self,
        state: DeviceState,
        cycle: _Cycle,
        command: RelayCommand,
        action: IrrigationAction,
        reason: DecisionReason,
        failure_reason: DecisionReason,
        extra: Optional[dict[str, Any]] = None,
    ) -> Decision:
        """Publish the command and commit the transition only if it was delivered."""
        topic = self.config.relay_topics.topic_for(cycle.device_id)
        results = self.relay_publisher.publish(topic, command)
        extra = {**(extra or {}), "topic": topic, "publishResults": results.to_dict()}

        if not results.delivered:
            self.logger.error(f"{command.value} publish failed on all formats for device '{cycle.device_id}' (topic {topic}).")
            return self._recommend(cycle, failure_reason, extra)

        if command is RelayCommand.ON:
            committed = replace(state, relay_state=True, last_on_ts=cycle.now, last_action_ts=cycle.now)
        else:
            committed = replace(state, relay_state=False, last_off_ts=cycle.now, last_action_ts=cycle.now)
        self.state_manager.save(committed)

        self.logger.info(
            f"{action.value} committed for device '{cycle.device_id}' ({reason.value}), formats={','.join(results.successes)}"
        )
        return self._record(cycle, action, reason, extra)


    def _recommend(self, cycle: _Cycle, reason: DecisionReason, extra: Optional[dict[str, Any]] = None) -> Decision:
        return self._record(cycle, IrrigationAction.RECOMMEND, reason, extra)


    def _record(
        self,
        cycle: _Cycle,
        action: IrrigationAction,
        reason: DecisionReason,
        extra: Optional[dict[str, Any]] = None,
    ) -> Decision:
        event = IrrigationEvent(
            device_id=cycle.device_id,
            action=action,
            reason=reason,
            timestamp=cycle.now,
            threshold_on=cycle.threshold.threshold_on if cycle.threshold else None,
            threshold_off=cycle.threshold.threshold_off if cycle.threshold else None,
            soil_pct=cycle.soil_pct,
            telemetry=cycle.telemetry or None,
            forecast=cycle.forecast.to_dict() if cycle.forecast else None,
            details=cycle.threshold.details if cycle.threshold else None,
            extra=extra or {},
        )
        self.event_log.append(event)
        return Decision(action=action, reason=reason, event=event)


    # ===========================================================================================================
    # Collaborators
    # ===========================================================================================================

    def _fetch_forecast(self, lat: Optional[float], lon: Optional[float]) -> Optional[ForecastSnapshot]:
        if self.forecast_provider is None or lat is None or lon is None:
            return None
        try:
            return self.forecast_provider.fetch(lat, lon)
        except Exception as e:  # forecast is best-effort, a failure must not abort the decision
            self.logger.warning(f"Forecast fetch failed for ({lat}, {lon}): {e}")
            return None
