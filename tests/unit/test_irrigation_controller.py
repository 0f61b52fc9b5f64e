import pytest

from datetime import datetime, timedelta, timezone

from smart_irrigation_controller.controller.config.controller_config import ControllerConfig
from smart_irrigation_controller.controller.core.crop_profile_repository import CropProfileRepository
from smart_irrigation_controller.controller.core.device_state_manager import DeviceStateManager
from smart_irrigation_controller.controller.core.enums import DecisionReason, IrrigationAction, RelayCommand
from smart_irrigation_controller.controller.core.irrigation_controller import IrrigationController
from smart_irrigation_controller.controller.core.relay_publisher import PublishResults
from smart_irrigation_controller.controller.core.telemetry import Telemetry
from smart_irrigation_controller.controller.weather.forecast_snapshot import ForecastSnapshot


T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------- Fakes ----------------------

class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += timedelta(milliseconds=ms)


class FakeRelayPublisher:
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.calls = []

    def publish(self, topic, command):
        self.calls.append((topic, command))
        if self.deliver:
            return PublishResults(successes=["plain", "numeric", "json"])
        return PublishResults(failures={"plain": "timeout", "numeric": "timeout", "json": "timeout"})


class FakeEventLog:
    def __init__(self):
        self.events = []

    def append(self, event):
        self.events.append(event)
        return True

    def recent(self, device_id, limit=50):
        return [e.to_dict() for e in reversed(self.events) if e.device_id == device_id][:limit]


class FakeForecastProvider:
    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot
        self.error = error
        self.calls = []

    def fetch(self, lat, lon):
        self.calls.append((lat, lon))
        if self.error is not None:
            raise self.error
        return self.snapshot


# ---------------------- Fixtures ----------------------

@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def publisher():
    return FakeRelayPublisher()


@pytest.fixture
def event_log():
    return FakeEventLog()


@pytest.fixture
def state_manager():
    return DeviceStateManager(state_file=None)


@pytest.fixture
def controller(clock, publisher, event_log, state_manager):
    return IrrigationController(
        config=ControllerConfig(),
        state_manager=state_manager,
        event_log=event_log,
        crop_profiles=CropProfileRepository(engine=None),
        relay_publisher=publisher,
        forecast_provider=None,
        clock=clock,
    )


def telemetry(soil, device_id="A", **extra):
    payload = {"deviceId": device_id, "soilPct": soil, **extra}
    return Telemetry.from_payload(payload)


# ---------------------- ON path ----------------------

def test_dry_soil_turns_relay_on(controller, publisher, event_log, state_manager):
    # Act
    decision = controller.handle_telemetry(telemetry(28))

    # Assert
    assert decision.action == IrrigationAction.ON
    assert decision.reason == DecisionReason.SOIL_BELOW_THRESHOLD_ON
    assert publisher.calls == [("esp32/relay1", RelayCommand.ON)]

    state = state_manager.get("A")
    assert state.relay_state is True
    assert state.last_on_ts == T0
    assert state.last_action_ts == T0

    assert len(event_log.events) == 1
    event = event_log.events[0]
    assert event.threshold_on == 30
    assert event.threshold_off == 35
    assert event.extra["publishResults"]["successes"] == ["plain", "numeric", "json"]


def test_repeated_telemetry_within_between_on_window_is_blocked(controller, clock, publisher, event_log):
    controller.handle_telemetry(telemetry(28))
    clock.advance(10_000)

    decision = controller.handle_telemetry(telemetry(28))

    assert decision.action == IrrigationAction.RECOMMEND
    assert decision.reason == DecisionReason.BLOCKED_BY_MIN_BETWEEN_ON
    assert decision.event.extra["remaining_ms"] == 20_000
    assert len(publisher.calls) == 1
    assert len(event_log.events) == 2


def test_repeated_telemetry_after_between_on_window_is_no_action(controller, clock, publisher):
    controller.handle_telemetry(telemetry(28))
    clock.advance(31_000)

    decision = controller.handle_telemetry(telemetry(28))

    assert decision.reason == DecisionReason.NO_ACTION
    assert len(publisher.calls) == 1


def test_on_blocked_shortly_after_off(controller, clock, state_manager, publisher):
    # Arrange: relay went OFF two seconds ago
    state_manager.force_state(
        "A", relay_state=False, last_on_ts=T0 - timedelta(minutes=10), last_off_ts=T0 - timedelta(seconds=2)
    )

    # Act
    blocked = controller.handle_telemetry(telemetry(28))
    clock.advance(3_000)
    allowed = controller.handle_telemetry(telemetry(28))

    # Assert
    assert blocked.reason == DecisionReason.BLOCKED_AFTER_OFF_WAIT
    assert blocked.event.extra["remaining_ms"] == 3_000
    assert allowed.action == IrrigationAction.ON
    assert publisher.calls == [("esp32/relay1", RelayCommand.ON)]


def test_on_uses_between_on_gate_when_no_off_since_last_on(controller, state_manager):
    state_manager.force_state("A", relay_state=False, last_on_ts=T0 - timedelta(seconds=20))

    decision = controller.handle_telemetry(telemetry(28))

    assert decision.reason == DecisionReason.BLOCKED_BY_MIN_BETWEEN_ON
    assert decision.event.extra["remaining_ms"] == 10_000


# ---------------------- OFF path ----------------------

def test_min_on_time_is_enforced(controller, clock, publisher):
    controller.handle_telemetry(telemetry(28))
    clock.advance(1_000)

    early = controller.handle_telemetry(telemetry(50))
    clock.advance(60_000)
    late = controller.handle_telemetry(telemetry(50))

    assert early.action == IrrigationAction.RECOMMEND
    assert early.reason == DecisionReason.MIN_ON_NOT_ELAPSED
    assert early.event.extra["remaining_ms"] == 59_000
    assert late.action == IrrigationAction.OFF
    assert late.reason == DecisionReason.SOIL_ABOVE_THRESHOLD_OFF
    assert publisher.calls[-1] == ("esp32/relay1", RelayCommand.OFF)


def test_off_blocked_by_min_interval_between_off(controller, state_manager, publisher):
    state_manager.force_state(
        "A", relay_state=True, last_on_ts=T0 - timedelta(minutes=2), last_off_ts=T0 - timedelta(seconds=2)
    )

    decision = controller.handle_telemetry(telemetry(50))

    assert decision.reason == DecisionReason.MIN_INTERVAL_BETWEEN_OFF_NOT_ELAPSED
    assert publisher.calls == []


def test_off_commits_state(controller, state_manager):
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(minutes=2))

    decision = controller.handle_telemetry(telemetry(50))

    state = state_manager.get("A")
    assert decision.action == IrrigationAction.OFF
    assert state.relay_state is False
    assert state.last_off_ts == T0
    assert state.last_on_ts == T0 - timedelta(minutes=2)


def test_repeated_off_telemetry_is_blocked(controller, clock, state_manager, publisher):
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(minutes=2))
    controller.handle_telemetry(telemetry(50))
    clock.advance(2_000)

    decision = controller.handle_telemetry(telemetry(50))

    assert decision.reason == DecisionReason.MIN_INTERVAL_BETWEEN_OFF_NOT_ELAPSED
    assert len(publisher.calls) == 1


# ---------------------- Watchdog ----------------------

@pytest.mark.parametrize("soil", [5, 28, 32, 50, "n/a"])
def test_watchdog_forces_off_for_any_soil_value(controller, state_manager, publisher, soil):
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(hours=4, milliseconds=1))

    decision = controller.handle_telemetry(telemetry(soil))

    assert decision.action == IrrigationAction.OFF
    assert decision.reason == DecisionReason.WATCHDOG_FORCED_OFF
    assert publisher.calls == [("esp32/relay1", RelayCommand.OFF)]
    assert state_manager.get("A").relay_state is False


def test_watchdog_not_triggered_at_exactly_max_on(controller, state_manager):
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(hours=4))

    decision = controller.handle_telemetry(telemetry(32))

    assert decision.reason == DecisionReason.NO_ACTION


def test_watchdog_treats_missing_on_timestamp_as_expired(controller, state_manager):
    state_manager.force_state("A", relay_state=True)

    decision = controller.handle_telemetry(telemetry(32))

    assert decision.reason == DecisionReason.WATCHDOG_FORCED_OFF


def test_watchdog_publish_failure_keeps_state(controller, state_manager, publisher):
    publisher.deliver = False
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(hours=5))

    decision = controller.handle_telemetry(telemetry(32))

    assert decision.action == IrrigationAction.RECOMMEND
    assert decision.reason == DecisionReason.PUBLISH_FAILED_WATCHDOG_OFF
    assert state_manager.get("A").relay_state is True


# ---------------------- Recommendations ----------------------

@pytest.mark.parametrize("soil", [None, "abc", "", True])
def test_non_numeric_soil_is_recommendation(controller, publisher, soil):
    decision = controller.handle_telemetry(telemetry(soil))

    assert decision.action == IrrigationAction.RECOMMEND
    assert decision.reason == DecisionReason.NO_NUMERIC_SOIL
    assert publisher.calls == []


def test_soil_inside_band_is_no_action(controller, publisher, event_log):
    decision = controller.handle_telemetry(telemetry(32))

    assert decision.reason == DecisionReason.NO_ACTION
    assert not decision.actuated
    assert publisher.calls == []
    assert len(event_log.events) == 1


def test_publish_failure_leaves_state_untouched(controller, publisher, state_manager):
    publisher.deliver = False

    decision = controller.handle_telemetry(telemetry(28))

    state = state_manager.get("A")
    assert decision.action == IrrigationAction.RECOMMEND
    assert decision.reason == DecisionReason.PUBLISH_FAILED_ON
    assert decision.event.extra["publishResults"]["failures"]["plain"] == "timeout"
    assert state.relay_state is False
    assert state.last_on_ts is None
    assert state.last_action_ts is None
    assert state.last_telemetry["soilPct"] == 28


def test_recommendation_does_not_move_timestamps(controller, state_manager):
    controller.handle_telemetry(telemetry(32))

    state = state_manager.get("A")
    assert state.last_action_ts is None
    assert state.last_on_ts is None
    assert state.last_off_ts is None


def test_manual_lock_skips_automatic_decisions(controller, state_manager, publisher):
    state_manager.set_manual_lock("A", True)
    state_manager.force_state("A", relay_state=True, last_on_ts=T0 - timedelta(hours=5))

    decision = controller.handle_telemetry(telemetry(5))

    assert decision.reason == DecisionReason.MANUAL_LOCK_ACTIVE
    assert publisher.calls == []
    assert state_manager.get("A").last_telemetry["soilPct"] == 5


@pytest.mark.parametrize("soil", [5, 28, 32, 50, None])
def test_exactly_one_event_per_telemetry(controller, event_log, soil):
    controller.handle_telemetry(telemetry(soil))

    assert len(event_log.events) == 1


# ---------------------- Operator force ----------------------

def test_force_actions_bypass_interlocks(controller, clock, state_manager, publisher):
    on = controller.force_action("A", RelayCommand.ON)
    clock.advance(1_000)
    off = controller.force_action("A", RelayCommand.OFF)

    assert on.action == IrrigationAction.FORCE_ON
    assert on.reason == DecisionReason.OPERATOR_FORCE_ON
    assert off.action == IrrigationAction.FORCE_OFF
    assert off.reason == DecisionReason.OPERATOR_FORCE_OFF
    assert [c for _, c in publisher.calls] == [RelayCommand.ON, RelayCommand.OFF]

    state = state_manager.get("A")
    assert state.relay_state is False
    assert state.last_on_ts == T0
    assert state.last_off_ts == T0 + timedelta(seconds=1)


def test_force_action_publish_failure(controller, publisher, state_manager):
    publisher.deliver = False

    decision = controller.force_action("A", RelayCommand.ON)

    assert decision.action == IrrigationAction.RECOMMEND
    assert decision.reason == DecisionReason.PUBLISH_FAILED_FORCE_ON
    assert state_manager.get("A").relay_state is False


# ---------------------- Collaborators ----------------------

def test_unknown_device_uses_templated_relay_topic(controller, publisher):
    controller.handle_telemetry(telemetry(28, device_id="zone-7"))

    assert publisher.calls == [("esp32/relay/zone-7", RelayCommand.ON)]


def test_forecast_failure_is_tolerated(clock, publisher, event_log, state_manager):
    forecast = FakeForecastProvider(error=RuntimeError("network down"))
    controller = IrrigationController(
        config=ControllerConfig(),
        state_manager=state_manager,
        event_log=event_log,
        crop_profiles=CropProfileRepository(engine=None),
        relay_publisher=publisher,
        forecast_provider=forecast,
        clock=clock,
    )

    decision = controller.handle_telemetry(telemetry(28, lat=50.1, lon=14.4))

    assert forecast.calls == [(50.1, 14.4)]
    assert decision.action == IrrigationAction.ON
    assert decision.event.forecast is None


def test_forecast_is_not_fetched_without_location(clock, publisher, event_log, state_manager):
    forecast = FakeForecastProvider(snapshot=ForecastSnapshot(daily_rain_mm=(10.0,)))
    controller = IrrigationController(
        config=ControllerConfig(),
        state_manager=state_manager,
        event_log=event_log,
        crop_profiles=CropProfileRepository(engine=None),
        relay_publisher=publisher,
        forecast_provider=forecast,
        clock=clock,
    )

    controller.handle_telemetry(telemetry(28))

    assert forecast.calls == []


def test_forecast_is_recorded_in_event(clock, publisher, event_log, state_manager):
    snapshot = ForecastSnapshot(daily_rain_mm=(4.0, 0.0), current_temp=18.0)
    controller = IrrigationController(
        config=ControllerConfig(),
        state_manager=state_manager,
        event_log=event_log,
        crop_profiles=CropProfileRepository(engine=None),
        relay_publisher=publisher,
        forecast_provider=FakeForecastProvider(snapshot=snapshot),
        clock=clock,
    )

    decision = controller.handle_telemetry(telemetry(32, lat=50.1, lon=14.4))

    assert decision.event.forecast == {"daily_rain_mm": [4.0, 0.0], "current_temp": 18.0}
    assert decision.event.details["rain24"] == 4.0
    assert decision.event.details["tDay"] == 18.0


def test_query_threshold_uses_latest_telemetry(controller):
    controller.handle_telemetry(telemetry(32, crop="maize", temperature=35))

    result = controller.query_threshold(device_id="A")

    assert result.details["crop"] == "maize"
    assert result.details["tDay"] == 35
    assert (result.threshold_on, result.threshold_off) == (28, 33)


def test_query_threshold_without_device_uses_defaults(controller):
    result = controller.query_threshold(crop="tomato")

    assert (result.threshold_on, result.threshold_off) == (30, 35)
