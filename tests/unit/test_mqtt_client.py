import threading

import pytest
import paho.mqtt.client as mqtt

from types import SimpleNamespace

from smart_irrigation_controller.controller.config.controller_config import ControllerConfig, MqttSettings
from smart_irrigation_controller.controller.core.crop_profile_repository import CropProfileRepository
from smart_irrigation_controller.controller.core.device_state_manager import DeviceStateManager
from smart_irrigation_controller.controller.core.enums import IrrigationAction
from smart_irrigation_controller.controller.core.irrigation_controller import IrrigationController
from smart_irrigation_controller.controller.core.relay_publisher import RelayPublisher
from smart_irrigation_controller.controller.exceptions import RelayPublishError
from smart_irrigation_controller.controller.network.mqtt_client import MQTTClient
from smart_irrigation_controller.controller.network.telemetry_handler import TelemetryHandler


# ---------------------- Fakes ----------------------

class FakeMessageInfo:
    def __init__(self, rc=mqtt.MQTT_ERR_SUCCESS, published=True):
        self.rc = rc
        self._published = published
        self.waited_for = None

    def wait_for_publish(self, timeout=None):
        self.waited_for = timeout

    def is_published(self):
        return self._published


class FakePahoClient:
    def __init__(self, info):
        self.info = info
        self.published = []
        self.subscribed = []

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return self.info

    def subscribe(self, topic):
        self.subscribed.append(topic)


class LoopBoundInfo:
    """Acknowledgement that only arrives while the network loop is idle, as with a real paho loop."""

    def __init__(self, loop_idle):
        self.rc = mqtt.MQTT_ERR_SUCCESS
        self._loop_idle = loop_idle
        self._acked = False

    def wait_for_publish(self, timeout=None):
        self._acked = self._loop_idle.wait(timeout)

    def is_published(self):
        return self._acked


class LoopBoundPahoClient:
    """Runs message callbacks on a simulated network thread that is busy until the callback returns."""

    def __init__(self):
        self.loop_idle = threading.Event()
        self.loop_idle.set()
        self.published = []

    def deliver(self, on_message, topic, payload):
        def network_loop():
            self.loop_idle.clear()
            try:
                on_message(self, None, SimpleNamespace(topic=topic, payload=payload))
            finally:
                self.loop_idle.set()

        thread = threading.Thread(target=network_loop)
        thread.start()
        thread.join(timeout=10)

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return LoopBoundInfo(self.loop_idle)


class FakeEventLog:
    def __init__(self):
        self.events = []

    def append(self, event):
        self.events.append(event)
        return True

    def recent(self, device_id, limit=50):
        return []


class RecordingHandler:
    def __init__(self):
        self.messages = []

    def handle(self, topic, payload):
        self.messages.append((topic, payload))


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def settings():
    return MqttSettings(telemetry_topic="farm/telemetry", publish_timeout_s=1.5)


def make_client(handler, settings, info):
    client = MQTTClient(handler, settings)
    client.client = FakePahoClient(info)
    return client


# ---------------------- Tests ----------------------

def test_publish_waits_for_acknowledgement(handler, settings):
    info = FakeMessageInfo()
    client = make_client(handler, settings, info)

    client.publish("esp32/relay1", "ON")

    assert client.client.published == [("esp32/relay1", "ON", 1)]
    assert info.waited_for == 1.5


def test_publish_rejected_raises(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo(rc=mqtt.MQTT_ERR_NO_CONN))

    with pytest.raises(RelayPublishError) as exc:
        client.publish("esp32/relay1", "ON")

    assert exc.value.topic == "esp32/relay1"


def test_publish_not_acknowledged_raises(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo(published=False))

    with pytest.raises(RelayPublishError):
        client.publish("esp32/relay1", "OFF")


def test_incoming_message_is_handled_by_dispatcher(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo())
    client.start_dispatcher()

    client._on_message(None, None, SimpleNamespace(topic="farm/telemetry", payload=b'{"deviceId": "A"}'))
    client.stop()

    assert handler.messages == [("farm/telemetry", b'{"deviceId": "A"}')]


def test_messages_are_handled_in_arrival_order(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo())
    client.start_dispatcher()

    for n in range(5):
        client._on_message(None, None, SimpleNamespace(topic="farm/telemetry", payload=str(n).encode()))
    client.stop()

    assert [payload for _, payload in handler.messages] == [b"0", b"1", b"2", b"3", b"4"]


def test_handler_error_does_not_stop_dispatcher(settings):
    class FlakyHandler(RecordingHandler):
        def handle(self, topic, payload):
            if payload == b"bad":
                raise RuntimeError("boom")
            super().handle(topic, payload)

    handler = FlakyHandler()
    client = make_client(handler, settings, FakeMessageInfo())
    client.start_dispatcher()

    client._on_message(None, None, SimpleNamespace(topic="farm/telemetry", payload=b"bad"))
    client._on_message(None, None, SimpleNamespace(topic="farm/telemetry", payload=b"good"))
    client.stop()

    assert handler.messages == [("farm/telemetry", b"good")]


def test_message_callback_returns_before_handling(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo())

    # No dispatcher running: the callback only queues
    client._on_message(None, None, SimpleNamespace(topic="farm/telemetry", payload=b"{}"))

    assert handler.messages == []


def test_subscribes_to_telemetry_on_connect(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo())

    client._on_connect(client.client, None, None, SimpleNamespace(is_failure=False), None)

    assert client.client.subscribed == ["farm/telemetry"]


def test_no_subscription_on_failed_connect(handler, settings):
    client = make_client(handler, settings, FakeMessageInfo())

    client._on_connect(client.client, None, None, SimpleNamespace(is_failure=True), None)

    assert client.client.subscribed == []


def test_telemetry_cycle_can_wait_for_relay_acknowledgement():
    # Arrange
    settings = MqttSettings(telemetry_topic="esp32/telemetry", publish_timeout_s=1.0)
    paho = LoopBoundPahoClient()
    event_log = FakeEventLog()
    state_manager = DeviceStateManager(state_file=None)
    telemetry_handler = TelemetryHandler(None)
    client = MQTTClient(telemetry_handler, settings)
    client.client = paho
    telemetry_handler.irrigation_controller = IrrigationController(
        config=ControllerConfig(),
        state_manager=state_manager,
        event_log=event_log,
        crop_profiles=CropProfileRepository(engine=None),
        relay_publisher=RelayPublisher(client.publish, retry_count=0),
    )
    client.start_dispatcher()

    # Act
    paho.deliver(client._on_message, "esp32/telemetry", b'{"deviceId": "A", "soilPct": 28}')
    client.stop()

    # Assert
    assert state_manager.get("A").relay_state is True
    assert [e.action for e in event_log.events] == [IrrigationAction.ON]
    assert [topic for topic, _, _ in paho.published] == ["esp32/relay1"] * 3
