import queue
import threading
import paho.mqtt.client as mqtt

from smart_irrigation_controller.controller.config.controller_config import MqttSettings
from smart_irrigation_controller.controller.exceptions import RelayPublishError
from smart_irrigation_controller.controller.utils.logger import get_logger

_STOP = object()


class MQTTClient(threading.Thread):
    """
    Broker connection of the controller: receives device telemetry and publishes relay commands.

    The handler must provide `handle(topic, payload)`. Messages are queued by the paho network thread
    and handled in order on a separate dispatcher thread, so the handler may publish and wait for
    acknowledgements, which only the network loop can process.
    """

    def __init__(self, handler, settings: MqttSettings):
        super().__init__(daemon=True)
        self.handler = handler
        self.settings = settings
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=settings.client_id)
        self.logger = get_logger("MQTTClient")
        self._stop_event = threading.Event()
        self._inbox: queue.Queue = queue.Queue()
        self._dispatcher: threading.Thread | None = None

        if settings.username:
            self.client.username_pw_set(settings.username, settings.password)

        # Assign MQTT callbacks
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self.logger.info(
            f"MQTTClient initialized, broker={settings.broker_host}:{settings.broker_port}, "
            f"telemetry topic={settings.telemetry_topic}"
        )


    # MQTT callbacks
    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self.logger.error(f"MQTT connection failed: {reason_code}")
            return
        self.logger.info(f"Connected to broker. Subscribing to {self.settings.telemetry_topic}")
        client.subscribe(self.settings.telemetry_topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self.logger.warning(f"Disconnected from broker: {reason_code}. paho will reconnect.")

    def _on_message(self, client, userdata, msg):
        self.logger.debug(f"Received message on {msg.topic} ({len(msg.payload)} bytes)")
        # Never handle here: publish() waits on acks that only this thread can process.
        self._inbox.put((msg.topic, msg.payload))


    # Dispatcher
    def start_dispatcher(self) -> None:
        """Start the worker that hands queued messages to the handler, if not already running."""
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="TelemetryDispatcher", daemon=True)
        self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._inbox.get()
            if item is _STOP:
                break
            topic, payload = item
            try:
                self.handler.handle(topic, payload)
            except Exception as e:
                self.logger.error(f"Handler failed for message on {topic}: {e}", exc_info=True)
        self.logger.debug("Dispatcher stopped.")


    # Publisher
    def publish(self, topic: str, payload: str) -> None:
        """
        Publish with QoS 1 and wait for the broker acknowledgement.

        :raises RelayPublishError: if the message was not accepted or not acknowledged in time.
        """
        try:
            info = self.client.publish(topic, payload, qos=1)
        except (ValueError, RuntimeError) as e:
            raise RelayPublishError(f"Publish to {topic} rejected: {e}", topic) from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RelayPublishError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}", topic)
        try:
            info.wait_for_publish(timeout=self.settings.publish_timeout_s)
        except (ValueError, RuntimeError) as e:
            raise RelayPublishError(f"Publish to {topic} failed: {e}", topic) from e
        if not info.is_published():
            raise RelayPublishError(
                f"Publish to {topic} not acknowledged within {self.settings.publish_timeout_s}s", topic
            )
        self.logger.debug(f"Published to {topic}: {payload}")


    # Thread main loop
    def run(self):
        self.start_dispatcher()
        try:
            self.client.connect(self.settings.broker_host, self.settings.broker_port, keepalive=60)
        except OSError as e:
            self.logger.error(f"Failed to connect to MQTT broker: {e}")
            return

        self.client.loop_start()
        self.logger.info("MQTT loop started.")
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(1)
        finally:
            self.client.loop_stop()
            self.client.disconnect()
            self.logger.info("MQTT client stopped.")

    def stop(self, timeout: float = 5.0):
        """Stop the network loop and let the dispatcher drain messages already queued."""
        self._stop_event.set()
        dispatcher = self._dispatcher
        if dispatcher is not None and dispatcher.is_alive():
            self._inbox.put(_STOP)
            dispatcher.join(timeout=timeout)
            if dispatcher.is_alive():
                self.logger.warning(f"Dispatcher did not stop within {timeout}s.")
