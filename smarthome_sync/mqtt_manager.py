"""
MQTT client management for the SmartHome sync bridge.

paho-mqtt runs its network loop in a background thread. Its callbacks only
hand data over to the asyncio side through two queues: `messages` carries
raw (topic, payload) pairs and `status_events` carries ConnectionEvents.
A `None` item on either queue means the channel has been closed.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple, Union

import paho.mqtt.client as mqtt

from .data_models import DEFAULT_NAMESPACE, ConnectionEvent

logger = logging.getLogger(__name__)

APP_STATUS_ONLINE = "online"
APP_STATUS_OFFLINE = "offline"


class MQTTManager:
    """Owns the single broker connection"""

    def __init__(self, broker: str, port: int = 8883,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 client_id: str = "smarthome_bridge",
                 namespace: str = DEFAULT_NAMESPACE,
                 use_tls: bool = True,
                 keepalive: int = 60):
        self.broker = broker
        self.port = port
        self.client_id = client_id
        self.namespace = namespace
        self.keepalive = keepalive
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id,
                                  clean_session=True)

        if username and password:
            self.client.username_pw_set(username, password)

        if use_tls:
            self.client.tls_set()

        self.client.will_set(self.status_topic, APP_STATUS_OFFLINE, qos=1, retain=False)
        self.client.reconnect_delay_set(min_delay=1, max_delay=120)

        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect
        self.client.on_publish = self._on_publish
        self.client.on_subscribe = self._on_subscribe
        self.client.on_log = self._on_log

        self.messages: "asyncio.Queue[Optional[Tuple[str, str]]]" = asyncio.Queue()
        self.status_events: "asyncio.Queue[Optional[ConnectionEvent]]" = asyncio.Queue()
        self.connected = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def status_topic(self) -> str:
        return f"{self.namespace}/app/status"

    @property
    def subscription_topic(self) -> str:
        return f"{self.namespace}/#"

    @property
    def is_connected(self) -> bool:
        return self.connected and self.client.is_connected()

    async def connect(self):
        """Start connecting; the outcome arrives on `status_events`"""
        self._loop = asyncio.get_running_loop()
        self._closed = False
        try:
            self.client.connect_async(self.broker, self.port, self.keepalive)
            self.client.loop_start()
            logger.info(f"Connecting to MQTT broker at {self.broker}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._emit_status(ConnectionEvent("connect_failed", str(e)))

    async def disconnect(self):
        """Publish the offline status, then disconnect from the broker"""
        if self.is_connected:
            self.client.publish(self.status_topic, APP_STATUS_OFFLINE, qos=1, retain=False)
            self.client.disconnect()
        self.client.loop_stop()
        if self.connected:
            self.connected = False
            self._emit_status(ConnectionEvent("disconnected", "client disconnect"))
        logger.info("Disconnected from MQTT broker")

    def close(self):
        """Close both channels so their consumers stop"""
        if self._closed:
            return
        self._closed = True
        self._emit(self.messages, None)
        self._emit(self.status_events, None)

    def _emit(self, queue: asyncio.Queue, item):
        if self._loop is None or self._loop.is_closed():
            queue.put_nowait(item)
            return
        try:
            self._loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            # Loop shut down between the check and the call
            logger.debug("Event loop closed, dropping transport event")

    def _emit_status(self, event: ConnectionEvent):
        self._emit(self.status_events, event)

    def _on_log(self, client, userdata, level, buf):
        """MQTT client logging callback"""
        logger.debug(f"MQTT: {buf}")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """MQTT connection callback"""
        if reason_code.is_failure:
            logger.error(f"Connection failed: {reason_code}")
            self.connected = False
            self._emit_status(ConnectionEvent("connect_failed", str(reason_code)))
            return

        logger.info("Connected to MQTT broker")
        self.connected = True

        client.subscribe(self.subscription_topic, qos=1)
        logger.info(f"Subscribed to {self.subscription_topic}")

        client.publish(self.status_topic, APP_STATUS_ONLINE, qos=1, retain=False)
        self._emit_status(ConnectionEvent("connected"))

    def _on_connect_fail(self, client, userdata):
        logger.error(f"Could not reach MQTT broker at {self.broker}:{self.port}")
        self._emit_status(ConnectionEvent("connect_failed", "broker unreachable"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """MQTT disconnection callback"""
        self.connected = False
        logger.warning(f"Disconnected from MQTT broker ({reason_code})")

        if reason_code.is_failure:
            logger.info("Unexpected disconnection, will auto-reconnect")

        self._emit_status(ConnectionEvent("disconnected", str(reason_code)))

    def _on_message(self, client, userdata, msg):
        """MQTT message callback"""
        payload = msg.payload.decode('utf-8', errors='replace')
        logger.debug(f"Message arrived - Topic: {msg.topic}, Payload: {payload}")
        self._emit(self.messages, (msg.topic, payload))

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"Publish {mid} failed: {reason_code}")
            self._emit_status(ConnectionEvent("publish_failed", f"mid={mid} {reason_code}"))
        else:
            logger.debug(f"Message delivery complete (mid={mid})")
            self._emit_status(ConnectionEvent("published", f"mid={mid}"))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        failures = [str(rc) for rc in reason_code_list if rc.is_failure]
        if failures:
            logger.error(f"Failed to subscribe to topics: {', '.join(failures)}")
            self._emit_status(ConnectionEvent("subscribe_failed", ", ".join(failures)))

    async def publish(self, topic: str, payload: Union[str, Dict[str, Any]],
                      qos: int = 0, retain: bool = False) -> bool:
        """Submit a publish; True means queued by the client, not acknowledged"""
        if not self.is_connected:
            logger.warning("Cannot publish - not connected to broker")
            return False

        if not isinstance(payload, str):
            payload = json.dumps(payload)

        try:
            result = self.client.publish(topic, payload, qos, retain)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Error publishing message to {topic}: {e}")
            self._emit_status(ConnectionEvent("publish_failed", str(e)))
            return False

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.debug(f"Published to {topic}")
            return True

        logger.error(f"Failed to publish to {topic}: {result.rc}")
        self._emit_status(ConnectionEvent("publish_failed", mqtt.error_string(result.rc)))
        return False
