"""
Main Bridge Coordinator

Wires the MQTT transport, message decoder, device registry, threshold
evaluator, command dispatcher, history aggregator and settings store
into one running service.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .commands import CommandDispatcher, DispatchError, NotConnectedError
from .data_models import (
    AlertEvent,
    BridgeConfig,
    ConnectionEvent,
    Device,
    HistoryRecord,
    OutboundCommand,
    SensorUpdate,
    ThresholdConfig,
    TimeRange,
)
from .decoder import MessageDecoder
from .history import HistoryAggregator
from .mqtt_manager import MQTTManager
from .registry import DeviceRegistry
from .settings_store import SettingsStore
from .thresholds import ThresholdEvaluator

logger = logging.getLogger(__name__)


class SmartHomeBridge:
    """Main bridge coordinator class"""

    def __init__(self, config: BridgeConfig,
                 transport: Optional[MQTTManager] = None,
                 settings: Optional[SettingsStore] = None,
                 history: Optional[HistoryAggregator] = None):
        self.config = config
        self.settings = settings or SettingsStore(config.settings_path)
        self._resolve_credentials()

        self.registry = DeviceRegistry(name_store=self.settings)
        self.decoder = MessageDecoder(config.namespace)
        self.evaluator = ThresholdEvaluator()
        self.mqtt = transport or MQTTManager(
            broker=config.mqtt_broker,
            port=config.mqtt_port,
            username=config.mqtt_username,
            password=config.mqtt_password,
            client_id=config.mqtt_client_id,
            namespace=config.namespace,
            use_tls=config.mqtt_tls,
        )
        self.dispatcher = CommandDispatcher(self.mqtt, config.namespace)

        if history is None and config.history_url:
            history = HistoryAggregator(
                config.history_url,
                auth_token=config.history_auth_token,
                timeout_seconds=config.history_timeout_seconds,
            )
        self.history = history
        if self.history is not None:
            self.history.add_error_callback(self._on_history_error)

        # State
        self.running = False
        self.connected = False
        self.error_message: Optional[str] = None
        self.chart_data: Dict[str, List[HistoryRecord]] = {}
        self._alert_callbacks: List[Callable[[AlertEvent], None]] = []
        self._history_seq = 0
        self._latest_history_request: Dict[str, int] = {}
        self._consumer_tasks: List[asyncio.Task] = []
        self._history_tasks: Set[asyncio.Task] = set()

        self._command_handlers = {
            "set_device": lambda device_id, p: self.dispatcher.set_device(device_id, p["device"], p["state"]),
            "set_devices": lambda device_id, p: self.dispatcher.set_devices(device_id, p["fan"], p["light"], p["ac"]),
            "set_mode": lambda device_id, p: self.dispatcher.set_mode(device_id, p["mode"]),
            "set_interval": lambda device_id, p: self.dispatcher.set_interval(device_id, p["interval"]),
            "reboot": lambda device_id, p: self.dispatcher.reboot(device_id),
        }

    def _resolve_credentials(self):
        """Fall back to the last-used credentials, or remember the new ones"""
        config = self.config
        if config.mqtt_username and config.mqtt_password:
            self.settings.save_mqtt_credentials(
                config.mqtt_broker, config.mqtt_port, config.mqtt_username, config.mqtt_password
            )
            return

        saved = self.settings.get_mqtt_credentials()
        if saved and saved.get("username") and saved.get("password"):
            logger.info(f"Using saved MQTT credentials for {saved.get('broker')}")
            config.mqtt_broker = saved.get("broker") or config.mqtt_broker
            config.mqtt_port = int(saved.get("port") or config.mqtt_port)
            config.mqtt_username = saved["username"]
            config.mqtt_password = saved["password"]

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.mqtt_username and self.config.mqtt_password)

    def add_alert_callback(self, callback: Callable[[AlertEvent], None]):
        """Add callback for delivered threshold alerts"""
        self._alert_callbacks.append(callback)

    async def start(self) -> bool:
        """Start the bridge"""
        if self.running:
            logger.warning("Bridge already running")
            return True

        if not self.has_credentials:
            self.error_message = "Configure MQTT credentials"
            logger.error("MQTT credentials missing, not connecting")
            return False

        logger.info("Starting SmartHome bridge...")

        self._consumer_tasks = [
            asyncio.create_task(self._message_loop()),
            asyncio.create_task(self._status_loop()),
        ]
        await self.mqtt.connect()

        self.running = True
        logger.info("Bridge consumer loops started")
        return True

    async def stop(self):
        """Stop the bridge"""
        logger.info("Stopping SmartHome bridge...")
        self.running = False

        await self.mqtt.disconnect()
        self.mqtt.close()

        if self._consumer_tasks:
            _, pending = await asyncio.wait(self._consumer_tasks, timeout=5)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._consumer_tasks = []

        for task in list(self._history_tasks):
            task.cancel()
        await asyncio.gather(*self._history_tasks, return_exceptions=True)

        self.connected = False

    # Inbound pipeline

    async def _message_loop(self):
        """Single consumer of the transport's message channel"""
        while True:
            item = await self.mqtt.messages.get()
            if item is None:
                break
            topic, payload = item
            try:
                self.handle_message(topic, payload)
            except Exception as e:
                logger.error(f"Error handling message on {topic}: {e}")
        logger.debug("Message loop finished")

    async def _status_loop(self):
        """Single consumer of the transport's connection-status channel"""
        while True:
            event = await self.mqtt.status_events.get()
            if event is None:
                break
            self.handle_connection_event(event)
        logger.debug("Status loop finished")

    def handle_message(self, topic: str, payload: str) -> Optional[Device]:
        """Decode, apply and evaluate one message; returns the updated device"""
        event = self.decoder.decode(topic, payload)
        if event is None:
            return None

        previous = self.registry.get_device(event.device_id)
        device = self.registry.apply_event(event)

        if isinstance(event, SensorUpdate):
            alerts = self.evaluator.evaluate(
                previous.sensors if previous else None,
                device.sensors,
                device.name,
                self.settings.get_thresholds(),
                device_id=device.device_id,
            )
            self._deliver_alerts(alerts)

        return device

    def _deliver_alerts(self, alerts: List[AlertEvent]):
        if not alerts:
            return
        if not self.settings.is_alerts_enabled():
            logger.debug(f"{len(alerts)} alert(s) suppressed, notifications disabled")
            return

        for alert in alerts:
            logger.warning(f"Alert: {alert.device_name} - {alert.message}")
            for callback in self._alert_callbacks:
                try:
                    callback(alert)
                except Exception as e:
                    logger.error(f"Error in alert callback: {e}")

    def handle_connection_event(self, event: ConnectionEvent):
        """Reflect a transport status change in the bridge state"""
        if event.kind == "connected":
            logger.info("MQTT connected successfully")
            self.connected = True
            self.error_message = None
        elif event.kind == "disconnected":
            logger.warning(f"MQTT connection lost: {event.detail}")
            self.connected = False
        elif event.kind == "connect_failed":
            self.connected = False
            self.error_message = "Connection failed"
        elif event.kind == "published":
            logger.debug(f"Publish acknowledged ({event.detail})")
            if self.error_message == "Command failed":
                self.error_message = None
        elif event.kind == "publish_failed":
            self.error_message = "Command failed"
        elif event.kind == "subscribe_failed":
            self.error_message = "Subscribe failed"
        else:
            logger.debug(f"Unhandled connection event: {event}")

    # Commands

    async def send_command(self, device_id: str, command: str,
                           params: Optional[Dict[str, Any]] = None) -> OutboundCommand:
        """Send a named command with its JSON-style parameters.

        Raises:
            ValueError: unknown command or missing/invalid parameters
            DispatchError: the command could not be published
        """
        handler = self._command_handlers.get(command)
        if handler is None:
            raise ValueError(f"Unknown command '{command}'")

        try:
            return await handler(device_id, params or {})
        except KeyError as e:
            raise ValueError(f"Missing parameter {e} for '{command}'")
        except NotConnectedError:
            self.error_message = "Not connected"
            raise
        except DispatchError:
            self.error_message = "Command failed"
            raise

    async def control_device(self, device_id: str, actuator: str, on: bool) -> OutboundCommand:
        return await self.send_command(device_id, "set_device", {"device": actuator, "state": on})

    async def control_all_devices(self, device_id: str, fan: bool, light: bool, ac: bool) -> OutboundCommand:
        return await self.send_command(device_id, "set_devices", {"fan": fan, "light": light, "ac": ac})

    async def set_system_mode(self, device_id: str, on: bool) -> OutboundCommand:
        return await self.send_command(device_id, "set_mode", {"mode": on})

    async def set_sensor_interval(self, device_id: str, seconds: int) -> OutboundCommand:
        return await self.send_command(device_id, "set_interval", {"interval": seconds})

    async def reboot_device(self, device_id: str) -> OutboundCommand:
        return await self.send_command(device_id, "reboot")

    # Settings

    def rename_device(self, device_id: str, name: str) -> Optional[Device]:
        return self.registry.rename(device_id, name)

    def get_thresholds(self) -> ThresholdConfig:
        return self.settings.get_thresholds()

    def save_thresholds(self, thresholds: ThresholdConfig):
        self.settings.save_thresholds(thresholds)

    def set_alerts_enabled(self, enabled: bool):
        self.settings.set_alerts_enabled(enabled)

    # History

    async def fetch_history(self, device_id: str,
                            time_range: TimeRange = TimeRange.DAY) -> List[HistoryRecord]:
        """Fetch history for a device; only the newest request updates chart_data"""
        if self.history is None:
            self.error_message = "History store not configured"
            return []

        self._history_seq += 1
        request_id = self._history_seq
        self._latest_history_request[device_id] = request_id

        records = await self.history.fetch_range(device_id, time_range, limit=self.config.history_limit)

        if self._latest_history_request.get(device_id) == request_id:
            self.chart_data[device_id] = records
        else:
            logger.debug(f"Discarding stale history response for {device_id}")
        return records

    def request_history(self, device_id: str, time_range: TimeRange = TimeRange.DAY) -> asyncio.Task:
        """Start a history fetch in the background"""
        task = asyncio.create_task(self.fetch_history(device_id, time_range))
        self._history_tasks.add(task)
        task.add_done_callback(self._history_tasks.discard)
        return task

    def _on_history_error(self, device_id: str, message: str):
        self.error_message = "Load failed"

    # Status

    def clear_error(self):
        self.error_message = None

    def get_status(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "running": self.running,
            "error": self.error_message,
            "broker": f"{self.config.mqtt_broker}:{self.config.mqtt_port}",
            "namespace": self.config.namespace,
            "device_count": len(self.registry),
            "commands_sent": self.dispatcher.commands_sent,
            "alerts_enabled": self.settings.is_alerts_enabled(),
        }
