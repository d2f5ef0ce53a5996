"""
Unit tests for SmartHomeBridge.
"""
import asyncio

import pytest

from smarthome_sync.bridge import SmartHomeBridge
from smarthome_sync.commands import NotConnectedError, PublishRejectedError
from smarthome_sync.data_models import (
    BridgeConfig,
    ConnectionEvent,
    HistoryRecord,
    ThresholdConfig,
    TimeRange,
)


class ControlledHistory:
    """History source whose responses are released by the test"""

    def __init__(self):
        self.pending = []
        self.error_callbacks = []

    def add_error_callback(self, callback):
        self.error_callbacks.append(callback)

    async def fetch_range(self, device_id, time_range=TimeRange.DAY, limit=200, now=None):
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future


def history_record(timestamp):
    return HistoryRecord(timestamp=timestamp, temperature=20.0, humidity=50.0,
                         illuminance=100, record_id=str(timestamp))


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def close_channels(mock_mqtt):
    await mock_mqtt.messages.put(None)
    await mock_mqtt.status_events.put(None)


class TestMessagePipeline:
    """Inbound message handling"""

    def test_data_message_updates_registry(self, bridge_instance, sample_data_payload):
        device = bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert device.device_id == "room1"
        assert device.name == "ROOM1"
        assert device.sensors.temperature == 32.5
        assert bridge_instance.registry.get_device("room1") == device

    def test_threshold_alert_delivered_when_enabled(self, bridge_instance, settings_store,
                                                     sample_data_payload):
        settings_store.save_thresholds(ThresholdConfig(temperature_limit=30.0))
        settings_store.set_alerts_enabled(True)
        alerts = []
        bridge_instance.add_alert_callback(alerts.append)

        bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert len(alerts) == 1
        assert alerts[0].metric_name == "Temperature"
        assert alerts[0].device_name == "ROOM1"
        assert alerts[0].formatted_value == "32.5°C"

    def test_alerts_suppressed_when_disabled(self, bridge_instance, sample_data_payload):
        alerts = []
        bridge_instance.add_alert_callback(alerts.append)

        bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert alerts == []

    def test_alert_uses_display_name(self, bridge_instance, settings_store, sample_data_payload):
        settings_store.set_alerts_enabled(True)
        bridge_instance.rename_device("room1", "Kitchen")
        alerts = []
        bridge_instance.add_alert_callback(alerts.append)

        bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert alerts[0].device_name == "Kitchen"

    def test_failing_alert_callback_does_not_break_pipeline(self, bridge_instance, settings_store,
                                                            sample_data_payload):
        settings_store.set_alerts_enabled(True)
        delivered = []

        def broken(alert):
            raise RuntimeError("boom")

        bridge_instance.add_alert_callback(broken)
        bridge_instance.add_alert_callback(delivered.append)

        device = bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert device is not None
        assert len(delivered) == 1

    def test_state_message_does_not_evaluate_thresholds(self, bridge_instance, settings_store):
        settings_store.set_alerts_enabled(True)
        alerts = []
        bridge_instance.add_alert_callback(alerts.append)

        device = bridge_instance.handle_message("SmartHome/room1/state", '{"light":1,"interval":30}')

        assert device.actuators.light is True
        assert device.actuators.sampling_interval_seconds == 30
        assert alerts == []

    def test_app_status_is_not_a_device(self, bridge_instance):
        assert bridge_instance.handle_message("SmartHome/app/status", "online") is None
        assert len(bridge_instance.registry) == 0

    def test_malformed_message_leaves_registry_untouched(self, bridge_instance, sample_data_payload):
        before = bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)

        assert bridge_instance.handle_message("SmartHome/room1/data", "{not json") is None
        assert bridge_instance.registry.get_device("room1") == before


class TestLifecycle:
    """Start/stop and the consumer loops"""

    @pytest.mark.asyncio
    async def test_start_connects_and_consumes(self, bridge_instance, mock_mqtt_manager,
                                               sample_data_payload):
        assert await bridge_instance.start() is True
        mock_mqtt_manager.connect.assert_awaited_once()

        await mock_mqtt_manager.status_events.put(ConnectionEvent("connected"))
        await mock_mqtt_manager.messages.put(("SmartHome/room1/data", sample_data_payload))

        await wait_for(lambda: "room1" in bridge_instance.registry and bridge_instance.connected)

        await close_channels(mock_mqtt_manager)
        await bridge_instance.stop()

        mock_mqtt_manager.disconnect.assert_awaited_once()
        mock_mqtt_manager.close.assert_called_once()
        assert bridge_instance.running is False
        assert bridge_instance.connected is False

    @pytest.mark.asyncio
    async def test_bad_message_does_not_stop_consumer(self, bridge_instance, mock_mqtt_manager,
                                                      sample_data_payload):
        await bridge_instance.start()

        await mock_mqtt_manager.messages.put(("SmartHome/room1/data", "garbage"))
        await mock_mqtt_manager.messages.put(("SmartHome/room2/data", sample_data_payload))

        await wait_for(lambda: "room2" in bridge_instance.registry)
        assert "room1" not in bridge_instance.registry

        await close_channels(mock_mqtt_manager)
        await bridge_instance.stop()

    @pytest.mark.asyncio
    async def test_start_without_credentials(self, temp_db_path, settings_store, mock_mqtt_manager):
        config = BridgeConfig(mqtt_broker="test_broker", settings_path=temp_db_path)
        bridge = SmartHomeBridge(config, transport=mock_mqtt_manager, settings=settings_store)

        assert bridge.has_credentials is False
        assert await bridge.start() is False
        assert bridge.error_message == "Configure MQTT credentials"
        mock_mqtt_manager.connect.assert_not_awaited()

    def test_credentials_are_remembered(self, bridge_instance, temp_db_path, settings_store,
                                        mock_mqtt_manager):
        config = BridgeConfig(mqtt_broker="other", settings_path=temp_db_path)

        bridge = SmartHomeBridge(config, transport=mock_mqtt_manager, settings=settings_store)

        assert bridge.has_credentials is True
        assert config.mqtt_broker == "test_broker"
        assert config.mqtt_username == "user"
        assert config.mqtt_password == "secret"


class TestConnectionEvents:

    def test_connected_clears_error(self, bridge_instance):
        bridge_instance.error_message = "Connection failed"

        bridge_instance.handle_connection_event(ConnectionEvent("connected"))

        assert bridge_instance.connected is True
        assert bridge_instance.error_message is None

    @pytest.mark.parametrize("kind,message", [
        ("connect_failed", "Connection failed"),
        ("publish_failed", "Command failed"),
        ("subscribe_failed", "Subscribe failed"),
    ])
    def test_failures_set_error(self, bridge_instance, kind, message):
        bridge_instance.handle_connection_event(ConnectionEvent(kind, "detail"))

        assert bridge_instance.error_message == message

    def test_acknowledged_publish_clears_command_error(self, bridge_instance):
        bridge_instance.handle_connection_event(ConnectionEvent("publish_failed", "mid=3"))
        assert bridge_instance.error_message == "Command failed"

        bridge_instance.handle_connection_event(ConnectionEvent("published", "mid=4"))

        assert bridge_instance.error_message is None

    def test_acknowledged_publish_keeps_other_errors(self, bridge_instance):
        bridge_instance.error_message = "Load failed"

        bridge_instance.handle_connection_event(ConnectionEvent("published", "mid=5"))

        assert bridge_instance.error_message == "Load failed"

    def test_disconnect(self, bridge_instance):
        bridge_instance.handle_connection_event(ConnectionEvent("connected"))
        bridge_instance.handle_connection_event(ConnectionEvent("disconnected", "network"))

        assert bridge_instance.connected is False
        assert bridge_instance.get_status()["connected"] is False


class TestCommands:

    @pytest.mark.asyncio
    async def test_control_device(self, bridge_instance, mock_mqtt_manager):
        outbound = await bridge_instance.control_device("room1", "fan", True)

        assert outbound.to_payload() == {
            "id": "app_001",
            "command": "set_device",
            "params": {"device": "fan", "state": 1},
        }
        assert mock_mqtt_manager.publish.call_args[0][0] == "SmartHome/room1/command"

    @pytest.mark.asyncio
    async def test_wrappers(self, bridge_instance, mock_mqtt_manager):
        await bridge_instance.control_all_devices("room1", fan=True, light=False, ac=True)
        await bridge_instance.set_system_mode("room1", False)
        outbound = await bridge_instance.set_sensor_interval("room1", 10000)
        await bridge_instance.reboot_device("room1")

        assert outbound.params.interval == 3600
        assert mock_mqtt_manager.publish.await_count == 4
        assert bridge_instance.get_status()["commands_sent"] == 4

    @pytest.mark.asyncio
    async def test_unknown_command(self, bridge_instance, mock_mqtt_manager):
        with pytest.raises(ValueError):
            await bridge_instance.send_command("room1", "self_destruct", {})

        mock_mqtt_manager.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_parameter(self, bridge_instance):
        with pytest.raises(ValueError):
            await bridge_instance.send_command("room1", "set_interval", {})

    @pytest.mark.asyncio
    async def test_not_connected(self, bridge_instance, mock_mqtt_manager):
        mock_mqtt_manager.is_connected = False

        with pytest.raises(NotConnectedError):
            await bridge_instance.reboot_device("room1")

        assert bridge_instance.error_message == "Not connected"
        mock_mqtt_manager.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_publish(self, bridge_instance, mock_mqtt_manager):
        mock_mqtt_manager.publish.return_value = False

        with pytest.raises(PublishRejectedError):
            await bridge_instance.reboot_device("room1")

        assert bridge_instance.error_message == "Command failed"


class TestHistory:

    @pytest.fixture
    def history(self):
        return ControlledHistory()

    @pytest.fixture
    def bridge_with_history(self, bridge_config, settings_store, mock_mqtt_manager, history):
        return SmartHomeBridge(bridge_config, transport=mock_mqtt_manager,
                               settings=settings_store, history=history)

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self, bridge_with_history, history):
        older = [history_record(1000)]
        newer = [history_record(2000), history_record(3000)]

        first = bridge_with_history.request_history("room1", TimeRange.DAY)
        second = bridge_with_history.request_history("room1", TimeRange.WEEK)
        await wait_for(lambda: len(history.pending) == 2)

        history.pending[1].set_result(newer)
        await second
        history.pending[0].set_result(older)
        await first

        assert first.result() == older
        assert bridge_with_history.chart_data["room1"] == newer

    @pytest.mark.asyncio
    async def test_requests_for_other_devices_are_independent(self, bridge_with_history, history):
        first = bridge_with_history.request_history("room1")
        second = bridge_with_history.request_history("room2")
        await wait_for(lambda: len(history.pending) == 2)

        history.pending[0].set_result([history_record(1)])
        history.pending[1].set_result([history_record(2)])
        await asyncio.gather(first, second)

        assert bridge_with_history.chart_data["room1"] == [history_record(1)]
        assert bridge_with_history.chart_data["room2"] == [history_record(2)]

    def test_fetch_error_sets_load_failed(self, bridge_with_history, history):
        for callback in history.error_callbacks:
            callback("room1", "HTTP 500")

        assert bridge_with_history.error_message == "Load failed"

    @pytest.mark.asyncio
    async def test_history_not_configured(self, bridge_instance):
        assert await bridge_instance.fetch_history("room1") == []
        assert bridge_instance.error_message == "History store not configured"

    @pytest.mark.asyncio
    async def test_stop_cancels_history_requests(self, bridge_with_history, history, mock_mqtt_manager):
        task = bridge_with_history.request_history("room1")
        await wait_for(lambda: len(history.pending) == 1)

        await bridge_with_history.stop()

        assert task.cancelled()


class TestSettingsAndStatus:

    def test_thresholds_roundtrip(self, bridge_instance):
        bridge_instance.save_thresholds(ThresholdConfig(25.0, 65.0, 700))

        assert bridge_instance.get_thresholds() == ThresholdConfig(25.0, 65.0, 700)

    def test_status(self, bridge_instance, sample_data_payload):
        bridge_instance.handle_message("SmartHome/room1/data", sample_data_payload)
        bridge_instance.set_alerts_enabled(True)

        status = bridge_instance.get_status()

        assert status["device_count"] == 1
        assert status["broker"] == "test_broker:8883"
        assert status["namespace"] == "SmartHome"
        assert status["alerts_enabled"] is True
        assert status["running"] is False

    def test_clear_error(self, bridge_instance):
        bridge_instance.error_message = "Load failed"

        bridge_instance.clear_error()

        assert bridge_instance.error_message is None
