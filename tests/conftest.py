"""
Test configuration and fixtures for SmartHome sync bridge tests.
"""
import asyncio
import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest

from smarthome_sync.bridge import SmartHomeBridge
from smarthome_sync.data_models import BridgeConfig
from smarthome_sync.mqtt_manager import MQTTManager
from smarthome_sync.registry import DeviceRegistry
from smarthome_sync.settings_store import SettingsStore

NAMESPACE = "SmartHome"


@pytest.fixture
def temp_db_path():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as tmp_file:
        db_path = tmp_file.name
    yield db_path
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def settings_store(temp_db_path):
    """Create a SettingsStore backed by a temporary database."""
    return SettingsStore(db_path=temp_db_path)


@pytest.fixture
def mock_mqtt_manager():
    """Create a mock MQTT manager for testing."""
    mock_mqtt = AsyncMock(spec=MQTTManager)
    mock_mqtt.is_connected = True
    mock_mqtt.publish = AsyncMock(return_value=True)
    mock_mqtt.connect = AsyncMock()
    mock_mqtt.disconnect = AsyncMock()
    mock_mqtt.close = MagicMock()
    mock_mqtt.messages = asyncio.Queue()
    mock_mqtt.status_events = asyncio.Queue()
    return mock_mqtt


class FakeClock:
    """Controllable epoch-millisecond clock"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def device_registry(settings_store, fake_clock):
    """Create a DeviceRegistry that persists names in the temp store."""
    return DeviceRegistry(name_store=settings_store, clock=fake_clock)


@pytest.fixture
def bridge_config(temp_db_path):
    return BridgeConfig(
        mqtt_broker="test_broker",
        mqtt_port=8883,
        mqtt_username="user",
        mqtt_password="secret",
        namespace=NAMESPACE,
        settings_path=temp_db_path,
    )


@pytest.fixture
def bridge_instance(bridge_config, settings_store, mock_mqtt_manager):
    """Create a bridge wired to the mock transport."""
    return SmartHomeBridge(bridge_config, transport=mock_mqtt_manager, settings=settings_store)


@pytest.fixture
def sample_data_payload():
    return '{"temperature":32.5,"humidity":40,"light":100}'


@pytest.fixture
def sample_history_body():
    """Five history entries, one of them without a timestamp."""
    return {
        "-Nabc1": {"last_update": 1_700_000_000_000, "temp": 24.5, "humid": 55.0, "lux": 300},
        "-Nabc2": {"last_update": 1_700_000_060_000, "temp": 25.0, "humid": 54.0, "lux": 310},
        "-Nabc3": {"temp": 26.0, "humid": 53.0, "lux": 320},
        "-Nabc4": {"last_update": 1_700_000_180_000, "temp": 26.5},
        "-Nabc5": {"last_update": 1_700_000_120_000, "temp": 25.5, "humid": 52.0, "lux": 330},
    }


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Add markers to tests based on file location."""
    for item in items:
        path = str(item.fspath).replace(os.sep, "/")
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def mqtt_test_config():
    """Configuration for MQTT integration tests."""
    return {
        "broker": os.getenv("MQTT_TEST_BROKER", "localhost"),
        "port": int(os.getenv("MQTT_TEST_PORT", "1883")),
        "username": os.getenv("MQTT_TEST_USERNAME"),
        "password": os.getenv("MQTT_TEST_PASSWORD"),
        "use_tls": os.getenv("MQTT_TEST_TLS", "false").lower() in ("1", "true", "yes"),
    }
