"""
SmartHome Sync Bridge

Keeps an in-memory view of ESP32 room controllers in sync over MQTT,
sends them correlated commands, raises threshold alerts and queries
their historical sensor readings.
"""

__version__ = "1.0.0"

from .data_models import (
    Device,
    Sensors,
    Actuators,
    DeviceInfo,
    SensorUpdate,
    ActuatorUpdate,
    InfoUpdate,
    OutboundCommand,
    ThresholdConfig,
    AlertEvent,
    HistoryRecord,
    TimeRange,
    HistoryFilter,
    BridgeConfig,
)
from .decoder import MessageDecoder
from .registry import DeviceRegistry
from .thresholds import ThresholdEvaluator
from .commands import CommandDispatcher, DispatchError, NotConnectedError
from .history import HistoryAggregator
from .mqtt_manager import MQTTManager
from .settings_store import SettingsStore
from .bridge import SmartHomeBridge

__all__ = [
    "SmartHomeBridge",
    "MQTTManager",
    "MessageDecoder",
    "DeviceRegistry",
    "ThresholdEvaluator",
    "CommandDispatcher",
    "DispatchError",
    "NotConnectedError",
    "HistoryAggregator",
    "SettingsStore",
    "Device",
    "Sensors",
    "Actuators",
    "DeviceInfo",
    "SensorUpdate",
    "ActuatorUpdate",
    "InfoUpdate",
    "OutboundCommand",
    "ThresholdConfig",
    "AlertEvent",
    "HistoryRecord",
    "TimeRange",
    "HistoryFilter",
    "BridgeConfig",
]
