"""
Data models for the SmartHome sync bridge.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, Union


DEFAULT_NAMESPACE = "SmartHome"
DEFAULT_SAMPLING_INTERVAL = 5


@dataclass(frozen=True)
class Sensors:
    """Sensor snapshot published on <namespace>/<deviceId>/data"""
    temperature: float = 0.0
    humidity: float = 0.0
    illuminance: int = 0


@dataclass(frozen=True)
class Actuators:
    """Actuator snapshot published on <namespace>/<deviceId>/state"""
    light: bool = False
    fan: bool = False
    ac: bool = False
    master_mode: bool = False
    sampling_interval_seconds: int = DEFAULT_SAMPLING_INTERVAL


@dataclass(frozen=True)
class DeviceInfo:
    """Network/info snapshot published on <namespace>/<deviceId>/info"""
    ip: str = ""
    ssid: str = ""
    firmware_version: str = ""
    mac_address: str = ""


@dataclass(frozen=True)
class Device:
    """One room controller as seen by the registry"""
    device_id: str
    name: str
    sensors: Sensors = field(default_factory=Sensors)
    actuators: Actuators = field(default_factory=Actuators)
    info: DeviceInfo = field(default_factory=DeviceInfo)
    connected: bool = True
    last_update: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "connected": self.connected,
            "last_update": self.last_update,
            "sensors": {
                "temperature": self.sensors.temperature,
                "humidity": self.sensors.humidity,
                "illuminance": self.sensors.illuminance,
            },
            "actuators": {
                "light": self.actuators.light,
                "fan": self.actuators.fan,
                "ac": self.actuators.ac,
                "master_mode": self.actuators.master_mode,
                "sampling_interval_seconds": self.actuators.sampling_interval_seconds,
            },
            "info": {
                "ip": self.info.ip,
                "ssid": self.info.ssid,
                "firmware_version": self.info.firmware_version,
                "mac_address": self.info.mac_address,
            },
        }


# Inbound events


@dataclass(frozen=True)
class SensorUpdate:
    device_id: str
    sensors: Sensors


@dataclass(frozen=True)
class ActuatorUpdate:
    device_id: str
    actuators: Actuators


@dataclass(frozen=True)
class InfoUpdate:
    device_id: str
    info: DeviceInfo


InboundEvent = Union[SensorUpdate, ActuatorUpdate, InfoUpdate]


# Outbound command parameters


ACTUATOR_NAMES = ("light", "fan", "ac")


@dataclass(frozen=True)
class SetDeviceParams:
    """Command: set_device - switch a single actuator"""
    device: str
    state: int

    def to_dict(self) -> Dict[str, Any]:
        return {"device": self.device, "state": self.state}


@dataclass(frozen=True)
class SetDevicesParams:
    """Command: set_devices - switch all three actuators at once"""
    fan: int
    light: int
    ac: int

    def to_dict(self) -> Dict[str, Any]:
        return {"fan": self.fan, "light": self.light, "ac": self.ac}


@dataclass(frozen=True)
class SetModeParams:
    """Command: set_mode - master room switch"""
    mode: int

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode}


@dataclass(frozen=True)
class SetIntervalParams:
    """Command: set_interval - sensor sampling interval in seconds"""
    interval: int

    def to_dict(self) -> Dict[str, Any]:
        return {"interval": self.interval}


@dataclass(frozen=True)
class RebootParams:
    """Command: reboot - no parameters"""

    def to_dict(self) -> Dict[str, Any]:
        return {}


CommandParams = Union[SetDeviceParams, SetDevicesParams, SetModeParams,
                      SetIntervalParams, RebootParams]


@dataclass(frozen=True)
class OutboundCommand:
    """A correlated command envelope addressed to one device"""
    correlation_id: str
    device_id: str
    command: str
    params: CommandParams

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.correlation_id,
            "command": self.command,
            "params": self.params.to_dict(),
        }


# Thresholds and alerts


@dataclass(frozen=True)
class ThresholdConfig:
    """Per-metric alert limits"""
    temperature_limit: float = 30.0
    humidity_limit: float = 70.0
    illuminance_limit: int = 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature_limit": self.temperature_limit,
            "humidity_limit": self.humidity_limit,
            "illuminance_limit": self.illuminance_limit,
        }


@dataclass(frozen=True)
class AlertEvent:
    """A single metric exceeding its configured limit"""
    device_name: str
    metric_name: str
    formatted_value: str
    formatted_limit: str
    device_id: Optional[str] = None
    value: Optional[float] = None
    limit: Optional[float] = None

    @property
    def message(self) -> str:
        return f"{self.metric_name}: {self.formatted_value} (threshold: {self.formatted_limit})"


# History


@dataclass(frozen=True)
class HistoryRecord:
    """One persisted historical sample"""
    timestamp: int
    temperature: float = 0.0
    humidity: float = 0.0
    illuminance: int = 0
    record_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "timestamp": self.timestamp,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "illuminance": self.illuminance,
        }


class TimeRange(Enum):
    """Chart time ranges; hours is None for the no-cutoff sentinel"""
    DAY = ("24 Hours", 24)
    WEEK = ("7 Days", 168)
    MONTH = ("30 Days", 720)
    ALL_TIME = ("All Time", None)

    def __init__(self, label: str, hours: Optional[int]):
        self.label = label
        self.hours = hours


class HistoryFilter(Enum):
    """Data history tab filters"""
    TODAY = "Today"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"
    ALL_TIME = "All Time"


@dataclass(frozen=True)
class HistoryStats:
    """Average/maximum/minimum of one metric over a record sequence"""
    metric: str
    average: float = 0.0
    maximum: float = 0.0
    minimum: float = 0.0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "average": self.average,
            "maximum": self.maximum,
            "minimum": self.minimum,
            "count": self.count,
        }


# Transport status


@dataclass(frozen=True)
class ConnectionEvent:
    """Item on the transport's connection-status channel"""
    kind: str
    detail: Optional[str] = None


def _default_client_id() -> str:
    return f"SmartHomeBridge_{uuid.uuid4().hex[:8]}"


@dataclass
class BridgeConfig:
    """Configuration for the SmartHome sync bridge"""
    mqtt_broker: str = "localhost"
    mqtt_port: int = 8883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_tls: bool = True
    mqtt_client_id: str = field(default_factory=_default_client_id)
    namespace: str = DEFAULT_NAMESPACE
    history_url: Optional[str] = None
    history_auth_token: Optional[str] = None
    history_limit: int = 200
    history_timeout_seconds: float = 8.0
    settings_path: str = "smarthome.db"
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    log_level: str = "INFO"
