"""
Device registry for the SmartHome sync bridge.

Holds the authoritative view of every known device. Writers build the
updated mapping under a lock and publish it by replacing the reference,
so readers always see a whole device either before or after an event.
"""

import logging
import threading
from dataclasses import replace
from types import MappingProxyType
from typing import Dict, List, Any, Mapping, Optional, Protocol

from .data_models import (
    ActuatorUpdate,
    Device,
    InboundEvent,
    InfoUpdate,
    SensorUpdate,
)
from .timezone_utils import now_ms, is_expired, utc_isoformat, format_age

logger = logging.getLogger(__name__)


class NameStore(Protocol):
    """Persisted display names, keyed by device id"""

    def get_device_name(self, device_id: str) -> Optional[str]:
        ...

    def set_device_name(self, device_id: str, name: str) -> None:
        ...


def default_device_name(device_id: str) -> str:
    """Display name used until the user assigns one: room_1 -> ROOM 1"""
    return device_id.upper().replace("_", " ")


class DeviceRegistry:
    """Manages device state built from decoded inbound events"""

    def __init__(self, name_store: Optional[NameStore] = None, clock=now_ms):
        self.name_store = name_store
        self._clock = clock
        self._lock = threading.Lock()
        self._devices: Dict[str, Device] = {}

    def snapshot(self) -> Mapping[str, Device]:
        """Read-only view of the current mapping; later writes never alter it"""
        return MappingProxyType(self._devices)

    def devices(self) -> List[Device]:
        """All devices in first-seen order"""
        return list(self._devices.values())

    def get_device(self, device_id: str) -> Optional[Device]:
        """Get device by ID"""
        return self._devices.get(device_id)

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def apply_event(self, event: InboundEvent) -> Device:
        """Apply one decoded event and return the resulting device state"""
        with self._lock:
            current = self._devices.get(event.device_id)
            now = self._clock()

            if current is None:
                current = Device(
                    device_id=event.device_id,
                    name=self._lookup_name(event.device_id),
                    last_update=now,
                )
                logger.info(f"Discovered device {event.device_id} ({current.name})")
                last_update = now
            else:
                last_update = max(now, current.last_update + 1)

            if isinstance(event, SensorUpdate):
                updated = replace(current, sensors=event.sensors)
            elif isinstance(event, ActuatorUpdate):
                updated = replace(current, actuators=event.actuators)
            elif isinstance(event, InfoUpdate):
                updated = replace(current, info=event.info)
            else:
                raise TypeError(f"Unsupported event type: {type(event).__name__}")

            updated = replace(updated, connected=True, last_update=last_update)

            devices = dict(self._devices)
            devices[event.device_id] = updated
            self._devices = devices

        logger.debug(f"Applied {type(event).__name__} to {event.device_id}")
        return updated

    def rename(self, device_id: str, new_name: str) -> Optional[Device]:
        """Assign a display name; unknown devices only get the persisted mapping"""
        if self.name_store is not None:
            self.name_store.set_device_name(device_id, new_name)

        with self._lock:
            current = self._devices.get(device_id)
            if current is None:
                logger.debug(f"Rename of unknown device {device_id} stored for later")
                return None

            updated = replace(current, name=new_name)
            devices = dict(self._devices)
            devices[device_id] = updated
            self._devices = devices

        logger.info(f"Renamed device {device_id} to '{new_name}'")
        return updated

    def _lookup_name(self, device_id: str) -> str:
        if self.name_store is not None:
            try:
                saved = self.name_store.get_device_name(device_id)
            except Exception as e:
                logger.error(f"Failed to look up saved name for {device_id}: {e}")
                saved = None
            if saved:
                return saved
        return default_device_name(device_id)

    def get_stale_devices(self, timeout_minutes: float, now: Optional[int] = None) -> List[Device]:
        """Devices with no traffic for longer than the timeout (state is not changed)"""
        if now is None:
            now = self._clock()
        return [
            device for device in self._devices.values()
            if is_expired(device.last_update, timeout_minutes, now)
        ]

    def get_device_summary(self, device_id: str) -> Optional[Dict[str, Any]]:
        """Get comprehensive device summary"""
        device = self.get_device(device_id)
        if not device:
            return None

        summary = device.to_dict()
        summary["last_update_iso"] = utc_isoformat(device.last_update)
        summary["age"] = format_age(device.last_update, self._clock())
        return summary

    def get_device_list_summary(self) -> List[Dict[str, Any]]:
        """Get summary list of all devices"""
        return [
            {
                "device_id": device.device_id,
                "name": device.name,
                "connected": device.connected,
                "last_update": device.last_update,
                "temperature": device.sensors.temperature,
                "humidity": device.sensors.humidity,
                "illuminance": device.sensors.illuminance,
                "master_mode": device.actuators.master_mode,
            }
            for device in self.devices()
        ]
