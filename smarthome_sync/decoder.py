"""
Message decoding for the SmartHome sync bridge.

Turns an inbound (topic, payload) pair into at most one typed event.
Anything that cannot be decoded is dropped with a log line; nothing in
here raises to the caller.
"""

import json
import logging
from typing import Any, Dict, Optional

from .data_models import (
    DEFAULT_NAMESPACE,
    Actuators,
    ActuatorUpdate,
    DeviceInfo,
    InboundEvent,
    InfoUpdate,
    Sensors,
    SensorUpdate,
)

logger = logging.getLogger(__name__)

# Device id the app uses for its own online/offline status
RESERVED_DEVICE_ID = "app"


class DecodeError(ValueError):
    """Payload field has a type that cannot be coerced"""


def _as_float(payload: Dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise DecodeError(f"field '{key}' is not numeric: {value!r}")


def _as_int(payload: Dict[str, Any], key: str) -> int:
    value = _as_float(payload, key)
    try:
        return int(value)
    except (OverflowError, ValueError):
        raise DecodeError(f"field '{key}' is not a finite number: {value!r}")


def _as_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise DecodeError(f"field '{key}' is not a scalar: {value!r}")
    return str(value)


class MessageDecoder:
    """Decodes <namespace>/<deviceId>/<kind> messages into inbound events"""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace
        self._parsers = {
            "state": self._parse_state,
            "data": self._parse_data,
            "info": self._parse_info,
        }

    def decode(self, topic: str, payload: str) -> Optional[InboundEvent]:
        """Decode one message, returning None for anything unusable"""
        parts = topic.split('/')
        if len(parts) < 3 or parts[0] != self.namespace:
            logger.debug(f"Ignoring topic outside namespace: {topic}")
            return None

        device_id = parts[1]
        message_type = parts[2]

        if device_id == RESERVED_DEVICE_ID:
            logger.debug("Ignoring app status message")
            return None

        parser = self._parsers.get(message_type)
        if parser is None:
            logger.debug(f"No parser for message type '{message_type}' on {topic}")
            return None

        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode('utf-8', errors='replace')

        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Invalid JSON on {topic}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Expected a JSON object on {topic}, got {type(data).__name__}")
            return None

        try:
            return parser(device_id, data)
        except DecodeError as e:
            logger.warning(f"Dropping {message_type} message from {device_id}: {e}")
            return None

    def _parse_state(self, device_id: str, data: Dict[str, Any]) -> ActuatorUpdate:
        return ActuatorUpdate(
            device_id=device_id,
            actuators=Actuators(
                light=_as_int(data, "light") != 0,
                fan=_as_int(data, "fan") != 0,
                ac=_as_int(data, "ac") != 0,
                master_mode=_as_int(data, "mode") != 0,
                sampling_interval_seconds=_as_int(data, "interval"),
            ),
        )

    def _parse_data(self, device_id: str, data: Dict[str, Any]) -> SensorUpdate:
        return SensorUpdate(
            device_id=device_id,
            sensors=Sensors(
                temperature=_as_float(data, "temperature"),
                humidity=_as_float(data, "humidity"),
                illuminance=_as_int(data, "light"),
            ),
        )

    def _parse_info(self, device_id: str, data: Dict[str, Any]) -> InfoUpdate:
        return InfoUpdate(
            device_id=device_id,
            info=DeviceInfo(
                ip=_as_str(data, "ip"),
                ssid=_as_str(data, "ssid"),
                firmware_version=_as_str(data, "firmware"),
                mac_address=_as_str(data, "mac"),
            ),
        )
