"""
Outbound command dispatch for the SmartHome sync bridge.
"""

import json
import logging
import threading
from typing import Protocol

from .data_models import (
    ACTUATOR_NAMES,
    DEFAULT_NAMESPACE,
    CommandParams,
    OutboundCommand,
    RebootParams,
    SetDeviceParams,
    SetDevicesParams,
    SetIntervalParams,
    SetModeParams,
)

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 5
MAX_INTERVAL_SECONDS = 3600

COMMAND_QOS = 1


class DispatchError(Exception):
    """Base class for command dispatch failures"""


class NotConnectedError(DispatchError):
    """The transport is not connected; nothing was published"""

    def __init__(self, message: str = "Not connected"):
        super().__init__(message)


class PublishRejectedError(DispatchError):
    """The transport refused to submit the publish"""


class Publisher(Protocol):
    @property
    def is_connected(self) -> bool:
        ...

    async def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> bool:
        ...


def clamp_interval(seconds: int) -> int:
    """Clamp a sampling interval to the range the firmware accepts"""
    try:
        seconds = int(seconds)
    except (TypeError, OverflowError):
        raise ValueError(f"Interval must be a whole number of seconds, got {seconds!r}")
    return max(MIN_INTERVAL_SECONDS, min(MAX_INTERVAL_SECONDS, seconds))


def _switch(value) -> int:
    if isinstance(value, bool):
        return int(value)
    if value in (0, 1):
        return int(value)
    raise ValueError(f"Switch state must be 0/1 or a bool, got {value!r}")


class CommandDispatcher:
    """Builds correlated command envelopes and hands them to the transport"""

    def __init__(self, transport: Publisher, namespace: str = DEFAULT_NAMESPACE):
        self.transport = transport
        self.namespace = namespace
        self._counter = 0
        self._counter_lock = threading.Lock()

    def _next_correlation_id(self) -> str:
        with self._counter_lock:
            self._counter += 1
            return f"app_{self._counter:03d}"

    def command_topic(self, device_id: str) -> str:
        return f"{self.namespace}/{device_id}/command"

    async def send(self, device_id: str, command: str, params: CommandParams) -> OutboundCommand:
        """Publish one command; returns once the publish has been submitted.

        Raises:
            NotConnectedError: the transport is disconnected (no publish happens)
            PublishRejectedError: the transport did not accept the publish
        """
        if not self.transport.is_connected:
            logger.warning(f"Cannot send '{command}' to {device_id}: MQTT not connected")
            raise NotConnectedError()

        outbound = OutboundCommand(
            correlation_id=self._next_correlation_id(),
            device_id=device_id,
            command=command,
            params=params,
        )
        topic = self.command_topic(device_id)
        payload = json.dumps(outbound.to_payload(), separators=(",", ":"))

        logger.info(f"MQTT command -> {topic}: {payload}")
        submitted = await self.transport.publish(topic, payload, qos=COMMAND_QOS, retain=False)
        if not submitted:
            raise PublishRejectedError(f"Publish of {outbound.correlation_id} to {topic} was rejected")

        return outbound

    async def set_device(self, device_id: str, actuator: str, state) -> OutboundCommand:
        """Switch one actuator (light, fan or ac) on or off"""
        if actuator not in ACTUATOR_NAMES:
            raise ValueError(f"Unknown actuator '{actuator}', expected one of {ACTUATOR_NAMES}")
        return await self.send(device_id, "set_device", SetDeviceParams(actuator, _switch(state)))

    async def set_devices(self, device_id: str, fan, light, ac) -> OutboundCommand:
        """Switch all three actuators in one command"""
        params = SetDevicesParams(fan=_switch(fan), light=_switch(light), ac=_switch(ac))
        return await self.send(device_id, "set_devices", params)

    async def set_mode(self, device_id: str, mode) -> OutboundCommand:
        """Turn the master room switch on or off"""
        return await self.send(device_id, "set_mode", SetModeParams(_switch(mode)))

    async def set_interval(self, device_id: str, seconds: int) -> OutboundCommand:
        """Set the sensor sampling interval, clamped to [5, 3600] seconds"""
        clamped = clamp_interval(seconds)
        if clamped != seconds:
            logger.info(f"Sampling interval {seconds}s clamped to {clamped}s")
        return await self.send(device_id, "set_interval", SetIntervalParams(clamped))

    async def reboot(self, device_id: str) -> OutboundCommand:
        """Reboot the controller"""
        return await self.send(device_id, "reboot", RebootParams())

    @property
    def commands_sent(self) -> int:
        return self._counter
