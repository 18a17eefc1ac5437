"""Base definitions for device sources - data contracts and protocols"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

# Below this draw the relay is closed but nothing is really plugged in
LOAD_THRESHOLD_W = 5.0


class CommandSource(str, Enum):
    """Who asked for a power change"""
    MANUAL = "manual"
    SCHEDULE = "schedule"


@dataclass(frozen=True)
class Telemetry:
    """
    One electrical sample from the smart plug.

    Attributes:
        voltage: Volts
        current: Amps
        power: Watts
        device_reported_on: Relay state as reported by the device
        observed_at: When the sample was taken (timezone-aware)
    """
    voltage: float
    current: float
    power: float
    device_reported_on: bool
    observed_at: datetime

    @property
    def load_active(self) -> bool:
        """Relay closed and actually drawing power"""
        return self.device_reported_on and self.power >= LOAD_THRESHOLD_W

    def to_record(self) -> dict:
        """Flat record as stored in the realtime database"""
        return {
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
            "is_on": self.device_reported_on,
            "load_active": self.load_active,
            "timestamp": int(self.observed_at.timestamp() * 1000),
        }


class DeviceClient(Protocol):
    """
    Protocol for the single writer to the physical device.

    Implementations don't need to inherit, just match the signatures.
    """

    async def fetch_telemetry(self) -> Telemetry:
        """
        Read the current electrical state of the device.

        Should raise DeviceError on any failure.
        """
        ...

    async def set_power(self, desired_on: bool, source: CommandSource) -> None:
        """
        Switch the relay and record an audit entry.

        Should raise DeviceError if the command or its audit write fails.
        """
        ...
