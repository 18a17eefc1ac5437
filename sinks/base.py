"""Base definitions for the state store - paths, records and protocol"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from errors import ConfigError

READINGS_PATH = "readings"
STATUS_PATH = "status/current"
SCHEDULE_PATH = "schedule"
COMMAND_PATH = "control/command"
LAST_ACTION_PATH = "control/lastAction"


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass(frozen=True)
class ManualCommand:
    """
    On/off request written by the mobile client.

    Attributes:
        desired_on: Requested relay state
        issued_at: When the client issued it (timezone-aware), None if the
            client didn't say. Redeliveries of one record compare equal.
    """
    desired_on: bool
    issued_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Any) -> "ManualCommand | None":
        """
        Parse a control/command record.

        Returns None for an empty (cleared) record. Raises ConfigError when
        the record is present but unusable.
        """
        if record is None:
            return None
        if not isinstance(record, dict):
            raise ConfigError(f"Command record must be an object, got {type(record).__name__}")

        desired_on = record.get("desiredOn")
        if not isinstance(desired_on, bool):
            raise ConfigError(f"Command 'desiredOn' must be a boolean, got {desired_on!r}")

        issued_at = record.get("issuedAt")
        if issued_at is None:
            moment = None
        elif isinstance(issued_at, (int, float)) and not isinstance(issued_at, bool):
            moment = datetime.fromtimestamp(issued_at / 1000, tz=timezone.utc)
        else:
            raise ConfigError(f"Command 'issuedAt' must be epoch milliseconds, got {issued_at!r}")

        return cls(desired_on=desired_on, issued_at=moment)


class Subscription(Protocol):
    def close(self) -> None:
        ...


class StateStore(Protocol):
    """
    Protocol for the realtime database egress.

    All async operations should raise StoreError on failure or timeout.
    """

    async def push_reading(self, record: dict) -> None:
        """Append a telemetry record to the readings log"""
        ...

    async def set_status(self, record: dict) -> None:
        """Overwrite the current status record"""
        ...

    async def update_status(self, fields: dict) -> None:
        """Patch fields of the current status record"""
        ...

    async def set_last_action(self, record: dict) -> None:
        """Overwrite the audit record of the most recent toggle"""
        ...

    async def clear_command(self) -> None:
        """Remove the consumed manual command"""
        ...

    def watch(self, path: str, on_value: Callable[[Any], None]) -> Subscription:
        """
        Subscribe to a record.

        on_value is called with the full current value on subscribe and on
        every change. It may be called from a background thread.
        """
        ...
