"""Time-of-day schedule - config parsing and evaluation"""
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any

from errors import ConfigError

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class ScheduleConfig:
    """
    Recurring on-window for the relay.

    Attributes:
        enabled: Master switch; a disabled schedule never asks for ON.
        active_days: Weekdays the window applies on (0 = Monday ... 6 = Sunday).
        start_time: Local wall-clock start, minute granularity.
        end_time: Local wall-clock end (exclusive). Earlier than start_time
            means the window wraps past midnight.
    """
    enabled: bool
    active_days: frozenset[int]
    start_time: time
    end_time: time


def _minutes(moment: time | datetime) -> int:
    return moment.hour * 60 + moment.minute


def is_desired_on_by_schedule(now: datetime, cfg: ScheduleConfig | None) -> bool:
    """
    Whether the schedule wants the relay ON at `now` (local wall-clock).

    Same-day windows are [start, end); overnight windows cover
    [start, midnight) and [midnight, end). start == end is an empty window.
    """
    if cfg is None or not cfg.enabled:
        return False
    if now.weekday() not in cfg.active_days:
        return False

    now_minutes = _minutes(now)
    start_minutes = _minutes(cfg.start_time)
    end_minutes = _minutes(cfg.end_time)

    if start_minutes <= end_minutes:
        return start_minutes <= now_minutes < end_minutes
    return now_minutes >= start_minutes or now_minutes < end_minutes


def _parse_time(value: Any, field: str) -> time:
    if not isinstance(value, str):
        raise ConfigError(f"Schedule '{field}' must be an HH:MM string, got {value!r}")
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except ValueError as e:
        raise ConfigError(f"Schedule '{field}' is not a valid HH:MM time: {value!r}") from e


def _parse_days(value: Any) -> frozenset[int]:
    # Either seven booleans indexed by weekday, or a list of weekday numbers
    if value is None:
        return frozenset(range(DAYS_PER_WEEK))
    if isinstance(value, dict):
        # Firebase turns sparse arrays into {"0": true, ...}
        value = [value.get(str(day), False) for day in range(DAYS_PER_WEEK)]
    if not isinstance(value, list):
        raise ConfigError(f"Schedule 'activeDays' must be a list, got {value!r}")

    if value and all(day is None or isinstance(day, bool) for day in value):
        # Firebase drops trailing false/null entries and nulls out gaps
        if len(value) > DAYS_PER_WEEK:
            raise ConfigError(f"Schedule 'activeDays' has {len(value)} flags, expected {DAYS_PER_WEEK}")
        return frozenset(day for day, active in enumerate(value) if active)

    days = set()
    for day in value:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day < DAYS_PER_WEEK:
            raise ConfigError(f"Schedule 'activeDays' has invalid weekday {day!r}")
        days.add(day)
    return frozenset(days)


def parse_schedule(record: Any) -> ScheduleConfig | None:
    """
    Build a ScheduleConfig from the stored schedule record.

    Returns None when there is no schedule. Raises ConfigError when the
    record is malformed. Accepts "isEnabled" as an alias for "enabled".
    """
    if record is None:
        return None
    if not isinstance(record, dict):
        raise ConfigError(f"Schedule record must be an object, got {type(record).__name__}")

    enabled = record.get("enabled", record.get("isEnabled", False))
    if not isinstance(enabled, bool):
        raise ConfigError(f"Schedule 'enabled' must be a boolean, got {enabled!r}")

    return ScheduleConfig(
        enabled=enabled,
        active_days=_parse_days(record.get("activeDays")),
        start_time=_parse_time(record.get("startTime"), "startTime"),
        end_time=_parse_time(record.get("endTime"), "endTime")
    )
