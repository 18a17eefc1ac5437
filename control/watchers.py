"""Store subscriptions - schedule cache and manual command watcher"""
import asyncio
import logging
from typing import Any

from errors import ConfigError
from sinks.base import COMMAND_PATH, SCHEDULE_PATH, ManualCommand, StateStore, Subscription
from control.reconcile import Reconciler
from control.schedule import ScheduleConfig, parse_schedule

logger = logging.getLogger(__name__)


class ScheduleCache:
    """
    Latest ScheduleConfig seen on the store.

    The cached value is swapped as a whole on every update, so readers
    always get either the old or the new config, never a mix.
    """

    def __init__(self):
        self._config: ScheduleConfig | None = None

    def get(self) -> ScheduleConfig | None:
        return self._config

    def update(self, record: Any) -> None:
        """Replace the cached config. A malformed record disables enforcement."""
        try:
            config = parse_schedule(record)
        except ConfigError as e:
            logger.warning(f"Schedule: Ignoring invalid schedule, enforcement off: {e}")
            config = None

        self._config = config
        if config is None:
            logger.info("Schedule: No schedule configured")
        else:
            logger.info(
                f"Schedule: {'enabled' if config.enabled else 'disabled'} "
                f"{config.start_time:%H:%M}-{config.end_time:%H:%M} "
                f"on days {sorted(config.active_days)}"
            )

    def watch(self, store: StateStore, loop: asyncio.AbstractEventLoop) -> Subscription:
        """Keep the cache in sync with the store's schedule record"""
        return store.watch(
            SCHEDULE_PATH,
            lambda record: loop.call_soon_threadsafe(self.update, record)
        )


class CommandWatcher:
    """
    Forwards manual commands from the store to the reconciler.

    Cleared records (our own clear after consumption) and repeated
    deliveries of the same command are dropped.
    """

    def __init__(self, reconciler: Reconciler):
        self.reconciler = reconciler
        self.last_delivered: ManualCommand | None = None

    def on_record(self, record: Any) -> None:
        """Handle a control/command value. Must run on the event loop thread."""
        try:
            command = ManualCommand.from_record(record)
        except ConfigError as e:
            logger.warning(f"Command: Ignoring malformed command: {e}")
            return

        if command is None:
            # Cleared after consumption; the next write is a new command
            self.last_delivered = None
            return
        if command == self.last_delivered:
            logger.debug("Command: Duplicate delivery ignored")
            return

        self.last_delivered = command
        self.reconciler.submit_command(command)

    def watch(self, store: StateStore, loop: asyncio.AbstractEventLoop) -> Subscription:
        """Subscribe to control/command; callbacks hop onto the event loop"""
        return store.watch(
            COMMAND_PATH,
            lambda record: loop.call_soon_threadsafe(self.on_record, record)
        )
