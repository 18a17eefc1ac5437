"""Reconciliation loop - converges the relay to the manual command or schedule"""
import asyncio
import logging
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Callable

from errors import DeviceError, StoreError
from sinks.base import ManualCommand, StateStore, epoch_ms
from sources.base import CommandSource, DeviceClient, Telemetry
from control.schedule import ScheduleConfig, is_desired_on_by_schedule

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    DECIDING = "deciding"
    COMMANDING = "commanding"
    FAULTED = "faulted"


class Reconciler:
    """
    Single owner of device-facing state.

    Poll ticks and manual commands are posted to one mailbox and handled
    one at a time by run(), so two toggles can never race on a stale
    last-known relay state.
    """

    def __init__(
        self,
        client: DeviceClient,
        store: StateStore,
        schedule: Callable[[], ScheduleConfig | None],
        tz: tzinfo | None = None,
        now: Callable[[], datetime] | None = None
    ):
        """
        Initialize the reconciler.

        Args:
            client: Device client, the only writer to the relay
            store: State store for readings and status
            schedule: Returns the latest cached ScheduleConfig (or None)
            tz: Timezone the schedule is written in (default: system local)
            now: Clock returning an aware datetime (default: datetime.now(tz))
        """
        self.client = client
        self.store = store
        self.schedule = schedule
        self.tz = tz
        self.now = now or (lambda: datetime.now(self.tz))
        self.last_known_on: bool | None = None
        self.pending_command: ManualCommand | None = None
        self.state = CycleState.IDLE
        self._mailbox: asyncio.Queue = asyncio.Queue()
        self._cycle_pending = False

    # --- Mailbox ---

    def request_cycle(self) -> None:
        """
        Queue a full fetch/persist/decide/command cycle.

        At most one cycle waits in the mailbox; further requests are merged
        into it so a slow device API can't build a backlog.
        """
        if self._cycle_pending:
            return
        self._cycle_pending = True
        self._mailbox.put_nowait(("cycle", None))

    def submit_command(self, command: ManualCommand) -> None:
        """Queue a manual command for immediate reconciliation"""
        self._mailbox.put_nowait(("command", command))

    async def run(self) -> None:
        """Process mailbox messages forever. Errors never escape a message."""
        while True:
            kind, payload = await self._mailbox.get()
            try:
                if kind == "cycle":
                    self._cycle_pending = False
                    await self.run_cycle()
                else:
                    await self.handle_command(payload)
            except Exception as e:
                logger.error(f"Reconcile: Unexpected error handling {kind}: {e}")
                self.state = CycleState.IDLE
            finally:
                self._mailbox.task_done()

    # --- Steps ---

    async def run_cycle(self) -> None:
        self.state = CycleState.FETCHING
        try:
            telemetry = await self.client.fetch_telemetry()
        except DeviceError as e:
            self.state = CycleState.FAULTED
            logger.error(f"Reconcile: Telemetry fetch failed: {e}")
            await self._mark_offline(str(e))
            self.state = CycleState.IDLE
            return

        self.state = CycleState.PERSISTING
        await self._persist(telemetry)
        self.last_known_on = telemetry.device_reported_on

        await self._decide_and_command()

    async def handle_command(self, command: ManualCommand) -> None:
        state = "ON" if command.desired_on else "OFF"
        logger.info(f"Reconcile: Manual command received: {state}")
        self.pending_command = command
        await self._decide_and_command()

    def resolve_desired(self) -> tuple[bool, CommandSource] | None:
        """
        Desired relay state and who wants it, or None for "no opinion".

        A pending manual command always wins over the schedule. Without a
        schedule (or with a disabled one) nothing is enforced.
        """
        if self.pending_command is not None:
            return self.pending_command.desired_on, CommandSource.MANUAL

        cfg = self.schedule()
        if cfg is None or not cfg.enabled:
            return None
        return is_desired_on_by_schedule(self.now(), cfg), CommandSource.SCHEDULE

    async def _decide_and_command(self) -> None:
        self.state = CycleState.DECIDING
        decision = self.resolve_desired()
        if decision is None:
            self.state = CycleState.IDLE
            return

        desired, source = decision
        if desired == self.last_known_on:
            if source is CommandSource.MANUAL:
                logger.info("Reconcile: Manual command matches relay state, nothing to do")
                await self._consume_command()
            self.state = CycleState.IDLE
            return

        self.state = CycleState.COMMANDING
        try:
            await self.client.set_power(desired, source)
        except DeviceError as e:
            logger.error(f"Reconcile: Switching {'ON' if desired else 'OFF'} ({source.value}) failed: {e}")
            await self._record_error(str(e))
            self.state = CycleState.IDLE
            return

        self.last_known_on = desired
        if source is CommandSource.MANUAL:
            await self._consume_command()
        self.state = CycleState.IDLE

    # --- Store helpers ---

    async def _persist(self, telemetry: Telemetry) -> None:
        record = telemetry.to_record()
        try:
            await self.store.push_reading(record)
            await self.store.set_status({**record, "deviceOnline": True})
        except StoreError as e:
            logger.warning(f"Reconcile: Could not persist reading: {e}")
            return

        state = "ON" if telemetry.device_reported_on else "OFF"
        logger.info(f"Reading: {telemetry.power} W | {state}")

    async def _consume_command(self) -> None:
        self.pending_command = None
        try:
            await self.store.clear_command()
        except StoreError as e:
            logger.warning(f"Reconcile: Could not clear manual command: {e}")

    async def _mark_offline(self, error: str) -> None:
        await self._record_error(error, offline=True)

    async def _record_error(self, error: str, offline: bool = False) -> None:
        fields = {
            "lastError": error,
            "errorAt": epoch_ms(datetime.now(timezone.utc)),
        }
        if offline:
            fields["deviceOnline"] = False

        try:
            await self.store.update_status(fields)
        except StoreError as e:
            logger.warning(f"Reconcile: Could not record error status: {e}")


async def poll_forever(reconciler: Reconciler, interval: float) -> None:
    """Queue a cycle right away, then every `interval` seconds"""
    while True:
        reconciler.request_cycle()
        await asyncio.sleep(interval)
