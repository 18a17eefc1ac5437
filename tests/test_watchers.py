import asyncio
from datetime import datetime, time, timezone

import pytest

from control.watchers import CommandWatcher, ScheduleCache
from sinks.base import COMMAND_PATH, SCHEDULE_PATH, ManualCommand

SCHEDULE_RECORD = {
    "enabled": True,
    "activeDays": [True] * 7,
    "startTime": "21:00",
    "endTime": "06:00",
}


def test_schedule_cache_replaces_config():
    cache = ScheduleCache()
    assert cache.get() is None

    cache.update(SCHEDULE_RECORD)
    first = cache.get()
    assert first.start_time == time(21, 0)

    cache.update({**SCHEDULE_RECORD, "startTime": "22:00"})
    assert cache.get().start_time == time(22, 0)
    assert first.start_time == time(21, 0)


def test_schedule_cache_invalid_record_disables_enforcement():
    cache = ScheduleCache()
    cache.update(SCHEDULE_RECORD)

    cache.update({"enabled": True, "startTime": "nope", "endTime": "06:00"})

    assert cache.get() is None


def test_schedule_cache_deleted_record():
    cache = ScheduleCache()
    cache.update(SCHEDULE_RECORD)

    cache.update(None)

    assert cache.get() is None


@pytest.mark.asyncio
async def test_schedule_cache_watch_hops_onto_loop(store):
    cache = ScheduleCache()

    subscription = cache.watch(store, asyncio.get_running_loop())
    store.watchers[SCHEDULE_PATH](SCHEDULE_RECORD)
    await asyncio.sleep(0)

    assert cache.get() is not None
    assert subscription.closed is False


def test_command_watcher_forwards_command(mocker):
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)

    watcher.on_record({"desiredOn": True, "issuedAt": 1736177400000})

    reconciler.submit_command.assert_called_once_with(
        ManualCommand(True, datetime(2025, 1, 6, 15, 30, tzinfo=timezone.utc))
    )


def test_command_watcher_ignores_cleared_and_malformed(mocker):
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)

    watcher.on_record(None)
    watcher.on_record({"desiredOn": "on"})
    watcher.on_record(True)
    watcher.on_record({"desiredOn": True, "issuedAt": "yesterday"})

    reconciler.submit_command.assert_not_called()


def test_command_watcher_drops_duplicate_delivery(mocker):
    """Test that the same command delivered twice is only submitted once"""
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)
    record = {"desiredOn": False, "issuedAt": 1736177400000}

    watcher.on_record(record)
    watcher.on_record(dict(record))
    watcher.on_record({"desiredOn": False, "issuedAt": 1736177460000})

    assert reconciler.submit_command.call_count == 2


@pytest.mark.asyncio
async def test_command_watcher_watch_hops_onto_loop(mocker, store):
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)

    watcher.watch(store, asyncio.get_running_loop())
    store.watchers[COMMAND_PATH]({"desiredOn": True, "issuedAt": 1736177400000})

    reconciler.submit_command.assert_not_called()
    await asyncio.sleep(0)
    reconciler.submit_command.assert_called_once()


def test_command_without_issued_at_is_deduplicated(mocker):
    """Test that redeliveries of a record without issuedAt are submitted once"""
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)

    watcher.on_record({"desiredOn": True})
    watcher.on_record({"desiredOn": True})

    reconciler.submit_command.assert_called_once_with(ManualCommand(True, None))


def test_command_after_clear_is_delivered_again(mocker):
    """Test that the same command written again after consumption goes through"""
    reconciler = mocker.Mock()
    watcher = CommandWatcher(reconciler)

    watcher.on_record({"desiredOn": True})
    watcher.on_record(None)
    watcher.on_record({"desiredOn": True})

    assert reconciler.submit_command.call_count == 2
