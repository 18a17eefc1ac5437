import pytest
from pytest_socket import disable_socket

from errors import StoreError


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, DNS, etc) will immediately raise a SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)


class FakeStateStore:
    """In-memory StateStore. Add operation names to `failing` to make them raise."""

    def __init__(self):
        self.readings = []
        self.status = None
        self.last_action = None
        self.command_clears = 0
        self.watchers = {}
        self.failing = set()

    def _check(self, operation):
        if operation in self.failing:
            raise StoreError(f"{operation} failed")

    async def push_reading(self, record):
        self._check("push_reading")
        self.readings.append(record)

    async def set_status(self, record):
        self._check("set_status")
        self.status = dict(record)

    async def update_status(self, fields):
        self._check("update_status")
        self.status = {**(self.status or {}), **fields}

    async def set_last_action(self, record):
        self._check("set_last_action")
        self.last_action = record

    async def clear_command(self):
        self._check("clear_command")
        self.command_clears += 1

    def watch(self, path, on_value):
        self.watchers[path] = on_value
        return FakeSubscription()


class FakeSubscription:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def store():
    return FakeStateStore()
