"""Firebase Realtime Database egress - readings, status, audit and watches"""
import asyncio
import base64
import binascii
import json
import logging
import os
from typing import Any, Callable

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from errors import ConfigError, StoreError
from sinks.base import (
    COMMAND_PATH,
    LAST_ACTION_PATH,
    READINGS_PATH,
    STATUS_PATH,
)

logger = logging.getLogger(__name__)

APP_NAME = "tuya-relay-bridge"


def load_service_account(
    key_base64: str | None = None,
    key_json: str | None = None,
    key_file: str | None = None
) -> dict:
    """
    Load the service-account credentials.

    Tries, in order: base64-encoded JSON, raw JSON, then a JSON file.

    Raises:
        ConfigError: No source given, or the one given is unreadable.
    """
    try:
        if key_base64:
            return json.loads(base64.b64decode(key_base64).decode("utf-8"))
        if key_json:
            return json.loads(key_json)
        if key_file and os.path.isfile(key_file):
            with open(key_file, encoding="utf-8") as f:
                return json.load(f)
    except (binascii.Error, UnicodeDecodeError, ValueError, OSError) as e:
        raise ConfigError(f"Firebase service account could not be read: {e}") from e

    raise ConfigError("Firebase service account not configured")


class FirebaseStateStore:
    """
    State store on a Firebase Realtime Database.

    The admin SDK is blocking, so every call runs in a thread and is
    bounded by a timeout. A timed-out call is reported as failed even if
    the thread eventually completes.
    """

    def __init__(
        self,
        database_url: str,
        service_account: dict,
        timeout: float = 10.0
    ):
        """
        Initialize the store.

        Args:
            database_url: RTDB URL, e.g. "https://<project>-default-rtdb.firebaseio.com"
            service_account: Parsed service-account JSON
            timeout: Seconds before a database call counts as failed
        """
        self.database_url = database_url
        self.service_account = service_account
        self.timeout = timeout
        self.app = None

    def connect(self) -> None:
        """Initialize the Firebase app (once per process)"""
        try:
            self.app = firebase_admin.get_app(APP_NAME)
            return
        except ValueError:
            pass

        try:
            cred = credentials.Certificate(self.service_account)
        except ValueError as e:
            raise ConfigError(f"Invalid Firebase service account: {e}") from e

        self.app = firebase_admin.initialize_app(
            cred,
            {"databaseURL": self.database_url},
            name=APP_NAME
        )
        logger.info(f"Firebase: Connected to {self.database_url}")

    def _ref(self, path: str):
        return db.reference(path, app=self.app)

    async def _run(self, description: str, fn: Callable, *args) -> Any:
        """Run a blocking SDK call in a thread with a timeout"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreError(f"{description} timed out after {self.timeout}s") from e
        except (FirebaseError, OSError, ValueError) as e:
            raise StoreError(f"{description} failed: {e}") from e

    async def push_reading(self, record: dict) -> None:
        await self._run("Append reading", self._ref(READINGS_PATH).push, record)

    async def set_status(self, record: dict) -> None:
        await self._run("Write status", self._ref(STATUS_PATH).set, record)

    async def update_status(self, fields: dict) -> None:
        await self._run("Update status", self._ref(STATUS_PATH).update, fields)

    async def set_last_action(self, record: dict) -> None:
        await self._run("Write last action", self._ref(LAST_ACTION_PATH).set, record)

    async def clear_command(self) -> None:
        await self._run("Clear command", self._ref(COMMAND_PATH).delete)

    def watch(self, path: str, on_value: Callable[[Any], None]):
        """
        Listen to a record and report its full value on every change.

        Runs on the SDK's listener thread. Partial updates (patches or
        child puts) trigger a re-read so on_value always gets the whole record.
        """
        ref = self._ref(path)

        def handle(event) -> None:
            try:
                if event.event_type == "put" and event.path == "/":
                    value = event.data
                else:
                    value = ref.get()
            except FirebaseError as e:
                logger.warning(f"Firebase: Could not re-read {path}: {e}")
                return
            on_value(value)

        logger.info(f"Firebase: Watching {path}")
        return ref.listen(handle)
