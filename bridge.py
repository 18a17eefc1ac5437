import argparse
import asyncio
import logging
import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("tuya-relay-bridge.env")

from errors import ConfigError
from sources.tuya import TuyaDeviceClient
from sources.tuya_session import TokenSession
from sinks.firebase import FirebaseStateStore, load_service_account
from control.reconcile import Reconciler, poll_forever
from control.watchers import CommandWatcher, ScheduleCache
from control.health import serve_health

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openapi.tuyaus.com"
DEFAULT_TIMEZONE = "Asia/Kuala_Lumpur"
DEFAULT_POLL_INTERVAL = 60
DEFAULT_TIMEOUT = 10
DEFAULT_PORT = 3000


def get_state_store(timeout: float = DEFAULT_TIMEOUT) -> FirebaseStateStore:
    """Initialize the Firebase store with hard fail on misconfiguration"""
    database_url = os.getenv("FIREBASE_DATABASE_URL")
    if not database_url:
        logger.error("Firebase: FIREBASE_DATABASE_URL not configured in tuya-relay-bridge.env")
        sys.exit(1)

    try:
        service_account = load_service_account(
            key_base64=os.getenv("FIREBASE_KEY_BASE64"),
            key_json=os.getenv("FIREBASE_SERVICE_ACCOUNT"),
            key_file=os.getenv("FIREBASE_SERVICE_ACCOUNT_FILE", "service-account.json")
        )
    except ConfigError as e:
        logger.error(f"Firebase: {e}")
        sys.exit(1)

    return FirebaseStateStore(database_url, service_account, timeout=timeout)


def get_device_client(store, http: httpx.AsyncClient) -> TuyaDeviceClient:
    """Initialize the Tuya device client with hard fail on misconfiguration"""
    client_id = os.getenv("TUYA_CLIENT_ID")
    secret = os.getenv("TUYA_SECRET")
    device_id = os.getenv("TUYA_DEVICE_ID")

    missing = [
        name for name, value in (
            ("TUYA_CLIENT_ID", client_id),
            ("TUYA_SECRET", secret),
            ("TUYA_DEVICE_ID", device_id),
        )
        if not value
    ]
    if missing:
        logger.error(f"Tuya: {', '.join(missing)} not configured in tuya-relay-bridge.env")
        sys.exit(1)

    base_url = os.getenv("TUYA_BASE_URL", DEFAULT_BASE_URL)
    logger.info(f"Using device: Tuya {device_id} via {base_url}")

    session = TokenSession(client_id, secret, base_url, http=http)
    return TuyaDeviceClient(session, device_id, store, http=http)


def get_port() -> int:
    """HTTP port for the liveness endpoint (PORT, default 3000)"""
    value = os.getenv("PORT", str(DEFAULT_PORT))
    try:
        port = int(value)
    except ValueError:
        port = -1
    if not 0 < port < 65536:
        logger.error(f"Invalid PORT: {value}")
        sys.exit(1)
    return port


def get_timezone():
    name = os.getenv("BRIDGE_TIMEZONE", DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"Unknown timezone: {name}")
        sys.exit(1)


async def main(interval: float, timeout: float, serve_http: bool = True):
    store = get_state_store(timeout=timeout)
    tz = get_timezone()
    port = get_port() if serve_http else None

    try:
        store.connect()
    except ConfigError as e:
        logger.error(f"Firebase: {e}")
        sys.exit(1)

    async with httpx.AsyncClient(timeout=timeout) as http:
        client = get_device_client(store, http)

        schedule = ScheduleCache()
        reconciler = Reconciler(client, store, schedule.get, tz=tz)
        commands = CommandWatcher(reconciler)

        # Subscriptions deliver on Firebase's listener thread
        loop = asyncio.get_running_loop()
        subscriptions = [
            schedule.watch(store, loop),
            commands.watch(store, loop),
        ]

        try:
            # Serialized decision loop and poll timer in parallel
            async with asyncio.TaskGroup() as tg:
                tg.create_task(reconciler.run())
                tg.create_task(poll_forever(reconciler, interval))
                if port is not None:
                    tg.create_task(serve_health(reconciler, port))
        finally:
            for subscription in subscriptions:
                subscription.close()


def cli():
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Tuya Relay Bridge")
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between reconcile cycles (default: {DEFAULT_POLL_INTERVAL})"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Timeout for every outbound call in seconds (default: {DEFAULT_TIMEOUT})"
    )
    parser.add_argument(
        "--no-http",
        action="store_true",
        help="Don't serve the liveness endpoint on PORT"
    )
    args = parser.parse_args()

    try:
        asyncio.run(main(args.interval, args.timeout, serve_http=not args.no_http))
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")


if __name__ == "__main__":
    cli()
