"""Tuya smart plug ingress/actuator - polls status and switches the relay via OpenAPI"""
import json
import logging
from datetime import datetime, timezone

import httpx

from errors import DeviceError, StoreError
from sinks.base import StateStore, epoch_ms
from sources.base import CommandSource, Telemetry
from sources.tuya_session import TokenSession
from sources.tuya_signing import signed_headers

logger = logging.getLogger(__name__)

# Vendor codes meaning "access token no longer valid"
TOKEN_EXPIRED_CODES = frozenset({1010})

# Re-authenticate and retry at most this many times per request
MAX_REAUTH_RETRIES = 1

SWITCH_CODE = "switch_1"


def parse_status(status: list, observed_at: datetime) -> Telemetry:
    """
    Convert the device status list into Telemetry.

    The plug reports voltage in decivolts, current in milliamps and power
    in deciwatts. Missing codes read as zero / off.
    """
    values = {
        item.get("code"): item.get("value")
        for item in status
        if isinstance(item, dict)
    }

    return Telemetry(
        voltage=(values.get("cur_voltage") or 0) / 10.0,
        current=(values.get("cur_current") or 0) / 1000.0,
        power=(values.get("cur_power") or 0) / 10.0,
        device_reported_on=bool(values.get(SWITCH_CODE, False)),
        observed_at=observed_at
    )


class TuyaDeviceClient:
    """
    Tuya cloud smart plug.

    Reads live voltage/current/power and relay state, and switches the
    relay. Every successful switch is audited to the state store.
    """

    def __init__(
        self,
        session: TokenSession,
        device_id: str,
        store: StateStore,
        http: httpx.AsyncClient
    ):
        """
        Initialize the device client.

        Args:
            session: Token session for the cloud project
            device_id: Tuya device id of the plug
            store: State store receiving the control/lastAction audit record
            http: Shared HTTP client (carries the request timeout)
        """
        self.session = session
        self.device_id = device_id
        self.store = store
        self.http = http

    async def fetch_telemetry(self) -> Telemetry:
        result = await self._request("GET", f"/v1.0/devices/{self.device_id}/status")
        if not isinstance(result, list):
            raise DeviceError(f"Unexpected status payload: {result!r}")
        try:
            return parse_status(result, datetime.now(timezone.utc))
        except (TypeError, ValueError) as e:
            raise DeviceError(f"Unreadable status payload: {e}") from e

    async def set_power(self, desired_on: bool, source: CommandSource) -> None:
        body = {"commands": [{"code": SWITCH_CODE, "value": desired_on}]}
        await self._request("POST", f"/v1.0/devices/{self.device_id}/commands", body)

        state = "ON" if desired_on else "OFF"
        logger.info(f"Tuya API: Switched {state} ({source.value})")

        # The relay has already switched at this point; a failed audit write
        # still fails the call.
        record = {
            "desiredOn": desired_on,
            "source": source.value,
            "at": epoch_ms(datetime.now(timezone.utc)),
        }
        try:
            await self.store.set_last_action(record)
        except StoreError as e:
            raise DeviceError(f"Switched {state} but audit write failed: {e}") from e

    async def _request(self, method: str, path: str, body: dict | None = None):
        """
        Send a signed business request and return its "result".

        Retries once after re-authenticating when the token has expired.
        """
        content = json.dumps(body, separators=(",", ":")).encode("utf-8") if body is not None else b""

        for attempt in range(MAX_REAUTH_RETRIES + 1):
            token = await self.session.ensure_token()
            data = await self._send(method, path, content, token)

            if data.get("success"):
                return data.get("result")

            code = data.get("code")
            msg = data.get("msg", "unknown error")

            if code in TOKEN_EXPIRED_CODES and attempt < MAX_REAUTH_RETRIES:
                logger.info(f"Tuya API: Token expired (code {code}), re-authenticating")
                self.session.invalidate()
                continue

            if code in TOKEN_EXPIRED_CODES:
                # Don't reuse a token the API keeps rejecting
                self.session.invalidate()

            raise DeviceError(f"Tuya API error {code}: {msg}", code=code)

        raise DeviceError(f"Tuya API: {method} {path} gave up")

    async def _send(self, method: str, path: str, content: bytes, token: str) -> dict:
        headers = signed_headers(
            self.session.client_id,
            self.session.secret,
            method,
            path,
            content,
            access_token=token
        )
        if content:
            headers["Content-Type"] = "application/json"

        try:
            response = await self.http.request(
                method,
                f"{self.session.base_url}{path}",
                headers=headers,
                content=content or None
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise DeviceError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise DeviceError(f"{method} {path} returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise DeviceError(f"{method} {path} returned unexpected payload: {data!r}")
        return data
