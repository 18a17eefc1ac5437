"""Tuya access-token session - owns the token and refreshes it on demand"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from errors import AuthError, DeviceError
from sources.tuya_signing import signed_headers

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1.0/token?grant_type=1"

# Refresh this many seconds before the advertised expiry
REFRESH_MARGIN = 60.0


@dataclass(frozen=True)
class SessionState:
    """
    Snapshot of the current token. Replaced wholesale, never mutated.

    Attributes:
        access_token: Opaque token string from the token exchange.
        expires_at: Monotonic clock deadline, or None when the API gave no expiry.
    """
    access_token: str
    expires_at: float | None = None


class TokenSession:
    """
    Access-token holder for one Tuya cloud project.

    The token is fetched lazily on first use, refreshed when it gets close
    to expiry and dropped when the device client reports it as expired.
    """

    def __init__(
        self,
        client_id: str,
        secret: str,
        base_url: str,
        http: httpx.AsyncClient,
        refresh_margin: float = REFRESH_MARGIN,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the session.

        Args:
            client_id: Cloud project access id
            secret: Cloud project access secret
            base_url: Regional OpenAPI endpoint, e.g. "https://openapi.tuyaus.com"
            http: Shared HTTP client (carries the request timeout)
            refresh_margin: Seconds before expiry at which the token is renewed
            clock: Monotonic time source (seconds)
        """
        self.client_id = client_id
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.refresh_margin = refresh_margin
        self.clock = clock
        self.state: SessionState | None = None
        self._lock = asyncio.Lock()

    @property
    def access_token(self) -> str | None:
        return self.state.access_token if self.state else None

    def _is_valid(self) -> bool:
        if self.state is None:
            return False
        if self.state.expires_at is None:
            return True
        return self.clock() < self.state.expires_at - self.refresh_margin

    def invalidate(self) -> None:
        """Forget the current token; the next ensure_token() re-authenticates"""
        if self.state is not None:
            logger.info("Tuya API: Access token invalidated")
        self.state = None

    async def ensure_token(self) -> str:
        """
        Return a usable access token, authenticating if needed.

        Raises:
            AuthError: The API rejected our credentials.
            DeviceError: The token endpoint could not be reached.
        """
        async with self._lock:
            if not self._is_valid():
                self.state = await self._authenticate()
            return self.state.access_token

    async def _authenticate(self) -> SessionState:
        headers = signed_headers(self.client_id, self.secret, "GET", TOKEN_PATH)

        try:
            response = await self.http.request(
                "GET",
                f"{self.base_url}{TOKEN_PATH}",
                headers=headers
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise DeviceError(f"Token request failed: {e}") from e
        except ValueError as e:
            raise DeviceError(f"Token response is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise DeviceError(f"Unexpected token payload: {data!r}")
        if not data.get("success"):
            raise AuthError(
                f"Token rejected: {data.get('msg', 'unknown error')}",
                code=data.get("code")
            )

        result = data.get("result")
        token = result.get("access_token") if isinstance(result, dict) else None
        if not token:
            raise AuthError("Token response missing access_token")

        expire_time = result.get("expire_time")
        try:
            expires_at = self.clock() + float(expire_time) if expire_time else None
        except (TypeError, ValueError) as e:
            raise DeviceError(f"Token response has invalid expire_time: {expire_time!r}") from e

        if expires_at is None:
            logger.info("Tuya API: Authenticated (no expiry advertised)")
        else:
            logger.info(f"Tuya API: Authenticated (token valid for {expire_time}s)")

        return SessionState(access_token=token, expires_at=expires_at)
