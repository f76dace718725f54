"""Eloverblik customer API client.

Eloverblik uses two bearer tokens. The application token ("LighthouseToken")
is created by the user on eloverblik.dk and lives for up to a year; it can
only be used to call /api/token, which hands out a request token valid for
about 24 hours. Every data call is authenticated with the request token.

The token endpoint is rate limited, so a still-valid request token is
reused, and can optionally be cached on disk to survive restarts.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import httpx

from .errors import (
    DecodeError,
    ExpiredApplicationTokenError,
    ExpiredTokenError,
    NoApplicationTokenError,
    NoRequestTokenError,
    ProviderError,
    TokenExchangeFailedError,
)
from .models import MeteringPoint, MeteringPointResult, MeterReading, MeterReadingsResult, TokenResult
from .token_store import TokenStore, decode_token_expiry, default_request_token_path

logger = logging.getLogger("lighthouse.eloverblik")

DEFAULT_BASE_URL = "https://api.eloverblik.dk/customerapi"
REQUEST_TIMEOUT = 20.0


class EloverblikClient:
    """Eloverblik API client owning the application and request tokens.

    All access to the request token goes through ``_lock``, so a refresh
    can never interleave with an authenticated call reading the token.

    Attributes:
        base_url: Customer API root
        token_path: Where the request token is cached when disk caching is on
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token_path: Optional[Path] = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Eloverblik client.

        Args:
            base_url: Customer API root URL
            token_path: Request token cache file (default: .requestToken beside the program)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.token_path = token_path or default_request_token_path()
        self.timeout = timeout
        self._transport = transport

        self.client: Optional[httpx.AsyncClient] = None

        self._application_token = TokenStore()
        self._request_token = TokenStore()
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        """Initialize HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self):
        """Close HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    @property
    def application_token_expiry(self) -> Optional[datetime]:
        state = self._application_token.get()
        return state.expire if state else None

    @property
    def request_token_expiry(self) -> Optional[datetime]:
        state = self._request_token.get()
        return state.expire if state else None

    # =========================================================================
    # Token lifecycle
    # =========================================================================

    def set_application_token(self, token: str):
        """Validate and store the application token.

        Raises:
            InvalidTokenError: if the token's claims can't be decoded
            ExpiredTokenError: if the token has already expired
        """
        expire = decode_token_expiry(token)
        if expire <= datetime.now(timezone.utc):
            raise ExpiredTokenError("application token has expired")

        if token.startswith("Bearer "):
            token = token[7:]
        self._application_token.set(token, expire)
        logger.info(f"Application token valid until {expire.strftime('%Y-%m-%d %H:%M:%S')} UTC")

    async def ensure_request_token(self, force_refresh: bool = False, use_disk_cache: bool = False):
        """Make sure a valid request token is held, fetching one if needed.

        A still-valid request token is reused without any network call
        unless ``force_refresh`` is set.

        Args:
            force_refresh: Always call /api/token
            use_disk_cache: Read the token from disk when none is held, and
                write newly issued tokens back

        Raises:
            NoApplicationTokenError: no application token set
            ExpiredApplicationTokenError: application token expired
            TokenExchangeFailedError: /api/token failed or was unreachable
            DecodeError: /api/token answered with an unreadable body
            InvalidTokenError, ExpiredTokenError: issued token is unusable
        """
        async with self._lock:
            now = datetime.now(timezone.utc)

            application_token = self._application_token.get()
            if application_token is None:
                raise NoApplicationTokenError("no application token configured")
            if not application_token.is_valid(now):
                raise ExpiredApplicationTokenError(
                    "application token has expired, please create a new one on eloverblik.dk"
                )

            if use_disk_cache and self._request_token.get() is None:
                try:
                    if self._request_token.load(self.token_path):
                        logger.info(f"Read request token from {self.token_path}")
                except DecodeError as e:
                    logger.warning(f"Unable to use the request token from disk: {e}")

            if not force_refresh and self._request_token.is_valid(now):
                logger.info("The current request token is still valid")
                return

            token = await self._exchange_token(application_token.token)

            expire = decode_token_expiry(token)
            if expire <= datetime.now(timezone.utc):
                raise ExpiredTokenError("request token has expired")

            self._request_token.set(token, expire)
            logger.info(f"Got new request token, valid until {expire.strftime('%Y-%m-%d %H:%M:%S')} UTC")

            if use_disk_cache:
                try:
                    self._request_token.save(self.token_path)
                except OSError as e:
                    logger.warning(f"Unable to save request token to disk: {e}")

    async def _exchange_token(self, application_token: str) -> str:
        """Call /api/token with the application token."""
        await self.connect()

        headers = {
            "accept": "application/json",
            "Authorization": f"Bearer {application_token}",
        }
        try:
            # Total deadline; httpx's own timeout restarts on every chunk read
            async with asyncio.timeout(self.timeout):
                resp = await self.client.get(f"{self.base_url}/api/token", headers=headers)
        except TimeoutError:
            raise TokenExchangeFailedError(f"unable to get request token: no response within {self.timeout}s")
        except httpx.HTTPError as e:
            raise TokenExchangeFailedError(f"unable to get request token: {type(e).__name__}: {e}")

        if resp.status_code > 299:
            raise TokenExchangeFailedError(
                f"unable to get request token, server responded: {resp.status_code}",
                status=resp.status_code,
            )

        try:
            return TokenResult.model_validate_json(resp.content).result
        except ValueError as e:
            raise DecodeError(f"unable to decode token response: {e}")

    # =========================================================================
    # Data API
    # =========================================================================

    async def _authorized_request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request authenticated with the current request token."""
        async with self._lock:
            state = self._request_token.get()
            if state is None:
                raise NoRequestTokenError(f"{operation}: no request token")
            if not state.is_valid():
                raise ExpiredTokenError(f"{operation}: request token has expired")

            await self.connect()
            headers = {
                "accept": "application/json",
                "Authorization": f"Bearer {state.token}",
            }
            try:
                async with asyncio.timeout(self.timeout):
                    resp = await self.client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
            except TimeoutError:
                raise ProviderError(f"{operation}: no response within {self.timeout}s")
            except httpx.HTTPError as e:
                raise ProviderError(f"{operation}: {type(e).__name__}: {e}")

            if resp.status_code == 401:
                # Rejected before its expiry; only a new exchange can replace it
                self._request_token.clear()
                logger.warning(f"{operation}: request token rejected, discarding it")

        if resp.status_code > 299:
            raise ProviderError(
                f"unable to get {operation}, server responded: {resp.status_code}",
                status=resp.status_code,
            )
        return resp

    async def get_metering_points(self) -> List[MeteringPoint]:
        """Get the metering points the token has access to."""
        resp = await self._authorized_request(
            "meteringpoints",
            "GET",
            "/api/meteringpoints/meteringpoints",
            params={"includeAll": "true"},
        )
        try:
            return MeteringPointResult.model_validate_json(resp.content).result
        except ValueError as e:
            raise DecodeError(f"unable to decode meteringpoints response: {e}")

    async def get_meter_readings(
        self,
        metering_point_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> List[MeterReading]:
        """Get hourly readings for one metering point.

        Args:
            metering_point_id: 18 digit metering point ID
            from_date: First day (inclusive)
            to_date: Last day

        Returns:
            List of MeterReading, one per hour
        """
        series_from = from_date.strftime("%Y-%m-%d")
        series_to = to_date.strftime("%Y-%m-%d")
        logger.info(f"Getting data for {metering_point_id} from {series_from} to {series_to}")

        body = {"meteringPoints": {"meteringPoint": [metering_point_id]}}
        resp = await self._authorized_request(
            "timeseries",
            "POST",
            f"/api/meterdata/gettimeseries/{series_from}/{series_to}/Hour",
            json=body,
        )
        try:
            return MeterReadingsResult.model_validate_json(resp.content).readings()
        except ValueError as e:
            raise DecodeError(f"unable to decode timeseries response: {e}")
