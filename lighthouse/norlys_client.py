"""Norlys FlexEl price API client."""

import asyncio
import json
import logging
from typing import List, Optional

import aiohttp
from pydantic import ValidationError

from .errors import DecodeError, ProviderError
from .models import NorlysPricingResult

logger = logging.getLogger("lighthouse.norlys")


class NorlysClient:
    """Async client for the Norlys price API. Unauthenticated."""

    def __init__(self, url: str, sector: str = "DK1", timeout: int = 20):
        self.url = url
        self.sector = sector
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _fetch(self, params: dict) -> object:
        """Fetch JSON from the price API, raising on any failure."""
        try:
            session = await self._get_session()
            async with session.get(self.url, params=params) as response:
                if response.status >= 300:
                    raise ProviderError(
                        f"norlys API returned status: {response.status} {response.reason}",
                        status=response.status,
                    )
                body = await response.text()
        except asyncio.TimeoutError:
            raise ProviderError("norlys API timeout")
        except aiohttp.ClientError as e:
            raise ProviderError(f"norlys API error: {e}")

        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodeError(f"unable to decode norlys response: {e}")

    async def get_prices(self, number_of_days: int) -> List[NorlysPricingResult]:
        """Fetch FlexEl prices for the last ``number_of_days`` days."""
        data = await self._fetch({"days": number_of_days, "sector": self.sector})
        if not isinstance(data, list):
            raise DecodeError(f"expected a list of prices, got {type(data).__name__}")

        try:
            return [NorlysPricingResult.model_validate(item) for item in data]
        except ValidationError as e:
            raise DecodeError(f"unable to parse norlys prices: {e}")
