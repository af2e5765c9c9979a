"""
HTTP client for the UFO lamp.

The device exposes a single ``GET /api?<query>`` endpoint. It answers with a
short text body and never reports what it is displaying, which is why the
server keeps its own shadow state.

Queries contain raw ``|`` separators that the firmware does not decode, so URLs
are passed to aiohttp pre-encoded.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from yarl import URL

from .config import DeviceConfig
from .errors import DeviceError, DeviceUnavailableError, RetryConfig, retry_with_backoff_async
from .query import normalize_query

logger = logging.getLogger(__name__)


def build_ring_pattern_command(
    ring: str,
    segments: Optional[List[str]] = None,
    background: str = "",
    whirl: int = 0,
    counter_clockwise: bool = False,
    morph_spec: str = "",
) -> str:
    """Build the query for one ring: init, segments, background, whirl, morph.

    ``whirl`` is the device value (1-510); 0 leaves rotation off.
    """
    parts = []
    if ring:
        parts.append(f"{ring}_init=1")

    joined = "|".join(s for s in (segments or []) if s)
    if joined:
        parts.append(f"{ring}={joined}")

    if background:
        parts.append(f"{ring}_bg={background}")

    if whirl > 0:
        value = str(whirl)
        if counter_clockwise:
            value += "|ccw"
        parts.append(f"{ring}_whirl={value}")

    if morph_spec:
        parts.append(f"{ring}_morph={morph_spec}")

    return "&".join(parts)


class UfoClient:
    """
    Async client for the UFO /api endpoint.

    Supports:
    - Raw query passthrough without URL-encoding
    - Retry with backoff on network failures and 5xx answers
    - Connection reuse (single lazily created aiohttp session)
    """

    def __init__(self, config: Optional[DeviceConfig] = None):
        self._config = config or DeviceConfig()
        self._retry = RetryConfig(
            max_attempts=self._config.retry_attempts,
            initial_delay=self._config.retry_delay,
        )
        self._http_session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return self._config.base_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create reusable HTTP session."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            )
        return self._http_session

    async def close(self):
        """Close the HTTP session."""
        if self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    def build_url(self, query: str) -> str:
        return f"{self.base_url}/api?{normalize_query(query)}"

    async def _get_once(self, url: str) -> str:
        session = await self._get_session()
        try:
            async with session.get(URL(url, encoded=True)) as response:
                body = await response.text()
                if response.status != 200:
                    raise DeviceError(response.status, body)
                return body
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise DeviceUnavailableError(f"UFO request failed: {e}") from e

    async def send_raw_query(self, query: str) -> str:
        """Send a query to /api and return the response body.

        Raises:
            DeviceError: device answered with a non-200 status
            DeviceUnavailableError: device unreachable after all retries
        """
        url = self.build_url(query)
        logger.debug("UFO GET %s", url)

        def _log_retry(attempt: int, error: Exception):
            logger.warning("UFO request failed (attempt %d/%d): %s", attempt, self._retry.max_attempts, error)

        return await retry_with_backoff_async(
            lambda: self._get_once(url),
            config=self._retry,
            on_retry=_log_retry,
        )

    async def get_status(self) -> Dict[str, Any]:
        """Ping the device. The body is whatever the firmware returns."""
        response = await self.send_raw_query("")
        return {
            "response": response,
            "timestamp": int(time.time()),
        }

    async def set_ring_pattern(
        self,
        ring: str,
        segments: Optional[List[str]] = None,
        background: str = "",
        whirl: int = 0,
        counter_clockwise: bool = False,
        morph_spec: str = "",
    ) -> str:
        query = build_ring_pattern_command(ring, segments, background, whirl, counter_clockwise, morph_spec)
        return await self.send_raw_query(query)

    async def set_logo(self, state: str) -> str:
        """``state`` is ``on``, ``off`` or a ``c1|c2|c1|c2`` colour pattern."""
        return await self.send_raw_query(f"logo={state}")

    async def set_brightness(self, level: int) -> str:
        if level < 0 or level > 255:
            raise ValueError(f"brightness level must be between 0 and 255, got {level}")
        return await self.send_raw_query(f"dim={level}")

    async def play_effect(self, effect_query: str) -> str:
        return await self.send_raw_query(effect_query)
