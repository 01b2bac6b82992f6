"""
Best-effort geolocation for FloraMatch.

resolve() races the location provider against a timer and returns whichever
finishes first. A slow, failing or missing provider yields None; nothing is
ever raised to the caller, since a record without coordinates is normal.
"""

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from config import CONFIG
from models.analysis_record import Coordinates

log = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """Anything that can look up the device's coordinates."""

    async def locate(self) -> Optional[Coordinates]:
        ...


class IPLocationProvider:
    """
    IP-based location lookup over HTTP.

    Expects a JSON body with "latitude" and "longitude" keys.
    """

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = CONFIG.geolocation_url if url is None else url
        self._client = client

    async def locate(self) -> Optional[Coordinates]:
        if not self.url:
            return None
        if self._client is not None:
            response = await self._client.get(self.url)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.url)
        response.raise_for_status()
        body = response.json()
        return Coordinates(lat=float(body["latitude"]), lng=float(body["longitude"]))


def _valid(coords: Optional[Coordinates]) -> bool:
    if coords is None:
        return False
    return -90.0 <= coords.lat <= 90.0 and -180.0 <= coords.lng <= 180.0


class GeolocationResolver:
    """Time-bounded, never-failing wrapper around a LocationProvider."""

    def __init__(self, provider: Optional[LocationProvider] = None, timeout_ms: Optional[int] = None):
        self.provider = provider
        self.timeout_ms = CONFIG.geolocation_timeout_ms if timeout_ms is None else timeout_ms

    async def resolve(self, timeout_ms: Optional[int] = None) -> Optional[Coordinates]:
        """
        Look up coordinates, giving up after timeout_ms.

        Args:
            timeout_ms: Upper bound on the wait (defaults to the resolver's)

        Returns:
            Coordinates, or None on timeout, error or missing provider
        """
        if self.provider is None:
            return None
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms

        task = asyncio.ensure_future(self.provider.locate())
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)

        if task not in done:
            # Timer won; the lookup's result is discarded
            task.cancel()
            task.add_done_callback(_consume_result)
            log.debug("Geolocation timed out after %d ms", timeout_ms)
            return None

        try:
            coords = task.result()
        except Exception as e:
            log.debug("Geolocation unavailable: %s: %s", type(e).__name__, e)
            return None

        if not _valid(coords):
            log.debug("Geolocation returned no usable coordinates: %r", coords)
            return None
        return coords


def _consume_result(task: "asyncio.Future") -> None:
    """Retrieve a discarded task's outcome so it is never reported as unhandled."""
    if not task.cancelled():
        task.exception()


def get_default_resolver() -> GeolocationResolver:
    """Resolver using the configured IP location endpoint (None provider when disabled)."""
    provider = IPLocationProvider() if CONFIG.geolocation_url else None
    return GeolocationResolver(provider=provider)
