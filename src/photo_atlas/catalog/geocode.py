"""Rate-limited reverse geocoding through a single FIFO queue."""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Optional, Protocol

import requests

from photo_atlas.catalog.config import (
    DEFAULT_GEOCODE_BACKOFF,
    DEFAULT_GEOCODE_INTERVAL,
    GEOCODE_CACHE_PRECISION,
)

logger = logging.getLogger(__name__)

UNKNOWN_PLACE = "Unknown location"

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
DEFAULT_USER_AGENT = "photo-atlas/0.1"

# Address fields tried in order when naming a place
PLACE_FIELDS = ("city", "town", "county", "state", "country")


class RateLimitedError(Exception):
    """The lookup service answered 'too many requests'."""


class PlaceFetcher(Protocol):
    def reverse(self, latitude: float, longitude: float) -> str: ...


def place_name_from_address(address: Mapping[str, Any]) -> str:
    """Pick the most useful locality name from a Nominatim address block."""
    for key in PLACE_FIELDS:
        value = address.get(key)
        if value:
            return str(value)
    return UNKNOWN_PLACE


class NominatimFetcher:
    """Blocking reverse lookups against the OpenStreetMap Nominatim API."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        language: str = "en",
        timeout: float = 10.0,
        url: str = NOMINATIM_REVERSE_URL,
    ):
        self.user_agent = user_agent
        self.language = language
        self.timeout = timeout
        self.url = url

    def reverse(self, latitude: float, longitude: float) -> str:
        """Return a place name or UNKNOWN_PLACE.

        Raises:
            RateLimitedError: On HTTP 429
        """
        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "json",
            "zoom": 10,
            "accept-language": self.language,
        }
        try:
            response = requests.get(
                self.url, params=params, headers={"User-Agent": self.user_agent}, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Reverse geocoding request failed for ({latitude}, {longitude}): {e}")
            return UNKNOWN_PLACE

        if response.status_code == 429:
            raise RateLimitedError("Nominatim rate limit hit")
        if response.status_code != 200:
            logger.warning(f"Reverse geocoding returned HTTP {response.status_code}")
            return UNKNOWN_PLACE
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Invalid reverse geocoding response: {e}")
            return UNKNOWN_PLACE
        return place_name_from_address(data.get("address") or {})


@dataclass
class _Lookup:
    key: str
    latitude: float
    longitude: float
    future: "asyncio.Future[str]"


class ReverseGeocoder:
    """Serializes place-name lookups behind a minimum interval.

    Requests wait in one FIFO queue drained by a single worker task. A
    rate-limited request goes back to the front of the queue and the
    worker pauses for ``backoff`` seconds. Successful names are cached by
    coordinates rounded to ``precision`` decimals; the unknown sentinel
    is never cached.
    """

    def __init__(
        self,
        fetcher: Optional[PlaceFetcher] = None,
        min_interval: float = DEFAULT_GEOCODE_INTERVAL,
        backoff: float = DEFAULT_GEOCODE_BACKOFF,
        precision: int = GEOCODE_CACHE_PRECISION,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.fetcher = fetcher or NominatimFetcher()
        self.min_interval = min_interval
        self.backoff = backoff
        self.precision = precision
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[_Lookup] = deque()
        self._cache: Dict[str, str] = {}
        self._in_flight: Dict[str, "asyncio.Future[str]"] = {}
        self._processing = False
        self._worker: Optional["asyncio.Task[None]"] = None
        self._last_request: Optional[float] = None

    def cache_key(self, latitude: float, longitude: float) -> str:
        return f"{latitude:.{self.precision}f},{longitude:.{self.precision}f}"

    def cached(self, latitude: float, longitude: float) -> Optional[str]:
        return self._cache.get(self.cache_key(latitude, longitude))

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def get_place_name(self, latitude: float, longitude: float) -> str:
        """Resolve a coordinate to a place name, waiting in the queue if needed."""
        key = self.cache_key(latitude, longitude)
        if key in self._cache:
            return self._cache[key]
        if key in self._in_flight:
            return await asyncio.shield(self._in_flight[key])

        future: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self._queue.append(_Lookup(key=key, latitude=latitude, longitude=longitude, future=future))
        if not self._processing:
            self._processing = True
            self._worker = asyncio.ensure_future(self._process_queue())
        return await asyncio.shield(future)

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                lookup = self._queue.popleft()
                await self._wait_for_slot()
                try:
                    name = await asyncio.to_thread(self.fetcher.reverse, lookup.latitude, lookup.longitude)
                except RateLimitedError:
                    logger.warning(f"Rate limited while geocoding {lookup.key}; retrying in {self.backoff:g}s")
                    self._queue.appendleft(lookup)
                    await self._sleep(self.backoff)
                    continue
                except Exception as e:  # noqa: BLE001
                    logger.error(f"Reverse geocoding failed for {lookup.key}: {e}")
                    name = UNKNOWN_PLACE

                if name != UNKNOWN_PLACE:
                    self._cache[lookup.key] = name
                self._in_flight.pop(lookup.key, None)
                if not lookup.future.done():
                    lookup.future.set_result(name)
        finally:
            self._processing = False

    async def _wait_for_slot(self) -> None:
        if self._last_request is not None:
            remaining = self.min_interval - (self._clock() - self._last_request)
            if remaining > 0:
                await self._sleep(remaining)
        self._last_request = self._clock()
