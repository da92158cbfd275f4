"""
RapidTriage - Facility Lookup Tool

Finds nearby hospitals and ambulance stations for a situation's location.

Caching:
    Results are cached per coordinate key (lat/lon rounded to 4 decimals,
    roughly 11m). Each entry carries its own expiry, so a write for one key
    never refreshes another. A lock guards the cache map.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from rapidtriage.core.exceptions import ToolDispatchError, ToolExecutionError
from rapidtriage.core.types import Facility, Location, Situation, ToolKind, ToolResponse, TriageCode
from rapidtriage.tools.base import HTTPDispatcher, SleepFunc, ToolConfig

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def cache_key(location: Location) -> str:
    return f"{location.latitude:.4f}:{location.longitude:.4f}"


def filter_by_type(facilities: List[Facility], facility_type: str, max_results: int = 0) -> List[Facility]:
    filtered = [f for f in facilities if f.type == facility_type]
    if max_results > 0:
        filtered = filtered[:max_results]
    return filtered


class LocationTool:
    """
    POST {endpoint}/facilities/nearby, compute distances, sort ascending.

    Args:
        config: Service settings
        max_results: Requested from the service
        max_distance_km: Requested from the service and enforced locally
        cache_ttl_seconds: Per-entry lifetime; 0 disables caching
        clock: Monotonic time source (tests inject a fake)
    """

    def __init__(
        self,
        config: ToolConfig,
        max_results: int = 5,
        max_distance_km: float = 50.0,
        cache_ttl_seconds: float = 1800.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._dispatcher = HTTPDispatcher(config, "location", transport=transport, sleep=sleep)
        self._max_results = max_results if max_results > 0 else 5
        self._max_distance_km = max_distance_km if max_distance_km > 0 else 50.0
        self._cache_ttl = cache_ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, List[Facility]]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "Location Services Tool"

    @property
    def kind(self) -> ToolKind:
        return ToolKind.FACILITY_LOOKUP

    @property
    def config(self) -> ToolConfig:
        return self._dispatcher.config

    def is_applicable(self, situation: Situation) -> bool:
        return situation.location is not None

    async def execute(self, situation: Situation) -> ToolResponse:
        if situation.location is None:
            raise ToolExecutionError("location information missing", details={"emergency_id": situation.id})

        location = situation.location
        facilities = await self.find_facilities(location, situation.code)

        return ToolResponse(
            tool_name=self.name,
            success=True,
            message=f"Found {len(facilities)} nearby medical facilities",
            data={
                "facilities": json.dumps([f.to_dict() for f in facilities]),
                "num_facilities": str(len(facilities)),
                "source_latitude": f"{location.latitude:.6f}",
                "source_longitude": f"{location.longitude:.6f}",
            },
        )

    async def get_nearest_hospitals(self, location: Location, max_results: int = 3) -> List[Facility]:
        return filter_by_type(await self.find_facilities(location), "hospital", max_results)

    async def get_nearest_ambulances(self, location: Location, max_results: int = 2) -> List[Facility]:
        return filter_by_type(await self.find_facilities(location), "ambulance", max_results)

    # -------------------------------------------------------------------------
    # Lookup + cache
    # -------------------------------------------------------------------------

    async def find_facilities(
        self,
        location: Location,
        code: TriageCode = TriageCode.UNKNOWN,
    ) -> List[Facility]:
        """All facilities near ``location``, nearest first."""
        key = cache_key(location)

        cached = self._cache_get(key)
        if cached is not None:
            logger.debug("Facility cache hit for %s", key)
            return cached

        body = await self._dispatcher.post(
            "/facilities/nearby",
            {
                "latitude": location.latitude,
                "longitude": location.longitude,
                "max_distance": self._max_distance_km,
                "max_results": self._max_results,
                "emergency_code": code.value,
            },
        )
        facilities = self._parse_facilities(body, location)

        self._cache_put(key, facilities)
        return facilities

    def _cache_get(self, key: str) -> Optional[List[Facility]]:
        if self._cache_ttl <= 0:
            return None
        now = self._clock()
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, facilities = entry
            if now >= expires_at:
                del self._cache[key]
                return None
            return list(facilities)

    def _cache_put(self, key: str, facilities: List[Facility]) -> None:
        if self._cache_ttl <= 0:
            return
        expires_at = self._clock() + self._cache_ttl
        with self._lock:
            self._cache[key] = (expires_at, list(facilities))

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _parse_facilities(self, body: Any, origin: Location) -> List[Facility]:
        if isinstance(body, dict):
            body = body.get("facilities", body)
        if not isinstance(body, list):
            raise ToolDispatchError("location service response is not a facility list")

        facilities = []
        try:
            for item in body:
                lat = float(item["latitude"])
                lon = float(item["longitude"])
                facilities.append(Facility(
                    id=str(item.get("id", "")),
                    name=str(item.get("name", "")),
                    type=str(item.get("type", "")),
                    latitude=lat,
                    longitude=lon,
                    address=item.get("address") or None,
                    distance_km=haversine_km(origin.latitude, origin.longitude, lat, lon),
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise ToolDispatchError(f"failed to parse location service response: {e}") from e

        facilities = [f for f in facilities if f.distance_km <= self._max_distance_km]
        facilities.sort(key=lambda f: f.distance_km)
        return facilities
