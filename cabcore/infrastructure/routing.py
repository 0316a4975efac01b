"""
Coordinate pair -> driving distance, via an OSRM-compatible route API.

Routed distances are cached under ``route:<origin cell>|<destination cell>``
where cells are H3 hexagons, so nearby requests share an entry.
"""

from __future__ import annotations

import logging
from typing import Optional

import h3
import httpx

from cabcore.domain.entities import Coordinates, one_decimal
from cabcore.domain.resolution import Resolution

from .geocache import GeoCache

logger = logging.getLogger(__name__)


class RoutingResolver:
    def __init__(
        self,
        base_url: str,
        timeout: float = 7.0,
        cache: Optional[GeoCache] = None,
        cache_ttl: Optional[float] = None,
        h3_resolution: int = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.h3_resolution = h3_resolution

    @classmethod
    def from_settings(cls, config, cache: Optional[GeoCache] = None) -> RoutingResolver:
        return cls(
            base_url=config.routing_base_url,
            timeout=config.routing_timeout_seconds,
            cache=cache,
            cache_ttl=config.geo_cache_ttl_seconds,
            h3_resolution=config.route_cache_h3_resolution,
        )

    def cache_key(self, origin: Coordinates, destination: Coordinates) -> str:
        origin_cell = h3.latlng_to_cell(*origin.as_tuple(), self.h3_resolution)
        dest_cell = h3.latlng_to_cell(*destination.as_tuple(), self.h3_resolution)
        return f"route:{origin_cell}|{dest_cell}"

    async def route_km(
        self, origin: Coordinates, destination: Coordinates
    ) -> Resolution[float]:
        """Driving distance in km rounded to 1 decimal, or a failure reason."""
        key = self.cache_key(origin, destination)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return Resolution.success(cached)

        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        params = {"overview": "false", "alternatives": "false", "steps": "false"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException:
            logger.warning("Routing timed out after %.1fs", self.timeout)
            return Resolution.failure("Routing timed out")
        except httpx.HTTPError as exc:
            logger.warning("Routing request failed: %s", exc)
            return Resolution.failure("Routing provider unreachable")

        if response.status_code != 200:
            logger.warning("Routing provider returned %d", response.status_code)
            return Resolution.failure(f"Routing provider returned {response.status_code}")

        try:
            data = response.json()
            code = data.get("code")
            meters = float(data["routes"][0]["distance"]) if code == "Ok" else None
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            logger.warning("Malformed routing response")
            return Resolution.failure("Malformed routing response")
        if meters is None:
            logger.warning("Routing provider answered %s", code)
            return Resolution.failure(f"No route found ({code})")

        km = one_decimal(meters / 1000)
        if km < 0:
            return Resolution.failure("Negative routed distance")
        if km == 0 and origin != destination:
            logger.warning("Routing returned 0 km for distinct points")
            return Resolution.failure("Zero routed distance for distinct points")

        if self.cache is not None and km > 0:
            self.cache.put(key, km, self.cache_ttl)
        logger.info("Routed distance %.1f km", km)
        return Resolution.success(km)
