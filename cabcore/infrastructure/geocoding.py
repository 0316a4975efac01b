"""
Free-text address -> coordinates, via a Nominatim-compatible search API.

Every outcome is returned as a ``Resolution``; provider errors, timeouts and
malformed payloads are expected results, not exceptions.  Successful lookups
are cached under ``geocode:<normalized address>``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from cabcore.domain.entities import Coordinates
from cabcore.domain.errors import ValidationError
from cabcore.domain.resolution import Resolution

from .geocache import GeoCache

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 3


def normalize_address(address: str) -> str:
    """Collapse whitespace; the lowercase form is the cache key."""
    return " ".join((address or "").split())


class GeocodingResolver:
    def __init__(
        self,
        base_url: str,
        user_agent: str,
        timeout: float = 5.0,
        country_bias: Optional[str] = "in",
        cache: Optional[GeoCache] = None,
        cache_ttl: Optional[float] = None,
    ):
        if not user_agent:
            raise ValueError("Geocoding requires an identifying User-Agent")
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.country_bias = country_bias
        self.cache = cache
        self.cache_ttl = cache_ttl

    @classmethod
    def from_settings(cls, config, cache: Optional[GeoCache] = None) -> GeocodingResolver:
        return cls(
            base_url=config.geocoding_base_url,
            user_agent=config.geocoding_user_agent,
            timeout=config.geocoding_timeout_seconds,
            country_bias=config.geocoding_country_bias,
            cache=cache,
            cache_ttl=config.geo_cache_ttl_seconds,
        )

    @staticmethod
    def cache_key(address: str) -> str:
        return f"geocode:{normalize_address(address).lower()}"

    async def resolve(self, address: str) -> Resolution[Coordinates]:
        query = normalize_address(address)
        if len(query) < MIN_QUERY_LENGTH:
            return Resolution.failure(f"Address too short to geocode: '{query}'")

        key = self.cache_key(query)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return Resolution.success(cached)

        params = {"q": query, "format": "json", "limit": 1}
        if self.country_bias:
            params["countrycodes"] = self.country_bias
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/search",
                    params=params,
                    headers={"User-Agent": self.user_agent},
                )
        except httpx.TimeoutException:
            logger.warning("Geocoding timed out after %.1fs for '%s'", self.timeout, query)
            return Resolution.failure(f"Geocoding timed out for '{query}'")
        except httpx.HTTPError as exc:
            logger.warning("Geocoding request failed for '%s': %s", query, exc)
            return Resolution.failure(f"Geocoding provider unreachable for '{query}'")

        if response.status_code != 200:
            logger.warning(
                "Geocoding provider returned %d for '%s'", response.status_code, query
            )
            return Resolution.failure(
                f"Geocoding provider returned {response.status_code} for '{query}'"
            )

        try:
            results = response.json()
            first = results[0]
            coords = Coordinates(float(first["lat"]), float(first["lon"]))
        except (ValueError, KeyError, IndexError, TypeError, ValidationError):
            logger.warning("No usable geocoding result for '%s'", query)
            return Resolution.failure(f"No location found for '{query}'")

        if self.cache is not None:
            self.cache.put(key, coords, self.cache_ttl)
        logger.info(
            "Geocoded '%s' -> (%.6f, %.6f)", query, coords.latitude, coords.longitude
        )
        return Resolution.success(coords)
