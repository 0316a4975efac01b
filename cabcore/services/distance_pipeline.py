"""
Distance Resolution Pipeline
============================

Turns a trip's endpoints into a road distance, short-circuiting on the
first step that succeeds:

1. a caller-supplied positive distance (``user_provided``);
2. endpoints given as addresses are geocoded (cache first).  An address
   that cannot be resolved fails the whole request with
   ``LocationNotFoundError`` naming that address;
3. the routing provider's driving distance (``routed``);
4. great-circle distance x road-circuity multiplier (``geometric_fallback``).

Steps 3 and 4 each return a ``Resolution``; the chain below walks them in
order, so the fallback is visible data flow rather than exception handling.
A final distance that is not positive raises ``DistanceUnavailableError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from cabcore.domain.distance import DEFAULT_CIRCUITY_MULTIPLIER, estimate_road_km
from cabcore.domain.entities import Coordinates, DistanceResult
from cabcore.domain.enums import DistanceSource
from cabcore.domain.errors import (
    DistanceUnavailableError,
    LocationNotFoundError,
    ValidationError,
)
from cabcore.domain.resolution import Resolution
from cabcore.infrastructure.geocoding import GeocodingResolver
from cabcore.infrastructure.routing import RoutingResolver

logger = logging.getLogger(__name__)

MAX_ADDRESS_LENGTH = 500

DistanceStep = Callable[[Coordinates, Coordinates], Awaitable[Resolution[float]]]


@dataclass(frozen=True)
class Endpoint:
    """One end of a trip: an address, explicit coordinates, or both."""

    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    def __post_init__(self) -> None:
        if self.address is not None:
            if not isinstance(self.address, str):
                raise ValidationError("Address must be a string")
            address = self.address.strip()
            if len(address) > MAX_ADDRESS_LENGTH:
                raise ValidationError(
                    f"Address cannot exceed {MAX_ADDRESS_LENGTH} characters"
                )
            object.__setattr__(self, "address", address or None)
        if self.address is None and self.coordinates is None:
            raise ValidationError("Each location needs an address or coordinates")


def is_valid_distance(value: Optional[float]) -> bool:
    return (
        value is not None
        and not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
        and value > 0
    )


class DistanceResolutionPipeline:
    def __init__(
        self,
        geocoder: GeocodingResolver,
        router: RoutingResolver,
        circuity_multiplier: float = DEFAULT_CIRCUITY_MULTIPLIER,
    ):
        self.geocoder = geocoder
        self.router = router
        self.circuity_multiplier = circuity_multiplier

    async def resolve(
        self,
        origin: Endpoint,
        destination: Endpoint,
        distance_km: Optional[float] = None,
    ) -> DistanceResult:
        if is_valid_distance(distance_km):
            return self._accept(distance_km, DistanceSource.USER_PROVIDED)
        if distance_km is not None:
            logger.debug("Ignoring unusable caller distance %r", distance_km)

        start = await self.locate(origin)
        end = await self.locate(destination)

        steps: tuple[tuple[DistanceSource, DistanceStep], ...] = (
            (DistanceSource.ROUTED, self.router.route_km),
            (DistanceSource.GEOMETRIC_FALLBACK, self._geometric),
        )
        failures: list[str] = []
        for source, step in steps:
            outcome = await step(start, end)
            if outcome.ok:
                return self._accept(outcome.value, source)
            failures.append(f"{source.value}: {outcome.error}")
            if source == DistanceSource.ROUTED:
                logger.warning(
                    "Routing failed (%s); falling back to geometric estimate",
                    outcome.error,
                )
        raise DistanceUnavailableError(
            "Could not determine the trip distance", {"failures": failures}
        )

    async def locate(self, endpoint: Endpoint) -> Coordinates:
        if endpoint.coordinates is not None:
            return endpoint.coordinates
        outcome = await self.geocoder.resolve(endpoint.address)
        if not outcome.ok:
            raise LocationNotFoundError(
                f"Location not found: {endpoint.address}",
                {"address": endpoint.address, "reason": outcome.error},
            )
        return outcome.value

    async def _geometric(
        self, origin: Coordinates, destination: Coordinates
    ) -> Resolution[float]:
        km = estimate_road_km(origin, destination, self.circuity_multiplier)
        if km <= 0:
            return Resolution.failure("Origin and destination are the same point")
        return Resolution.success(km)

    @staticmethod
    def _accept(km: float, source: DistanceSource) -> DistanceResult:
        result = DistanceResult(km, source)
        if result.kilometers <= 0:
            raise DistanceUnavailableError(
                "Could not determine the trip distance",
                {"source": source.value, "kilometers": km},
            )
        logger.info("Distance resolved: %.1f km (%s)", result.kilometers, source.value)
        return result
