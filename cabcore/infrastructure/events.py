"""
Real-time booking events over Redis pub/sub.

Each event is published as JSON to the owning user's channel and, when a
driver is attached, to that driver's channel::

    <prefix>:user:<user_id>
    <prefix>:driver:<driver_id>

Publishing is fire-and-forget: a Redis failure is logged and swallowed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cabcore.domain.entities import Booking

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_REJECTED = "booking.rejected"
DRIVER_ASSIGNED = "booking.driver_assigned"
TRIP_STARTED = "booking.trip_started"
TRIP_COMPLETED = "booking.trip_completed"
BOOKING_CANCELLED = "booking.cancelled"


class BookingEventPublisher:
    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]],
        prefix: str = "cab",
    ):
        self._redis_factory = redis_factory
        self.prefix = prefix

    def channels_for(self, booking: Booking) -> list[str]:
        channels = [f"{self.prefix}:user:{booking.user_id}"]
        if booking.driver_id is not None:
            channels.append(f"{self.prefix}:driver:{booking.driver_id}")
        return channels

    async def publish(
        self,
        event: str,
        booking: Booking,
        extra: Optional[dict[str, Any]] = None,
    ) -> int:
        """Publish *event*; returns the number of channels written to."""
        payload = json.dumps(
            {
                "event": event,
                "booking_id": booking.id,
                "booking_code": booking.booking_code,
                "status": booking.status.value,
                "user_id": booking.user_id,
                "driver_id": booking.driver_id,
                "at": datetime.now(timezone.utc).isoformat(),
                **(extra or {}),
            }
        )
        sent = 0
        try:
            redis = await self._redis_factory()
            for channel in self.channels_for(booking):
                await redis.publish(channel, payload)
                sent += 1
        except (RedisError, OSError):
            logger.exception(
                "Failed to publish %s for booking %s", event, booking.booking_code
            )
        return sent
