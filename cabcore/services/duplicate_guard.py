"""
Duplicate-booking guard.

Rejects a new booking when the same user already holds an active booking
whose start falls within ``start ± window``.  The check and the insert that
follows are two statements, so two simultaneous requests can both pass;
this is a best-effort pre-check, not a storage constraint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from cabcore.domain.errors import ConflictError
from cabcore.infrastructure.repositories import BookingRepository

logger = logging.getLogger(__name__)


class DuplicateBookingGuard:
    def __init__(
        self, repository: BookingRepository, window: timedelta = timedelta(minutes=30)
    ):
        self.repository = repository
        self.window = window

    async def check(self, user_id: int, start: datetime) -> None:
        clashes = await self.repository.find_active_in_window(user_id, start, self.window)
        if not clashes:
            return
        clash = clashes[0]
        logger.warning(
            "Duplicate booking for user %d at %s clashes with %s",
            user_id, start.isoformat(), clash.booking_code,
        )
        raise ConflictError(
            f"You already have booking {clash.booking_code} scheduled around this time",
            {
                "booking_code": clash.booking_code,
                "start_date_time": clash.start_date_time.isoformat(),
                "status": clash.status.value,
            },
        )
