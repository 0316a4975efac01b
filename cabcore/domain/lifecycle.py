"""
Booking lifecycle operations.

Each operation validates the actor against the booking, asks the entity to
make the transition (which consults the role-gated transition table), and
applies the side effects of entering the new state.  Nothing here touches
storage: the caller persists the booking with a compare-and-set on the
status it was loaded with.

Transition side effects
-----------------------
- ``ASSIGNED``: driver must be available, verified and drive the booked
  vehicle class; the driver is marked unavailable.
- ``IN_PROGRESS``: actual start time is stamped once.
- ``COMPLETED``: actual end time is stamped once; the caller increments the
  driver's completed-ride counter after its write succeeds.
- ``CANCELLED``: exactly one ``CancellationRecord`` is attached.
"""

from __future__ import annotations

import logging
import math
import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .cancellation import CancellationPolicy, CancellationQuote
from .discounts import DiscountEngine, UserHistory
from .entities import Actor, Booking, CancellationRecord, Driver, Rating
from .enums import BOOKING_TRANSITIONS, BookingStatus, Role
from .errors import ConflictError, PermissionDeniedError, ValidationError
from .pricing import whole

logger = logging.getLogger(__name__)

BOOKING_CODE_PREFIX = "CB"
BOOKING_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_REASON_LENGTH = 200
MAX_COMMENT_LENGTH = 500
DISCOUNTABLE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ASSIGNED}
)
ASSIGNING_ROLES = BOOKING_TRANSITIONS[(BookingStatus.CONFIRMED, BookingStatus.ASSIGNED)]


def generate_booking_code() -> str:
    suffix = "".join(secrets.choice(BOOKING_CODE_ALPHABET) for _ in range(8))
    return BOOKING_CODE_PREFIX + suffix


# ── Access ────────────────────────────────────────────────────────────


def ensure_can_view(booking: Booking, actor: Actor) -> None:
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.CUSTOMER and booking.user_id == actor.user_id:
        return
    if (
        actor.role == Role.DRIVER
        and actor.driver_id is not None
        and booking.driver_id == actor.driver_id
    ):
        return
    raise PermissionDeniedError(
        "You are not allowed to access this booking",
        {"booking_code": booking.booking_code},
    )


def _ensure_owner(booking: Booking, actor: Actor) -> None:
    if actor.role == Role.CUSTOMER and booking.user_id != actor.user_id:
        raise PermissionDeniedError("You can only manage your own bookings")
    if actor.role == Role.DRIVER and (
        actor.driver_id is None or booking.driver_id != actor.driver_id
    ):
        raise PermissionDeniedError("You are not the driver assigned to this booking")


def _transition(
    booking: Booking, target: BookingStatus, actor: Actor
) -> BookingStatus:
    previous = booking.status
    try:
        booking.check_transition(target, actor.role)
    except (ValidationError, PermissionDeniedError) as exc:
        logger.warning(
            "Rejected transition %s -> %s by %s on %s: %s",
            previous.value, target.value, actor.role.value,
            booking.booking_code, exc.message,
        )
        raise
    _ensure_owner(booking, actor)
    booking.transition_to(target, actor.role)
    logger.info(
        "Booking %s moved %s -> %s by %s",
        booking.booking_code, previous.value, target.value, actor.role.value,
    )
    return previous


# ── Transitions ───────────────────────────────────────────────────────


def confirm(booking: Booking, actor: Actor) -> None:
    _transition(booking, BookingStatus.CONFIRMED, actor)


def reject(booking: Booking, actor: Actor) -> None:
    _transition(booking, BookingStatus.REJECTED, actor)


def _already_assigned(booking: Booking) -> ConflictError:
    return ConflictError(
        "Booking already has a driver assigned",
        {"booking_code": booking.booking_code, "driver_id": booking.driver_id},
    )


def assign_driver(booking: Booking, driver: Driver, actor: Actor) -> None:
    if booking.status == BookingStatus.ASSIGNED:
        # a second acceptance; only roles that may assign learn it lost
        if actor.role not in ASSIGNING_ROLES:
            raise PermissionDeniedError(
                f"Role {actor.role.value} is not authorized to assign drivers"
            )
        raise _already_assigned(booking)
    booking.check_transition(BookingStatus.ASSIGNED, actor.role)
    if booking.driver_id is not None:
        raise _already_assigned(booking)
    if not driver.is_available:
        raise ValidationError("Driver is not available", {"driver_id": driver.id})
    if not driver.is_verified:
        raise ValidationError("Driver is not verified", {"driver_id": driver.id})
    if driver.vehicle_type != booking.vehicle_type:
        raise ValidationError(
            f"Driver vehicle {driver.vehicle_type.value} does not match "
            f"booked vehicle {booking.vehicle_type.value}",
            {"driver_id": driver.id},
        )
    _transition(booking, BookingStatus.ASSIGNED, actor)
    booking.driver_id = driver.id
    driver.is_available = False


def start_trip(booking: Booking, actor: Actor, now: datetime) -> None:
    _transition(booking, BookingStatus.IN_PROGRESS, actor)
    if booking.trip.actual_start_time is None:
        booking.trip.actual_start_time = now


def complete_trip(booking: Booking, actor: Actor, now: datetime) -> None:
    _transition(booking, BookingStatus.COMPLETED, actor)
    if booking.trip.actual_end_time is None:
        booking.trip.actual_end_time = now


def cancel(
    booking: Booking,
    actor: Actor,
    policy: CancellationPolicy,
    now: datetime,
    reason: Optional[str] = None,
) -> CancellationQuote:
    """Cancel *booking*; customers pay the windowed charge, staff cancel free."""
    if booking.status == BookingStatus.CANCELLED or booking.cancellation is not None:
        raise ConflictError(
            "Booking is already cancelled", {"booking_code": booking.booking_code}
        )
    booking.check_transition(BookingStatus.CANCELLED, actor.role)
    _ensure_owner(booking, actor)

    final_amount = booking.fare_details.final_amount if booking.fare_details else 0
    if actor.role == Role.CUSTOMER:
        quote = policy.evaluate(final_amount, booking.start_date_time, now)
    else:
        quote = policy.waived(
            final_amount,
            booking.start_date_time,
            now,
            f"Cancelled by {actor.role.value}, no charge",
        )

    reason = (reason or "").strip()[:MAX_REASON_LENGTH] or f"Cancelled by {actor.role.value}"
    _transition(booking, BookingStatus.CANCELLED, actor)
    booking.cancellation = CancellationRecord(
        cancelled_by=actor.role,
        cancelled_at=now,
        reason=reason,
        charge=quote.charge,
    )
    return quote


# ── Post-quote adjustments ────────────────────────────────────────────


def apply_discount(
    booking: Booking,
    actor: Actor,
    engine: DiscountEngine,
    code: str,
    history: UserHistory,
    now: datetime,
) -> None:
    if actor.role != Role.CUSTOMER or booking.user_id != actor.user_id:
        raise PermissionDeniedError("Only the booking owner can apply a discount")
    if (
        booking.status not in DISCOUNTABLE_STATUSES
        or booking.trip.actual_start_time is not None
    ):
        raise ValidationError(
            f"Discounts cannot be applied to a booking in status {booking.status.value}"
        )
    if booking.start_date_time is not None and booking.start_date_time <= now:
        raise ValidationError("Discounts can only be applied before the trip starts")
    if booking.fare_details is None:
        raise ValidationError("Booking has no fare to discount")
    booking.fare_details = engine.apply(booking.fare_details, code, history)


def rate(
    booking: Booking,
    actor: Actor,
    value: float,
    comment: Optional[str],
    now: datetime,
) -> Rating:
    if actor.role != Role.CUSTOMER or booking.user_id != actor.user_id:
        raise PermissionDeniedError("Only the booking owner can rate this trip")
    if booking.status != BookingStatus.COMPLETED:
        raise ValidationError("Only completed bookings can be rated")
    if booking.rating is not None:
        raise ConflictError(
            "Booking has already been rated", {"booking_code": booking.booking_code}
        )
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or not 1 <= value <= 5
    ):
        raise ValidationError("Rating must be between 1 and 5")
    comment = (comment or "").strip() or None
    if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters"
        )
    booking.rating = Rating(
        value=whole(Decimal(str(value))), comment=comment, created_at=now
    )
    return booking.rating
