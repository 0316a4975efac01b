"""
Booking service: search, pricing, creation and every lifecycle change.

Flow of a request
-----------------
search / estimate  ->  DistanceResolutionPipeline  ->  FareCalculator
create             ->  window checks  ->  DuplicateBookingGuard  ->
                       pipeline + server-side quote  ->  insert (CONFIRMED)
lifecycle changes  ->  load  ->  domain operation  ->  compare-and-set write

The service never commits: the request's session dependency commits on
success and rolls back on error.  Real-time events and push notifications
are sent after the write and never fail the operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cabcore.domain import lifecycle
from cabcore.domain.cancellation import CancellationPolicy, CancellationQuote
from cabcore.domain.discounts import DiscountEngine, UserHistory
from cabcore.domain.entities import Actor, Booking, FareBreakdown, Location
from cabcore.domain.enums import (
    BOOKING_TRANSITIONS,
    LOCAL_TYPES,
    BookingStatus,
    BookingType,
    DistanceSource,
    PaymentMethod,
    PaymentStatus,
    Role,
    VehicleType,
)
from cabcore.domain.errors import (
    CabCoreError,
    ConflictError,
    DistanceUnavailableError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cabcore.domain.pricing import FareCalculator, VehicleOption
from cabcore.domain.tariffs import package_for
from cabcore.domain.timeutils import utcnow
from cabcore.infrastructure import events
from cabcore.infrastructure.events import BookingEventPublisher
from cabcore.infrastructure.notifications import PushNotifier
from cabcore.infrastructure.payments import PaymentGatewayClient
from cabcore.infrastructure.repositories import (
    BookingRepository,
    DriverRepository,
    UserRepository,
)

from .distance_pipeline import DistanceResolutionPipeline, Endpoint
from .duplicate_guard import DuplicateBookingGuard

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset(
    src for (src, dst) in BOOKING_TRANSITIONS if dst == BookingStatus.CANCELLED
)
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.PROCESSING}
)


@dataclass(frozen=True)
class BookingRules:
    min_hours_ahead: float = 2.0
    duplicate_window: timedelta = timedelta(minutes=30)
    search_fallback_km: Optional[float] = 100.0

    @classmethod
    def from_settings(cls, config) -> BookingRules:
        return cls(
            min_hours_ahead=config.min_booking_hours_ahead,
            duplicate_window=timedelta(minutes=config.duplicate_window_minutes),
            search_fallback_km=config.search_fallback_distance_km,
        )


@dataclass(frozen=True)
class TripQuery:
    booking_type: BookingType
    pickup: Location
    drop: Optional[Location] = None
    start: Optional[datetime] = None
    distance_km: Optional[float] = None
    extra_km: float = 0.0
    extra_hours: float = 0.0


@dataclass(frozen=True)
class NewBooking:
    trip: TripQuery
    vehicle_type: VehicleType
    end: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.CASH


@dataclass(frozen=True)
class SearchResult:
    distance_km: Optional[float]
    distance_source: Optional[DistanceSource]
    distance_is_default: bool
    options: list[VehicleOption] = field(default_factory=list)


@dataclass(frozen=True)
class FareEstimate:
    distance_km: Optional[float]
    distance_source: Optional[DistanceSource]
    fare: FareBreakdown


@dataclass(frozen=True)
class CancellationPreview:
    booking: Booking
    is_cancellable: bool
    quote: CancellationQuote


@dataclass(frozen=True)
class CancellationOutcome:
    booking: Booking
    quote: CancellationQuote
    refund_note: Optional[str] = None


def endpoint_for(location: Location) -> Endpoint:
    return Endpoint(
        address=location.address or location.city,
        coordinates=location.coordinates,
    )


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        pipeline: DistanceResolutionPipeline,
        calculator: FareCalculator,
        discounts: DiscountEngine,
        cancellation_policy: CancellationPolicy,
        rules: BookingRules = BookingRules(),
        publisher: Optional[BookingEventPublisher] = None,
        notifier: Optional[PushNotifier] = None,
        payments: Optional[PaymentGatewayClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.bookings = BookingRepository(session)
        self.drivers = DriverRepository(session)
        self.users = UserRepository(session)
        self.pipeline = pipeline
        self.calculator = calculator
        self.discounts = discounts
        self.cancellation_policy = cancellation_policy
        self.rules = rules
        self.guard = DuplicateBookingGuard(self.bookings, rules.duplicate_window)
        self.publisher = publisher
        self.notifier = notifier
        self.payments = payments
        self.clock = clock

    # ── Search & quotes ───────────────────────────────────────────────

    async def search(self, query: TripQuery) -> SearchResult:
        """Price every vehicle class; may fall back to a default distance."""
        distance, source, defaulted = await self._distance_for(query, allow_default=True)
        options = self.calculator.vehicle_options(
            query.booking_type,
            distance_km=distance,
            start=query.start,
            extra_km=query.extra_km,
            extra_hours=query.extra_hours,
        )
        logger.info(
            "Search %s: %s km (%s), %d options",
            query.booking_type.value, distance,
            source.value if source else "default", len(options),
        )
        return SearchResult(distance, source, defaulted, options)

    async def estimate(self, query: TripQuery, vehicle_type: VehicleType) -> FareEstimate:
        distance, source, _ = await self._distance_for(query, allow_default=False)
        fare = self.calculator.quote(
            vehicle_type,
            query.booking_type,
            distance_km=distance,
            start=query.start,
            extra_km=query.extra_km,
            extra_hours=query.extra_hours,
        )
        return FareEstimate(distance, source, fare)

    async def _distance_for(
        self, query: TripQuery, allow_default: bool
    ) -> tuple[Optional[float], Optional[DistanceSource], bool]:
        if query.booking_type in LOCAL_TYPES:
            return None, None, False
        if query.drop is None:
            raise ValidationError("Drop location is required for this booking type")
        try:
            result = await self.pipeline.resolve(
                endpoint_for(query.pickup),
                endpoint_for(query.drop),
                query.distance_km,
            )
        except DistanceUnavailableError:
            fallback = self.rules.search_fallback_km
            if not allow_default or fallback is None:
                raise
            logger.warning("Distance unavailable; search uses default %.1f km", fallback)
            return fallback, None, True
        return result.kilometers, result.source, False

    # ── Creation ──────────────────────────────────────────────────────

    async def create(self, actor: Actor, request: NewBooking) -> Booking:
        if actor.role != Role.CUSTOMER:
            raise PermissionDeniedError("Only customers can create bookings")
        trip = request.trip
        if trip.start is None:
            raise ValidationError("Start date/time is required")

        now = self.clock()
        start = self.calculator.policy.localize(trip.start)
        earliest = now + timedelta(hours=self.rules.min_hours_ahead)
        if start < earliest:
            raise ValidationError(
                f"Bookings must be made at least {self.rules.min_hours_ahead:g} hours in advance"
            )
        end = self._end_for(trip.booking_type, start, request.end)

        await self.guard.check(actor.user_id, start)

        distance, _, _ = await self._distance_for(trip, allow_default=False)
        fare = self.calculator.quote(
            request.vehicle_type,
            trip.booking_type,
            distance_km=distance,
            start=start,
            extra_km=trip.extra_km,
            extra_hours=trip.extra_hours,
        )
        booking = Booking(
            booking_code=lifecycle.generate_booking_code(),
            user_id=actor.user_id,
            booking_type=trip.booking_type,
            status=BookingStatus.CONFIRMED,
            pickup_location=trip.pickup,
            drop_location=trip.drop,
            start_date_time=start,
            end_date_time=end,
            vehicle_type=request.vehicle_type,
            fare_details=fare,
            payment_method=request.payment_method,
        )
        await self.bookings.add(booking)
        logger.info(
            "Booking %s created for user %d: %s %s, final %d",
            booking.booking_code, actor.user_id, trip.booking_type.value,
            request.vehicle_type.value, fare.final_amount,
        )
        await self._announce(
            events.BOOKING_CREATED,
            booking,
            "Booking confirmed",
            f"Your booking {booking.booking_code} is confirmed.",
        )
        return booking

    def _end_for(
        self, booking_type: BookingType, start: datetime, end: Optional[datetime]
    ) -> Optional[datetime]:
        if end is not None:
            end = self.calculator.policy.localize(end)
            if end <= start:
                raise ValidationError("End date/time must be after the start")
            return end
        if booking_type in LOCAL_TYPES:
            package = package_for(booking_type, self.calculator.policy.packages)
            return start + timedelta(hours=package.hours)
        return None

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, actor: Actor, booking_id: int) -> Booking:
        booking = await self._load(booking_id)
        lifecycle.ensure_can_view(booking, actor)
        return booking

    async def get_by_code(self, actor: Actor, booking_code: str) -> Booking:
        code = (booking_code or "").strip().upper()
        if not code:
            raise ValidationError("Booking code is required")
        booking = await self.bookings.get_by_code(code)
        if booking is None:
            raise NotFoundError(f"Booking {code} not found")
        lifecycle.ensure_can_view(booking, actor)
        return booking

    async def list_for(
        self,
        actor: Actor,
        statuses: Optional[list[BookingStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100")
        if offset < 0:
            raise ValidationError("offset cannot be negative")
        filters: dict[str, Any] = {}
        if actor.role == Role.CUSTOMER:
            filters["user_id"] = actor.user_id
        elif actor.role == Role.DRIVER:
            if actor.driver_id is None:
                raise PermissionDeniedError("Driver identity is required")
            filters["driver_id"] = actor.driver_id
        return await self.bookings.list_bookings(
            statuses=statuses, limit=limit, offset=offset, **filters
        )

    async def _load(self, booking_id: int) -> Booking:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def _save(
        self, booking: Booking, expected: BookingStatus, conflict: Optional[str] = None
    ) -> None:
        if not await self.bookings.save_if_status(booking, expected):
            logger.warning(
                "Lost compare-and-set on booking %s (expected %s)",
                booking.booking_code, expected.value,
            )
            raise ConflictError(
                conflict or "Booking was changed by another request; reload and retry",
                {"booking_code": booking.booking_code},
            )

    async def assign_driver(self, actor: Actor, booking_id: int, driver_id: int) -> Booking:
        booking = await self._load(booking_id)
        driver = await self.drivers.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        expected = booking.status
        lifecycle.assign_driver(booking, driver, actor)
        if not await self.drivers.claim(driver.id):
            raise ConflictError(
                "Driver is no longer available", {"driver_id": driver.id}
            )
        await self._save(booking, expected, conflict="Booking already has a driver assigned")
        await self._announce(
            events.DRIVER_ASSIGNED,
            booking,
            "Driver assigned",
            f"{driver.name} is assigned to your booking {booking.booking_code}.",
            driver_message=f"You have been assigned booking {booking.booking_code}.",
        )
        return booking

    async def update_status(
        self,
        actor: Actor,
        booking_id: int,
        target: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        if target == BookingStatus.CANCELLED:
            return (await self.cancel(actor, booking_id, reason)).booking
        if target == BookingStatus.ASSIGNED:
            raise ValidationError("Assign a driver to move a booking to ASSIGNED")

        booking = await self._load(booking_id)
        expected = booking.status
        now = self.clock()
        if target == BookingStatus.CONFIRMED:
            lifecycle.confirm(booking, actor)
            event = events.BOOKING_CONFIRMED
        elif target == BookingStatus.REJECTED:
            lifecycle.reject(booking, actor)
            event = events.BOOKING_REJECTED
        elif target == BookingStatus.IN_PROGRESS:
            lifecycle.start_trip(booking, actor, now)
            event = events.TRIP_STARTED
        elif target == BookingStatus.COMPLETED:
            lifecycle.complete_trip(booking, actor, now)
            event = events.TRIP_COMPLETED
        else:
            # only PENDING is left, and nothing may move back to it
            booking.check_transition(target, actor.role)
            raise ValidationError(f"Unsupported target status {target.value}")

        await self._save(booking, expected)
        if target == BookingStatus.COMPLETED and booking.driver_id is not None:
            await self.drivers.increment_completed_rides(booking.driver_id)
            await self.drivers.set_availability(booking.driver_id, True)
        await self._announce(
            event,
            booking,
            f"Booking {target.value.replace('_', ' ').lower()}",
            f"Your booking {booking.booking_code} is now {target.value}.",
        )
        return booking

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancellation_preview(self, actor: Actor, booking_id: int) -> CancellationPreview:
        booking = await self.get(actor, booking_id)
        now = self.clock()
        final_amount = booking.fare_details.final_amount if booking.fare_details else 0
        allowed = BOOKING_TRANSITIONS.get((booking.status, BookingStatus.CANCELLED), frozenset())
        if actor.role == Role.CUSTOMER:
            quote = self.cancellation_policy.evaluate(
                final_amount, booking.start_date_time, now
            )
        else:
            quote = self.cancellation_policy.waived(
                final_amount, booking.start_date_time, now,
                f"Cancelled by {actor.role.value}, no charge",
            )
        return CancellationPreview(
            booking=booking,
            is_cancellable=booking.status in CANCELLABLE_STATUSES and actor.role in allowed,
            quote=quote,
        )

    async def cancel(
        self, actor: Actor, booking_id: int, reason: Optional[str] = None
    ) -> CancellationOutcome:
        booking = await self._load(booking_id)
        expected = booking.status
        quote = lifecycle.cancel(
            booking, actor, self.cancellation_policy, self.clock(), reason
        )
        await self._save(booking, expected, conflict="Booking is already cancelled")
        if expected == BookingStatus.ASSIGNED and booking.driver_id is not None:
            await self.drivers.set_availability(booking.driver_id, True)
        logger.info(
            "Booking %s cancelled by %s, charge %d",
            booking.booking_code, actor.role.value, quote.charge,
        )

        refund_note = await self._refund(booking, quote.refund_amount)
        await self._announce(
            events.BOOKING_CANCELLED,
            booking,
            "Booking cancelled",
            f"Your booking {booking.booking_code} has been cancelled.",
            driver_message=f"Booking {booking.booking_code} has been cancelled.",
            extra={"charge": quote.charge},
        )
        return CancellationOutcome(booking, quote, refund_note)

    async def _refund(self, booking: Booking, amount: int) -> Optional[str]:
        if (
            booking.payment_status not in REFUNDABLE_PAYMENT_STATUSES
            or booking.payment_method == PaymentMethod.CASH
            or amount <= 0
        ):
            return None
        if booking.payment_status == PaymentStatus.PROCESSING and not booking.payment_id:
            # refunded from verify_payment once the gateway confirms the capture
            return "Refund will be initiated once the pending payment is confirmed"
        if self.payments is None or not booking.payment_id:
            logger.error("Booking %s needs a manual refund", booking.booking_code)
            return "Refund will be processed manually"
        try:
            await self.payments.refund(
                booking.payment_id,
                amount,
                notes={"booking_code": booking.booking_code},
            )
        except CabCoreError as exc:
            logger.error(
                "Refund for booking %s failed: %s", booking.booking_code, exc.message
            )
            return "Refund could not be initiated automatically; it will be processed manually"
        booking.payment_status = PaymentStatus.REFUND_INITIATED
        await self._save(booking, booking.status)
        return f"Refund of ₹{amount} initiated"

    # ── Discounts & ratings ───────────────────────────────────────────

    async def apply_discount(self, actor: Actor, booking_id: int, code: str) -> Booking:
        booking = await self._load(booking_id)
        expected = booking.status
        history = UserHistory(
            completed_bookings=await self.bookings.count_completed_for_user(booking.user_id)
        )
        lifecycle.apply_discount(
            booking, actor, self.discounts, code, history, self.clock()
        )
        await self._save(booking, expected)
        return booking

    async def rate(
        self,
        actor: Actor,
        booking_id: int,
        value: float,
        comment: Optional[str] = None,
    ) -> tuple[Booking, Optional[float]]:
        booking = await self._load(booking_id)
        rating = lifecycle.rate(booking, actor, value, comment, self.clock())
        await self._save(booking, BookingStatus.COMPLETED)
        average = None
        if booking.driver_id is not None:
            average = await self.drivers.record_rating(booking.driver_id, rating.value)
        logger.info("Booking %s rated %d", booking.booking_code, rating.value)
        return booking, average

    # ── Payments ──────────────────────────────────────────────────────

    async def create_payment_order(self, actor: Actor, booking_id: int) -> dict[str, Any]:
        booking = await self._load(booking_id)
        if actor.role != Role.CUSTOMER or booking.user_id != actor.user_id:
            raise PermissionDeniedError("Only the booking owner can pay for it")
        if booking.is_terminal:
            raise ValidationError(
                f"Cannot pay for a booking in status {booking.status.value}"
            )
        if booking.payment_status == PaymentStatus.COMPLETED:
            raise ConflictError("Booking is already paid")
        if self.payments is None:
            raise ValidationError("Online payments are not enabled")

        order = await self.payments.create_order(
            booking.fare_details.final_amount,
            receipt=booking.booking_code,
            notes={"booking_code": booking.booking_code},
        )
        expected = booking.status
        booking.payment_order_id = order["id"]
        booking.payment_method = PaymentMethod.ONLINE
        booking.payment_status = PaymentStatus.PROCESSING
        await self._save(booking, expected)
        return order

    async def verify_payment(
        self, actor: Actor, order_id: str, payment_id: str, signature: str
    ) -> Booking:
        if self.payments is None:
            raise ValidationError("Online payments are not enabled")
        if not self.payments.verify_signature(order_id, payment_id, signature):
            raise ValidationError("Payment signature verification failed")
        booking = await self.bookings.get_by_order_id(order_id)
        if booking is None:
            raise NotFoundError(f"No booking for order {order_id}")
        if actor.role != Role.CUSTOMER or booking.user_id != actor.user_id:
            raise PermissionDeniedError("Only the booking owner can confirm its payment")
        if booking.payment_status != PaymentStatus.PROCESSING:
            raise ConflictError(
                f"Payment for this booking is already {booking.payment_status.value}"
            )

        expected = booking.status
        booking.payment_id = payment_id
        booking.payment_status = PaymentStatus.COMPLETED
        await self._save(booking, expected)
        logger.info("Booking %s paid with %s", booking.booking_code, payment_id)

        if booking.status in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            charge = booking.cancellation.charge if booking.cancellation else 0
            amount = max(booking.fare_details.final_amount - charge, 0)
            logger.warning(
                "Payment %s settled after booking %s was %s; refunding %d",
                payment_id, booking.booking_code, booking.status.value, amount,
            )
            await self._refund(booking, amount)
        return booking

    # ── Side channels ─────────────────────────────────────────────────

    async def _announce(
        self,
        event: str,
        booking: Booking,
        title: str,
        message: str,
        driver_message: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.publisher is not None:
            await self.publisher.publish(event, booking, extra)
        if self.notifier is None:
            return
        data = {"booking_code": booking.booking_code, "event": event}
        user_token = await self.users.device_token_for(booking.user_id)
        await self.notifier.send(user_token, title, message, data)
        if driver_message and booking.driver_id is not None:
            driver = await self.drivers.get_by_id(booking.driver_id)
            if driver is not None:
                await self.notifier.send(driver.device_token, title, driver_message, data)
