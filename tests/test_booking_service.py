"""
Booking service against an in-memory database.

Covers creation rules, the duplicate guard, driver assignment under
concurrent attempts, the trip lifecycle, cancellation with refunds,
discounts, ratings and payments.
"""

import hashlib
import hmac
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import respx
from httpx import Response

from cabcore.domain.entities import Actor
from cabcore.domain.enums import (
    BookingStatus,
    BookingType,
    DistanceSource,
    PaymentMethod,
    PaymentStatus,
    Role,
    VehicleType,
)
from cabcore.domain.errors import (
    ConflictError,
    DistanceUnavailableError,
    InvalidStateTransition,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    ValidationError,
)
from cabcore.infrastructure import events
from cabcore.infrastructure.payments import PaymentGatewayClient
from cabcore.infrastructure.repositories import BookingRepository, DriverRepository
from cabcore.services.bookings import NewBooking, TripQuery
from tests.conftest import MUMBAI, NOW, PUNE, at_ist


def trip(start=None, booking_type=BookingType.ONE_WAY, distance_km=150.0) -> TripQuery:
    local = booking_type in (BookingType.LOCAL_8_80, BookingType.LOCAL_12_120)
    return TripQuery(
        booking_type=booking_type,
        pickup=MUMBAI,
        drop=None if local else PUNE,
        start=start or at_ist(1, 14),
        distance_km=None if local else distance_km,
    )


async def book(service, actor, start=None, **kwargs):
    return await service.create(
        actor, NewBooking(trip(start, **kwargs), VehicleType.SEDAN)
    )


def driver_actor(driver) -> Actor:
    return Actor(user_id=100 + driver.id, role=Role.DRIVER, driver_id=driver.id)


@pytest.fixture
def service(db_session, seeded, make_service):
    return make_service(db_session)


# ── Creation ──────────────────────────────────────────────────────────


class TestCreate:
    async def test_creates_confirmed_booking_with_server_quote(
        self, service, customer, publisher, notifier
    ):
        booking = await book(service, customer)

        assert booking.id is not None
        assert booking.booking_code.startswith("CB")
        assert len(booking.booking_code) == 10
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.fare_details.final_amount == 2205
        assert booking.payment_method == PaymentMethod.CASH
        assert booking.end_date_time is None

        publisher.publish.assert_awaited_once()
        assert publisher.publish.await_args.args[0] == events.BOOKING_CREATED
        assert notifier.send.await_args.args[0] == "tok-asha"

    async def test_stored_booking_reads_back(self, service, customer):
        created = await book(service, customer)
        loaded = await service.get(customer, created.id)
        assert loaded.booking_code == created.booking_code
        assert loaded.start_date_time == at_ist(1, 14)
        assert loaded.drop_location == PUNE
        assert loaded.fare_details == created.fare_details

    async def test_must_be_two_hours_ahead(self, service, customer):
        with pytest.raises(ValidationError, match="at least 2 hours in advance"):
            await book(service, customer, start=at_ist(0, 11, 59))

    async def test_exactly_two_hours_ahead_is_allowed(self, service, customer):
        booking = await book(service, customer, start=at_ist(0, 12))
        assert booking.status == BookingStatus.CONFIRMED

    async def test_too_far_ahead_rejected(self, service, customer):
        with pytest.raises(ValidationError, match="30 days in advance"):
            await book(service, customer, start=NOW + timedelta(days=31))

    async def test_naive_start_is_service_local(self, service, customer):
        booking = await book(service, customer, start=at_ist(1, 14).replace(tzinfo=None))
        assert booking.start_date_time == at_ist(1, 14)

    async def test_only_customers_create(self, service, admin):
        with pytest.raises(PermissionDeniedError):
            await book(service, admin)

    async def test_start_required(self, service, customer):
        query = TripQuery(BookingType.ONE_WAY, MUMBAI, PUNE, start=None, distance_km=150)
        with pytest.raises(ValidationError, match="Start"):
            await service.create(customer, NewBooking(query, VehicleType.SEDAN))

    async def test_end_must_follow_start(self, service, customer):
        request = NewBooking(trip(), VehicleType.SEDAN, end=at_ist(1, 13))
        with pytest.raises(ValidationError, match="after the start"):
            await service.create(customer, request)

    async def test_local_package_end_defaults_to_package_hours(self, service, customer):
        booking = await book(service, customer, booking_type=BookingType.LOCAL_8_80)
        assert booking.drop_location is None
        assert booking.end_date_time == at_ist(1, 14) + timedelta(hours=8)
        assert booking.fare_details.package_type == "8_80"

    async def test_outstation_needs_drop(self, service, customer):
        query = TripQuery(BookingType.ONE_WAY, MUMBAI, None, start=at_ist(1, 14))
        with pytest.raises(ValidationError, match="Drop location"):
            await service.create(customer, NewBooking(query, VehicleType.SEDAN))


class TestDuplicateGuard:
    async def test_overlapping_booking_rejected(self, service, customer):
        first = await book(service, customer, start=at_ist(1, 14))
        with pytest.raises(ConflictError) as excinfo:
            await book(service, customer, start=at_ist(1, 14, 20))
        assert excinfo.value.details["booking_code"] == first.booking_code

    async def test_outside_window_allowed(self, service, customer):
        await book(service, customer, start=at_ist(1, 14))
        later = await book(service, customer, start=at_ist(1, 14, 31))
        assert later.id is not None

    async def test_other_user_unaffected(self, service, customer, other_customer):
        await book(service, customer, start=at_ist(1, 14))
        theirs = await book(service, other_customer, start=at_ist(1, 14))
        assert theirs.user_id == 2

    async def test_cancelled_booking_does_not_block(self, service, customer):
        first = await book(service, customer, start=at_ist(1, 14))
        await service.cancel(customer, first.id)
        again = await book(service, customer, start=at_ist(1, 14))
        assert again.id != first.id


# ── Search & estimates ────────────────────────────────────────────────


class TestSearch:
    async def test_user_distance_prices_all_classes(self, service):
        result = await service.search(trip())
        assert result.distance_km == 150.0
        assert result.distance_source == DistanceSource.USER_PROVIDED
        assert result.distance_is_default is False
        assert {o.vehicle_type for o in result.options} == set(VehicleType)

    async def test_local_search_needs_no_distance(self, service):
        result = await service.search(trip(booking_type=BookingType.LOCAL_12_120))
        assert result.distance_km is None
        assert result.distance_source is None

    async def test_search_falls_back_to_default_distance(self, service):
        service.pipeline.resolve = AsyncMock(
            side_effect=DistanceUnavailableError("Could not determine the trip distance")
        )
        result = await service.search(trip(distance_km=None))
        assert result.distance_km == 100.0
        assert result.distance_source is None
        assert result.distance_is_default is True
        assert result.options

    async def test_estimate_never_defaults(self, service):
        service.pipeline.resolve = AsyncMock(
            side_effect=DistanceUnavailableError("Could not determine the trip distance")
        )
        with pytest.raises(DistanceUnavailableError):
            await service.estimate(trip(distance_km=None), VehicleType.SEDAN)

    async def test_estimate_single_class(self, service):
        estimate = await service.estimate(trip(), VehicleType.SEDAN)
        assert estimate.distance_km == 150.0
        assert estimate.fare.final_amount == 2205


# ── Reads ─────────────────────────────────────────────────────────────


class TestReads:
    async def test_other_customer_cannot_view(self, service, customer, other_customer):
        booking = await book(service, customer)
        with pytest.raises(PermissionDeniedError):
            await service.get(other_customer, booking.id)

    async def test_admin_can_view(self, service, customer, admin):
        booking = await book(service, customer)
        assert (await service.get(admin, booking.id)).id == booking.id

    async def test_missing_booking(self, service, admin):
        with pytest.raises(NotFoundError, match="999"):
            await service.get(admin, 999)

    async def test_lookup_by_code_is_case_insensitive(self, service, customer):
        booking = await book(service, customer)
        found = await service.get_by_code(customer, f"  {booking.booking_code.lower()} ")
        assert found.id == booking.id

    async def test_lookup_by_code_scoped_to_owner(self, service, customer, other_customer):
        booking = await book(service, customer)
        with pytest.raises(PermissionDeniedError):
            await service.get_by_code(other_customer, booking.booking_code)

    async def test_lookup_by_unknown_code(self, service, admin):
        with pytest.raises(NotFoundError, match="CBNOPE0000"):
            await service.get_by_code(admin, "cbnope0000")
        with pytest.raises(ValidationError):
            await service.get_by_code(admin, "   ")

    async def test_list_scoped_by_role(
        self, service, seeded, customer, other_customer, admin
    ):
        mine = await book(service, customer)
        await book(service, other_customer)
        await service.assign_driver(admin, mine.id, seeded["sedan_a"].id)

        assert [b.id for b in await service.list_for(customer)] == [mine.id]
        assert len(await service.list_for(admin)) == 2
        driven = await service.list_for(driver_actor(seeded["sedan_a"]))
        assert [b.id for b in driven] == [mine.id]
        assigned = await service.list_for(admin, statuses=[BookingStatus.ASSIGNED])
        assert [b.id for b in assigned] == [mine.id]

    async def test_list_paging_bounds(self, service, customer):
        with pytest.raises(ValidationError):
            await service.list_for(customer, limit=0)
        with pytest.raises(ValidationError):
            await service.list_for(customer, limit=101)
        with pytest.raises(ValidationError):
            await service.list_for(customer, offset=-1)


# ── Assignment ────────────────────────────────────────────────────────


class TestAssignment:
    async def test_assign_marks_driver_busy(self, service, seeded, customer, admin, notifier):
        booking = await book(service, customer)
        driver = seeded["sedan_a"]

        assigned = await service.assign_driver(admin, booking.id, driver.id)

        assert assigned.status == BookingStatus.ASSIGNED
        assert assigned.driver_id == driver.id
        assert (await service.drivers.get_by_id(driver.id)).is_available is False
        tokens = [call.args[0] for call in notifier.send.await_args_list]
        assert "tok-kiran" in tokens

    async def test_only_admin_assigns(self, service, seeded, customer):
        booking = await book(service, customer)
        with pytest.raises(PermissionDeniedError):
            await service.assign_driver(customer, booking.id, seeded["sedan_a"].id)

    async def test_unverified_driver_rejected(self, service, seeded, customer, admin):
        booking = await book(service, customer)
        with pytest.raises(ValidationError, match="not verified"):
            await service.assign_driver(admin, booking.id, seeded["unverified"].id)

    async def test_missing_driver(self, service, customer, admin):
        booking = await book(service, customer)
        with pytest.raises(NotFoundError):
            await service.assign_driver(admin, booking.id, 404)

    async def test_busy_driver_rejected(self, service, seeded, customer, other_customer, admin):
        first = await book(service, customer)
        second = await book(service, other_customer)
        await service.assign_driver(admin, first.id, seeded["sedan_a"].id)
        with pytest.raises(ValidationError, match="not available"):
            await service.assign_driver(admin, second.id, seeded["sedan_a"].id)

    async def test_reassigning_is_conflict(self, service, seeded, customer, admin):
        booking = await book(service, customer)
        await service.assign_driver(admin, booking.id, seeded["sedan_a"].id)
        with pytest.raises(ConflictError, match="already has a driver"):
            await service.assign_driver(admin, booking.id, seeded["sedan_b"].id)

    async def test_concurrent_assignment_loser_rolls_back(
        self, db_session, service, seeded, customer, admin, monkeypatch
    ):
        booking = await book(service, customer)
        await db_session.commit()
        # snapshot taken before the winning request writes
        stale = await service.bookings.get_by_id(booking.id)

        await service.assign_driver(admin, booking.id, seeded["sedan_a"].id)
        await db_session.commit()

        monkeypatch.setattr(service.bookings, "get_by_id", AsyncMock(return_value=stale))
        with pytest.raises(ConflictError, match="already has a driver"):
            await service.assign_driver(admin, booking.id, seeded["sedan_b"].id)
        await db_session.rollback()

        stored = await BookingRepository(db_session).get_by_id(booking.id)
        assert stored.driver_id == seeded["sedan_a"].id
        assert stored.status == BookingStatus.ASSIGNED
        drivers = DriverRepository(db_session)
        assert (await drivers.get_by_id(seeded["sedan_b"].id)).is_available is True
        assert (await drivers.get_by_id(seeded["sedan_a"].id)).is_available is False

    async def test_driver_claimed_elsewhere_is_conflict(
        self, service, seeded, customer, other_customer, admin, monkeypatch
    ):
        first = await book(service, customer)
        second = await book(service, other_customer)
        driver = seeded["sedan_a"]
        stale_driver = await service.drivers.get_by_id(driver.id)
        await service.assign_driver(admin, first.id, driver.id)

        monkeypatch.setattr(
            service.drivers, "get_by_id", AsyncMock(return_value=stale_driver)
        )
        with pytest.raises(ConflictError, match="no longer available"):
            await service.assign_driver(admin, second.id, driver.id)


# ── Trip lifecycle ────────────────────────────────────────────────────


class TestTrip:
    async def _assigned(self, service, seeded, customer, admin):
        booking = await book(service, customer)
        await service.assign_driver(admin, booking.id, seeded["sedan_a"].id)
        return booking

    async def test_start_and_complete(self, service, seeded, customer, admin):
        booking = await self._assigned(service, seeded, customer, admin)
        driver = driver_actor(seeded["sedan_a"])

        started = await service.update_status(driver, booking.id, BookingStatus.IN_PROGRESS)
        assert started.status == BookingStatus.IN_PROGRESS
        assert started.trip.actual_start_time == NOW

        done = await service.update_status(driver, booking.id, BookingStatus.COMPLETED)
        assert done.status == BookingStatus.COMPLETED
        assert done.trip.actual_end_time == NOW

        stored = await service.drivers.get_by_id(seeded["sedan_a"].id)
        assert stored.completed_rides == 1
        assert stored.is_available is True

    async def test_other_driver_cannot_start(self, service, seeded, customer, admin):
        booking = await self._assigned(service, seeded, customer, admin)
        with pytest.raises(PermissionDeniedError):
            await service.update_status(
                driver_actor(seeded["sedan_b"]), booking.id, BookingStatus.IN_PROGRESS
            )

    async def test_customer_cannot_start(self, service, seeded, customer, admin):
        booking = await self._assigned(service, seeded, customer, admin)
        with pytest.raises(PermissionDeniedError):
            await service.update_status(customer, booking.id, BookingStatus.IN_PROGRESS)

    async def test_skipping_a_state_is_illegal(self, service, seeded, customer):
        booking = await book(service, customer)
        with pytest.raises(InvalidStateTransition):
            await service.update_status(
                driver_actor(seeded["sedan_a"]), booking.id, BookingStatus.COMPLETED
            )

    async def test_assigned_only_via_assignment(self, service, customer, admin):
        booking = await book(service, customer)
        with pytest.raises(ValidationError, match="Assign a driver"):
            await service.update_status(admin, booking.id, BookingStatus.ASSIGNED)

    async def test_nothing_returns_to_pending(self, service, customer, admin):
        booking = await book(service, customer)
        with pytest.raises(InvalidStateTransition):
            await service.update_status(admin, booking.id, BookingStatus.PENDING)

    async def test_status_cancel_delegates(self, service, customer):
        booking = await book(service, customer)
        cancelled = await service.update_status(
            customer, booking.id, BookingStatus.CANCELLED, reason="Plans changed"
        )
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation.reason == "Plans changed"


# ── Cancellation ──────────────────────────────────────────────────────


class TestCancellation:
    async def test_free_cancellation_outside_window(self, service, customer):
        booking = await book(service, customer, start=at_ist(1, 14))
        outcome = await service.cancel(customer, booking.id)
        assert outcome.quote.charge == 0
        assert outcome.booking.status == BookingStatus.CANCELLED
        assert outcome.booking.cancellation.cancelled_by == Role.CUSTOMER
        assert outcome.refund_note is None

    async def test_charge_inside_window(self, service, customer):
        booking = await book(service, customer, start=at_ist(0, 18))
        preview = await service.cancellation_preview(customer, booking.id)
        assert preview.is_cancellable is True
        assert preview.quote.charge == 221

        outcome = await service.cancel(customer, booking.id)
        assert outcome.quote.charge == 221
        assert outcome.quote.refund_amount == 1984
        stored = await service.get(customer, booking.id)
        assert stored.cancellation.charge == 221

    async def test_admin_cancels_free_and_frees_driver(self, service, seeded, customer, admin):
        booking = await book(service, customer, start=at_ist(0, 18))
        await service.assign_driver(admin, booking.id, seeded["sedan_a"].id)

        outcome = await service.cancel(admin, booking.id, "Vehicle breakdown")

        assert outcome.quote.charge == 0
        assert outcome.booking.cancellation.reason == "Vehicle breakdown"
        driver = await service.drivers.get_by_id(seeded["sedan_a"].id)
        assert driver.is_available is True

    async def test_second_cancel_is_conflict(self, service, customer):
        booking = await book(service, customer)
        await service.cancel(customer, booking.id)
        with pytest.raises(ConflictError, match="already cancelled"):
            await service.cancel(customer, booking.id)

    async def test_concurrent_cancel_loses_compare_and_set(
        self, service, customer, monkeypatch
    ):
        booking = await book(service, customer)
        stale = await service.bookings.get_by_id(booking.id)
        await service.cancel(customer, booking.id)

        monkeypatch.setattr(service.bookings, "get_by_id", AsyncMock(return_value=stale))
        with pytest.raises(ConflictError, match="already cancelled"):
            await service.cancel(customer, booking.id)

    async def test_preview_for_completed_booking(self, service, seeded, customer, admin):
        booking = await book(service, customer)
        await service.assign_driver(admin, booking.id, seeded["sedan_a"].id)
        driver = driver_actor(seeded["sedan_a"])
        await service.update_status(driver, booking.id, BookingStatus.IN_PROGRESS)
        await service.update_status(driver, booking.id, BookingStatus.COMPLETED)

        preview = await service.cancellation_preview(customer, booking.id)
        assert preview.is_cancellable is False

    async def _paid(self, service, customer):
        booking = await book(service, customer)
        booking.payment_method = PaymentMethod.ONLINE
        booking.payment_status = PaymentStatus.COMPLETED
        booking.payment_id = "pay_TEST123"
        assert await service.bookings.save_if_status(booking, BookingStatus.CONFIRMED)
        return booking

    async def test_refund_initiated_for_paid_booking(
        self, db_session, seeded, make_service, customer
    ):
        payments = AsyncMock()
        payments.refund = AsyncMock(return_value={"id": "rfnd_1"})
        service = make_service(db_session, payments=payments)
        booking = await self._paid(service, customer)

        outcome = await service.cancel(customer, booking.id)

        assert outcome.refund_note == "Refund of ₹2205 initiated"
        payments.refund.assert_awaited_once()
        assert payments.refund.await_args.args[:2] == ("pay_TEST123", 2205)
        stored = await service.get(customer, booking.id)
        assert stored.payment_status == PaymentStatus.REFUND_INITIATED
        assert stored.status == BookingStatus.CANCELLED

    async def test_refund_failure_keeps_cancellation(
        self, db_session, seeded, make_service, customer
    ):
        payments = AsyncMock()
        payments.refund = AsyncMock(side_effect=PaymentGatewayError("Gateway down"))
        service = make_service(db_session, payments=payments)
        booking = await self._paid(service, customer)

        outcome = await service.cancel(customer, booking.id)

        assert "manually" in outcome.refund_note
        stored = await service.get(customer, booking.id)
        assert stored.status == BookingStatus.CANCELLED
        assert stored.payment_status == PaymentStatus.COMPLETED

    async def test_cash_booking_needs_no_refund(self, db_session, seeded, make_service, customer):
        payments = AsyncMock()
        service = make_service(db_session, payments=payments)
        booking = await book(service, customer)
        outcome = await service.cancel(customer, booking.id)
        assert outcome.refund_note is None
        payments.refund.assert_not_awaited()


# ── Discounts & ratings ───────────────────────────────────────────────


class TestDiscountsAndRatings:
    async def test_discount_is_persisted(self, service, customer):
        booking = await book(service, customer)
        await service.apply_discount(customer, booking.id, "save10")

        stored = await service.get(customer, booking.id)
        assert stored.fare_details.discount_code == "SAVE10"
        assert stored.fare_details.discount_amount == 150
        assert stored.fare_details.subtotal == 1950
        assert stored.fare_details.final_amount == 2048

    async def test_only_owner_applies_discount(self, service, customer, other_customer):
        booking = await book(service, customer)
        with pytest.raises(PermissionDeniedError):
            await service.apply_discount(other_customer, booking.id, "SAVE10")

    async def test_first_ride_code_for_new_customer(self, service, customer):
        booking = await book(service, customer)
        updated = await service.apply_discount(customer, booking.id, "FIRST100")
        assert updated.fare_details.discount_amount == 100

    async def test_rating_updates_driver_average(self, service, seeded, customer, admin):
        booking = await book(service, customer)
        driver = seeded["sedan_a"]
        await service.assign_driver(admin, booking.id, driver.id)
        await service.update_status(driver_actor(driver), booking.id, BookingStatus.IN_PROGRESS)
        await service.update_status(driver_actor(driver), booking.id, BookingStatus.COMPLETED)

        rated, average = await service.rate(customer, booking.id, 4, "Smooth ride")

        assert rated.rating.value == 4
        assert average == 4.0
        stored = await service.drivers.get_by_id(driver.id)
        assert stored.rating_sum == 4
        assert stored.rated_ride_count == 1
        assert stored.completed_rides == 1

        with pytest.raises(ConflictError, match="already been rated"):
            await service.rate(customer, booking.id, 5)

    async def test_cannot_rate_unfinished_trip(self, service, customer):
        booking = await book(service, customer)
        with pytest.raises(ValidationError, match="completed"):
            await service.rate(customer, booking.id, 5)


# ── Payments ──────────────────────────────────────────────────────────


@pytest.fixture
def gateway() -> PaymentGatewayClient:
    return PaymentGatewayClient("https://pay.test/v1", "rzp_test_key", "s3cret")


class TestPayments:
    async def test_order_then_verify(self, db_session, seeded, make_service, customer, gateway):
        service = make_service(db_session, payments=gateway)
        booking = await book(service, customer)

        async with respx.mock:
            route = respx.post("https://pay.test/v1/orders").mock(
                return_value=Response(
                    200, json={"id": "order_ABC123", "amount": 220500, "currency": "INR"}
                )
            )
            order = await service.create_payment_order(customer, booking.id)

        assert order["id"] == "order_ABC123"
        assert route.called
        stored = await service.get(customer, booking.id)
        assert stored.payment_order_id == "order_ABC123"
        assert stored.payment_method == PaymentMethod.ONLINE
        assert stored.payment_status == PaymentStatus.PROCESSING

        signature = hmac.new(
            b"s3cret", b"order_ABC123|pay_XYZ789", hashlib.sha256
        ).hexdigest()
        paid = await service.verify_payment(customer, "order_ABC123", "pay_XYZ789", signature)
        assert paid.payment_status == PaymentStatus.COMPLETED
        assert paid.payment_id == "pay_XYZ789"

        with pytest.raises(ConflictError, match="already paid"):
            await service.create_payment_order(customer, booking.id)

    async def test_bad_signature(self, db_session, seeded, make_service, customer, gateway):
        service = make_service(db_session, payments=gateway)
        with pytest.raises(ValidationError, match="signature"):
            await service.verify_payment(customer, "order_ABC123", "pay_XYZ789", "deadbeef")

    async def test_unknown_order(self, db_session, seeded, make_service, customer):
        payments = MagicMock()
        payments.verify_signature = MagicMock(return_value=True)
        service = make_service(db_session, payments=payments)
        with pytest.raises(NotFoundError):
            await service.verify_payment(customer, "order_NOPE", "pay_XYZ789", "sig")

    async def test_only_owner_pays(self, db_session, seeded, make_service, customer,
                                   other_customer, gateway):
        service = make_service(db_session, payments=gateway)
        booking = await book(service, customer)
        with pytest.raises(PermissionDeniedError):
            await service.create_payment_order(other_customer, booking.id)

    async def test_payments_disabled(self, service, customer):
        booking = await book(service, customer)
        with pytest.raises(ValidationError, match="not enabled"):
            await service.create_payment_order(customer, booking.id)

    async def test_cannot_pay_cancelled_booking(self, db_session, seeded, make_service,
                                                customer, gateway):
        service = make_service(db_session, payments=gateway)
        booking = await book(service, customer)
        await service.cancel(customer, booking.id)
        with pytest.raises(ValidationError, match="CANCELLED"):
            await service.create_payment_order(customer, booking.id)

    async def _order(self, service, customer, booking):
        async with respx.mock:
            respx.post("https://pay.test/v1/orders").mock(
                return_value=Response(
                    200, json={"id": "order_ABC123", "amount": 220500, "currency": "INR"}
                )
            )
            await service.create_payment_order(customer, booking.id)

    async def test_payment_settling_after_cancel_is_refunded(
        self, db_session, seeded, make_service, customer, gateway
    ):
        service = make_service(db_session, payments=gateway)
        booking = await book(service, customer)
        await self._order(service, customer, booking)

        outcome = await service.cancel(customer, booking.id)
        assert "pending payment" in outcome.refund_note

        signature = hmac.new(
            b"s3cret", b"order_ABC123|pay_XYZ789", hashlib.sha256
        ).hexdigest()
        async with respx.mock:
            route = respx.post("https://pay.test/v1/payments/pay_XYZ789/refund").mock(
                return_value=Response(200, json={"id": "rfnd_C3", "amount": 220500})
            )
            settled = await service.verify_payment(
                customer, "order_ABC123", "pay_XYZ789", signature
            )

        assert route.called
        assert json.loads(route.calls.last.request.content)["amount"] == 220500
        assert settled.status == BookingStatus.CANCELLED
        assert settled.payment_status == PaymentStatus.REFUND_INITIATED
        stored = await service.get(customer, booking.id)
        assert stored.payment_id == "pay_XYZ789"
        assert stored.payment_status == PaymentStatus.REFUND_INITIATED

        with pytest.raises(ConflictError, match="REFUND_INITIATED"):
            await service.verify_payment(customer, "order_ABC123", "pay_XYZ789", signature)

    async def test_late_payment_refund_keeps_cancellation_charge(
        self, db_session, seeded, make_service, customer
    ):
        payments = MagicMock()
        payments.create_order = AsyncMock(return_value={"id": "order_ABC123"})
        payments.verify_signature = MagicMock(return_value=True)
        payments.refund = AsyncMock(return_value={"id": "rfnd_C3"})
        service = make_service(db_session, payments=payments)
        booking = await book(service, customer, start=at_ist(0, 18))
        await service.create_payment_order(customer, booking.id)
        await service.cancel(customer, booking.id)
        payments.refund.assert_not_awaited()

        await service.verify_payment(customer, "order_ABC123", "pay_XYZ789", "sig")

        payments.refund.assert_awaited_once()
        assert payments.refund.await_args.args[:2] == ("pay_XYZ789", 1984)
