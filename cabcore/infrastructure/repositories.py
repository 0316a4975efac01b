"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Rows are mapped to and from the domain
dataclasses here; nothing above this layer sees an ORM object.

Every lifecycle write goes through ``BookingRepository.save_if_status``,
an ``UPDATE ... WHERE id = :id AND status = :expected`` compare-and-set.
A concurrent writer that changed the status first makes it return False.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, DriverModel, UserModel
from cabcore.domain.entities import (
    Booking,
    CancellationRecord,
    Driver,
    FareBreakdown,
    Location,
    Rating,
    TripRecord,
)
from cabcore.domain.enums import TERMINAL_STATUSES, BookingStatus
from cabcore.domain.timeutils import ensure_aware


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_aware(value).astimezone(timezone.utc)


def _read_dt(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were written as UTC
    return ensure_aware(value) if value is not None else None


# ── Mapping ───────────────────────────────────────────────────────────


def booking_to_entity(row: BookingModel) -> Booking:
    return Booking(
        id=row.id,
        booking_code=row.booking_code,
        user_id=row.user_id,
        booking_type=row.booking_type,
        status=row.status,
        pickup_location=Location.from_dict(row.pickup_location),
        drop_location=Location.from_dict(row.drop_location) if row.drop_location else None,
        start_date_time=_read_dt(row.start_date_time),
        end_date_time=_read_dt(row.end_date_time),
        vehicle_type=row.vehicle_type,
        driver_id=row.driver_id,
        fare_details=FareBreakdown.from_dict(row.fare_details) if row.fare_details else None,
        cancellation=(
            CancellationRecord.from_dict(row.cancellation) if row.cancellation else None
        ),
        rating=Rating.from_dict(row.rating) if row.rating else None,
        trip=TripRecord.from_dict(row.trip),
        payment_status=row.payment_status,
        payment_method=row.payment_method,
        payment_order_id=row.payment_order_id,
        payment_id=row.payment_id,
        created_at=_read_dt(row.created_at),
    )


def _mutable_columns(booking: Booking) -> dict[str, Any]:
    return {
        "status": booking.status,
        "end_date_time": _utc(booking.end_date_time),
        "driver_id": booking.driver_id,
        "fare_details": booking.fare_details.to_dict() if booking.fare_details else None,
        "cancellation": booking.cancellation.to_dict() if booking.cancellation else None,
        "rating": booking.rating.to_dict() if booking.rating else None,
        "trip": booking.trip.to_dict(),
        "payment_status": booking.payment_status,
        "payment_method": booking.payment_method,
        "payment_order_id": booking.payment_order_id,
        "payment_id": booking.payment_id,
    }


def driver_to_entity(row: DriverModel) -> Driver:
    return Driver(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        vehicle_type=row.vehicle_type,
        is_available=row.is_available,
        is_verified=row.is_verified,
        completed_rides=row.completed_rides,
        rating_sum=row.rating_sum,
        rated_ride_count=row.rated_ride_count,
        device_token=row.device_token,
    )


# ── Repositories ──────────────────────────────────────────────────────


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, booking: Booking) -> Booking:
        created_at = _utc(booking.created_at) or datetime.now(timezone.utc)
        row = BookingModel(
            booking_code=booking.booking_code,
            user_id=booking.user_id,
            booking_type=booking.booking_type,
            pickup_location=booking.pickup_location.to_dict(),
            drop_location=booking.drop_location.to_dict() if booking.drop_location else None,
            start_date_time=_utc(booking.start_date_time),
            vehicle_type=booking.vehicle_type,
            created_at=created_at,
            **_mutable_columns(booking),
        )
        self.session.add(row)
        await self.session.flush()
        booking.id = row.id
        booking.created_at = created_at
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return booking_to_entity(row) if row else None

    async def get_by_code(self, booking_code: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.booking_code == booking_code)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return booking_to_entity(row) if row else None

    async def get_by_order_id(self, order_id: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.payment_order_id == order_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return booking_to_entity(row) if row else None

    async def list_bookings(
        self,
        *,
        user_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        statuses: Optional[Iterable[BookingStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        """Newest first."""
        query = select(BookingModel)
        if user_id is not None:
            query = query.where(BookingModel.user_id == user_id)
        if driver_id is not None:
            query = query.where(BookingModel.driver_id == driver_id)
        if statuses:
            query = query.where(BookingModel.status.in_(list(statuses)))
        query = (
            query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [booking_to_entity(row) for row in result.scalars().all()]

    async def find_active_in_window(
        self, user_id: int, start: datetime, window: timedelta
    ) -> list[Booking]:
        """Active bookings of *user_id* starting within ``start ± window``."""
        start = _utc(start)
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.user_id == user_id,
                BookingModel.status.not_in(list(TERMINAL_STATUSES)),
                BookingModel.start_date_time >= start - window,
                BookingModel.start_date_time <= start + window,
            )
            .order_by(BookingModel.start_date_time)
        )
        return [booking_to_entity(row) for row in result.scalars().all()]

    async def count_completed_for_user(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.user_id == user_id,
                BookingModel.status == BookingStatus.COMPLETED,
            )
        )
        return result.scalar() or 0

    async def save_if_status(self, booking: Booking, expected: BookingStatus) -> bool:
        """Write *booking* only if its stored status is still *expected*."""
        result = await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking.id, BookingModel.status == expected)
            .values(**_mutable_columns(booking))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, driver: Driver) -> Driver:
        row = DriverModel(
            user_id=driver.user_id,
            name=driver.name,
            vehicle_type=driver.vehicle_type,
            is_available=driver.is_available,
            is_verified=driver.is_verified,
            completed_rides=driver.completed_rides,
            rating_sum=driver.rating_sum,
            rated_ride_count=driver.rated_ride_count,
            device_token=driver.device_token,
        )
        self.session.add(row)
        await self.session.flush()
        driver.id = row.id
        return driver

    async def get_by_id(self, driver_id: int) -> Optional[Driver]:
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.id == driver_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return driver_to_entity(row) if row else None

    async def set_availability(self, driver_id: int, available: bool) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_available=available)
            .execution_options(synchronize_session=False)
        )

    async def claim(self, driver_id: int) -> bool:
        """Mark an available driver busy; False if someone else got there first."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.is_available.is_(True))
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_completed_rides(self, driver_id: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(completed_rides=DriverModel.completed_rides + 1)
            .execution_options(synchronize_session=False)
        )

    async def record_rating(self, driver_id: int, value: int) -> Optional[float]:
        """Add one rating to the driver's totals; returns the new average."""
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                rating_sum=DriverModel.rating_sum + value,
                rated_ride_count=DriverModel.rated_ride_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        driver = await self.get_by_id(driver_id)
        if driver is None:
            return None
        average = driver.average_rating
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(rating=average)
            .execution_options(synchronize_session=False)
        )
        return average


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def add(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def device_token_for(self, user_id: int) -> Optional[str]:
        result = await self.session.execute(
            select(UserModel.device_token).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none()
