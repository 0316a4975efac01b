"""
SQLAlchemy ORM models.

Tables
------
* ``users``     -- customers, drivers' logins and admins
* ``drivers``   -- driver profiles with availability and rating totals
* ``bookings``  -- one row per booking; locations, fare, cancellation,
  rating and trip timestamps are JSON documents

Indexes
-------
* ``(user_id, start_date_time)`` for the duplicate-booking window query.
* ``status`` and ``driver_id`` for listings and the compare-and-set update.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from .database import Base
from cabcore.domain.enums import (
    BookingStatus,
    BookingType,
    PaymentMethod,
    PaymentStatus,
    Role,
    VehicleType,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    role = Column(Enum(Role), default=Role.CUSTOMER, nullable=False)
    device_token = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)
    name = Column(String(120), nullable=False)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.SEDAN, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    completed_rides = Column(Integer, default=0, nullable=False)
    rating = Column(Float, nullable=True)
    rating_sum = Column(Integer, default=0, nullable=False)
    rated_ride_count = Column(Integer, default=0, nullable=False)
    device_token = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_drivers_available", "is_available"),)


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_code = Column(String(16), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    booking_type = Column(Enum(BookingType), nullable=False)
    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False)

    pickup_location = Column(JSON, nullable=False)
    drop_location = Column(JSON, nullable=True)
    start_date_time = Column(DateTime(timezone=True), nullable=False)
    end_date_time = Column(DateTime(timezone=True), nullable=True)

    vehicle_type = Column(Enum(VehicleType), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    fare_details = Column(JSON, nullable=False)
    cancellation = Column(JSON, nullable=True)
    rating = Column(JSON, nullable=True)
    trip = Column(JSON, nullable=True)

    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)
    payment_order_id = Column(String(64), nullable=True)
    payment_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_user_start", "user_id", "start_date_time"),
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_driver", "driver_id"),
        Index("idx_bookings_order", "payment_order_id"),
    )
