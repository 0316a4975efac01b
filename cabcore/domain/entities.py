"""
Domain entities and value objects.

Patterns used
-------------
- **State Pattern** on ``Booking``: ``transition_to`` consults the
  role-gated transition table and refuses anything it does not list.
- ``FareBreakdown`` is immutable; the discount path builds a replacement
  with ``dataclasses.replace`` instead of mutating it.
- ``Driver`` keeps rating totals separate from its completed-ride counter.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .enums import (
    BOOKING_TRANSITIONS,
    TERMINAL_STATUSES,
    BookingStatus,
    BookingType,
    DiscountType,
    DistanceSource,
    PaymentMethod,
    PaymentStatus,
    Role,
    VehicleType,
)
from .errors import InvalidStateTransition, PermissionDeniedError, ValidationError

_TENTH = Decimal("0.1")


def one_decimal(value: float) -> float:
    """Round half-up to one decimal place (distances in km)."""
    return float(Decimal(str(value)).quantize(_TENTH, rounding=ROUND_HALF_UP))


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"Valid {name} required")
            if not math.isfinite(value):
                raise ValidationError(f"Valid {name} required")
        if not -90 <= self.latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180")

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass(frozen=True)
class DistanceResult:
    """A road distance plus a tag telling how it was obtained."""

    kilometers: float
    source: DistanceSource

    def __post_init__(self) -> None:
        if not math.isfinite(self.kilometers) or self.kilometers < 0:
            raise ValidationError("Distance must be a non-negative number")
        object.__setattr__(self, "kilometers", one_decimal(self.kilometers))


@dataclass(frozen=True)
class Location:
    city: str
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "city": self.city,
            "address": self.address,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Location:
        coords = data.get("coordinates")
        return cls(
            city=data["city"],
            address=data.get("address"),
            coordinates=Coordinates(coords["lat"], coords["lng"]) if coords else None,
        )


@dataclass(frozen=True)
class FareBreakdown:
    """Priced offer for one vehicle class.

    Invariant: ``final_amount == subtotal + tax`` where ``subtotal`` is the
    pre-tax amount after any discount; every monetary field is a
    non-negative whole number.
    """

    vehicle_type: VehicleType
    booking_type: BookingType
    base_fare: int
    distance: float
    night_charges: int
    is_night_time: bool
    subtotal: int
    tax: int
    tax_rate_percent: float
    total_fare: int
    final_amount: int
    valid_until: datetime
    discount_code: Optional[str] = None
    discount_amount: int = 0
    discount_type: Optional[DiscountType] = None
    per_km_rate: Optional[int] = None
    min_fare_applied: bool = False
    package_type: Optional[str] = None
    included_km: Optional[float] = None
    included_hours: Optional[float] = None
    free_km: Optional[float] = None
    extra_km: float = 0.0
    extra_hours: float = 0.0
    extra_km_charge: int = 0
    extra_hour_charge: int = 0
    extra_km_rate: Optional[int] = None
    extra_hour_rate: Optional[int] = None
    estimated_travel_time: Optional[str] = None
    breakdown: tuple[str, ...] = ()
    inclusions: tuple[str, ...] = ()
    exclusions: tuple[str, ...] = ()

    _MONEY_FIELDS = (
        "base_fare",
        "night_charges",
        "subtotal",
        "tax",
        "total_fare",
        "final_amount",
        "discount_amount",
        "extra_km_charge",
        "extra_hour_charge",
    )

    def __post_init__(self) -> None:
        for name in self._MONEY_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"Fare field {name} must be a non-negative whole amount",
                    {"field": name, "value": value},
                )
        if self.final_amount != self.subtotal + self.tax:
            raise ValidationError(
                "Fare final amount does not equal subtotal plus tax",
                {"subtotal": self.subtotal, "tax": self.tax, "final": self.final_amount},
            )

    @property
    def subtotal_before_discount(self) -> int:
        return self.subtotal + self.discount_amount

    def is_stale(self, now: datetime) -> bool:
        return now >= self.valid_until

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["vehicle_type"] = self.vehicle_type.value
        data["booking_type"] = self.booking_type.value
        data["discount_type"] = self.discount_type.value if self.discount_type else None
        data["valid_until"] = self.valid_until.isoformat()
        for name in ("breakdown", "inclusions", "exclusions"):
            data[name] = list(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FareBreakdown:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["vehicle_type"] = VehicleType(values["vehicle_type"])
        values["booking_type"] = BookingType(values["booking_type"])
        if values.get("discount_type"):
            values["discount_type"] = DiscountType(values["discount_type"])
        if isinstance(values["valid_until"], str):
            values["valid_until"] = datetime.fromisoformat(values["valid_until"])
        for name in ("breakdown", "inclusions", "exclusions"):
            values[name] = tuple(values.get(name) or ())
        return cls(**values)


@dataclass(frozen=True)
class CancellationRecord:
    cancelled_by: Role
    cancelled_at: datetime
    reason: str
    charge: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cancelled_by": self.cancelled_by.value,
            "cancelled_at": self.cancelled_at.isoformat(),
            "reason": self.reason,
            "charge": self.charge,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CancellationRecord:
        return cls(
            cancelled_by=Role(data["cancelled_by"]),
            cancelled_at=datetime.fromisoformat(data["cancelled_at"]),
            reason=data["reason"],
            charge=data.get("charge", 0),
        )


@dataclass(frozen=True)
class Rating:
    value: int
    comment: Optional[str]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "comment": self.comment,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rating:
        return cls(
            value=data["value"],
            comment=data.get("comment"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class Actor:
    """Whoever is driving a lifecycle operation."""

    user_id: int
    role: Role
    driver_id: Optional[int] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class TripRecord:
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "actual_start_time": _iso(self.actual_start_time),
            "actual_end_time": _iso(self.actual_end_time),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> TripRecord:
        data = data or {}
        return cls(
            actual_start_time=_parse(data.get("actual_start_time")),
            actual_end_time=_parse(data.get("actual_end_time")),
        )


@dataclass
class Booking:
    id: Optional[int] = None
    booking_code: str = ""
    user_id: int = 0
    booking_type: BookingType = BookingType.ONE_WAY
    status: BookingStatus = BookingStatus.CONFIRMED
    pickup_location: Location = field(default_factory=lambda: Location(city=""))
    drop_location: Optional[Location] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None
    vehicle_type: VehicleType = VehicleType.SEDAN
    driver_id: Optional[int] = None
    fare_details: Optional[FareBreakdown] = None
    cancellation: Optional[CancellationRecord] = None
    rating: Optional[Rating] = None
    trip: TripRecord = field(default_factory=TripRecord)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: BookingStatus, role: Role) -> None:
        """Move to *new_status* if the table allows it for *role*, else raise."""
        self.check_transition(new_status, role)
        self.status = new_status

    def check_transition(self, new_status: BookingStatus, role: Role) -> None:
        allowed_roles = BOOKING_TRANSITIONS.get((self.status, new_status))
        if allowed_roles is None:
            raise InvalidStateTransition(
                f"Cannot change booking status from {self.status.value} "
                f"to {new_status.value}",
                {"from": self.status.value, "to": new_status.value},
            )
        if role not in allowed_roles:
            raise PermissionDeniedError(
                f"Role {role.value} is not authorized to change status from "
                f"{self.status.value} to {new_status.value}",
                {"from": self.status.value, "to": new_status.value, "role": role.value},
            )


@dataclass
class Driver:
    id: Optional[int] = None
    user_id: Optional[int] = None
    name: str = ""
    vehicle_type: VehicleType = VehicleType.SEDAN
    is_available: bool = True
    is_verified: bool = False
    completed_rides: int = 0
    rating_sum: int = 0
    rated_ride_count: int = 0
    device_token: Optional[str] = None

    @property
    def average_rating(self) -> Optional[float]:
        if self.rated_ride_count == 0:
            return None
        return round(self.rating_sum / self.rated_ride_count, 1)

    def record_rating(self, value: int) -> None:
        self.rating_sum += value
        self.rated_ride_count += 1


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
