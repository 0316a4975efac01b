"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from cabcore.domain.entities import Booking, Coordinates, FareBreakdown, Location
from cabcore.domain.enums import (
    BookingStatus,
    BookingType,
    DistanceSource,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    city: str = Field(..., min_length=1, max_length=100)
    address: Optional[str] = Field(None, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    def to_domain(self) -> Location:
        coordinates = None
        if self.lat is not None and self.lng is not None:
            coordinates = Coordinates(self.lat, self.lng)
        return Location(
            city=self.city.strip(),
            address=self.address.strip() if self.address else None,
            coordinates=coordinates,
        )


class TripRequest(BaseModel):
    booking_type: BookingType
    pickup_location: LocationIn
    drop_location: Optional[LocationIn] = None
    start_date_time: Optional[datetime] = Field(
        None, description="Naive values are read as service-local time."
    )
    distance_km: Optional[float] = Field(
        None, gt=0, description="Known trip distance; skips address resolution."
    )
    extra_km: float = Field(0, ge=0)
    extra_hours: float = Field(0, ge=0)


class EstimateFareRequest(TripRequest):
    vehicle_type: VehicleType


class BookingCreateRequest(TripRequest):
    vehicle_type: VehicleType
    start_date_time: datetime
    end_date_time: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.CASH


class StatusUpdateRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignDriverRequest(BaseModel):
    driver_id: int


class ApplyDiscountRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)


class RatingRequest(BaseModel):
    rating: float
    comment: Optional[str] = None


class PaymentOrderRequest(BaseModel):
    booking_id: int


class PaymentVerifyRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


# ── Responses ─────────────────────────────────────────────────────────


class FareBreakdownResponse(BaseModel):
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
    discount_type: Optional[str] = None
    per_km_rate: Optional[int] = None
    min_fare_applied: bool = False
    package_type: Optional[str] = None
    included_km: Optional[float] = None
    included_hours: Optional[float] = None
    free_km: Optional[float] = None
    extra_km: float = 0
    extra_hours: float = 0
    extra_km_charge: int = 0
    extra_hour_charge: int = 0
    extra_km_rate: Optional[int] = None
    extra_hour_rate: Optional[int] = None
    estimated_travel_time: Optional[str] = None
    breakdown: list[str] = []
    inclusions: list[str] = []
    exclusions: list[str] = []

    @classmethod
    def from_fare(cls, fare: FareBreakdown) -> FareBreakdownResponse:
        return cls.model_validate(fare.to_dict())


class VehicleOptionResponse(BaseModel):
    vehicle_type: VehicleType
    display_name: str
    passengers: int
    luggage: int
    features: list[str]
    description: str
    recommended: bool
    savings: Optional[str] = None
    fare: FareBreakdownResponse


class SearchResponse(BaseModel):
    booking_type: BookingType
    distance_km: Optional[float] = None
    distance_source: Optional[DistanceSource] = None
    distance_is_default: bool = False
    options: list[VehicleOptionResponse]


class EstimateFareResponse(BaseModel):
    distance_km: Optional[float] = None
    distance_source: Optional[DistanceSource] = None
    fare: FareBreakdownResponse


class BookingResponse(BaseModel):
    id: int
    booking_code: str
    user_id: int
    booking_type: BookingType
    status: BookingStatus
    pickup_location: dict[str, Any]
    drop_location: Optional[dict[str, Any]] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None
    vehicle_type: VehicleType
    driver_id: Optional[int] = None
    fare_details: Optional[FareBreakdownResponse] = None
    cancellation: Optional[dict[str, Any]] = None
    rating: Optional[dict[str, Any]] = None
    trip: dict[str, Any] = {}
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_order_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> BookingResponse:
        return cls(
            id=booking.id,
            booking_code=booking.booking_code,
            user_id=booking.user_id,
            booking_type=booking.booking_type,
            status=booking.status,
            pickup_location=booking.pickup_location.to_dict(),
            drop_location=booking.drop_location.to_dict() if booking.drop_location else None,
            start_date_time=booking.start_date_time,
            end_date_time=booking.end_date_time,
            vehicle_type=booking.vehicle_type,
            driver_id=booking.driver_id,
            fare_details=(
                FareBreakdownResponse.from_fare(booking.fare_details)
                if booking.fare_details
                else None
            ),
            cancellation=booking.cancellation.to_dict() if booking.cancellation else None,
            rating=booking.rating.to_dict() if booking.rating else None,
            trip=booking.trip.to_dict(),
            payment_status=booking.payment_status,
            payment_method=booking.payment_method,
            payment_order_id=booking.payment_order_id,
            created_at=booking.created_at,
        )


class CancellationChargesResponse(BaseModel):
    booking_id: int
    booking_code: str
    status: BookingStatus
    is_cancellable: bool
    final_amount: int
    hours_until_start: float
    window_hours: float
    charge_percent: float
    charge_applies: bool
    cancellation_charge: int
    refund_amount: int
    note: str


class CancelResponse(BaseModel):
    booking: BookingResponse
    cancellation_charge: int
    refund_amount: int
    note: str
    refund_note: Optional[str] = None


class RatingResponse(BaseModel):
    booking: BookingResponse
    driver_average_rating: Optional[float] = None


class PaymentOrderResponse(BaseModel):
    booking_id: int
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None


class GeoCacheStatsResponse(BaseModel):
    size: int
    max_entries: int
    hits: int
    misses: int
    hit_rate: float


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    error: str
