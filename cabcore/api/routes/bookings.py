"""
Booking endpoints
=================

POST  /api/v1/bookings/search                      -- vehicle options for a trip
POST  /api/v1/bookings/estimate-fare               -- fare for one vehicle class
POST  /api/v1/bookings                             -- create a booking (201)
GET   /api/v1/bookings                             -- caller's bookings, newest first
GET   /api/v1/bookings/code/{code}                 -- one booking by its code
GET   /api/v1/bookings/{id}                        -- one booking
GET   /api/v1/bookings/{id}/cancellation-charges   -- cancellation preview
PATCH /api/v1/bookings/{id}/cancel                 -- cancel
PATCH /api/v1/bookings/{id}/status                 -- lifecycle transition
POST  /api/v1/bookings/{id}/assign                 -- assign a driver (admin)
POST  /api/v1/bookings/{id}/apply-discount         -- apply a discount code
POST  /api/v1/bookings/{id}/rating                 -- rate a completed trip

Routes only translate HTTP to service calls; every rule lives in
``BookingService`` and the domain layer.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from cabcore.api.dependencies import get_actor, get_booking_service, require_admin
from cabcore.api.middleware import limiter
from cabcore.api.schemas import (
    ApplyDiscountRequest,
    AssignDriverRequest,
    BookingCreateRequest,
    BookingResponse,
    CancelRequest,
    CancelResponse,
    CancellationChargesResponse,
    EstimateFareRequest,
    EstimateFareResponse,
    FareBreakdownResponse,
    RatingRequest,
    RatingResponse,
    SearchResponse,
    StatusUpdateRequest,
    TripRequest,
    VehicleOptionResponse,
)
from cabcore.domain.entities import Actor
from cabcore.domain.enums import BookingStatus
from cabcore.domain.errors import ValidationError
from cabcore.services.bookings import BookingService, NewBooking, TripQuery

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _trip(body: TripRequest) -> TripQuery:
    return TripQuery(
        booking_type=body.booking_type,
        pickup=body.pickup_location.to_domain(),
        drop=body.drop_location.to_domain() if body.drop_location else None,
        start=body.start_date_time,
        distance_km=body.distance_km,
        extra_km=body.extra_km,
        extra_hours=body.extra_hours,
    )


def _parse_statuses(raw: Optional[str]) -> Optional[list[BookingStatus]]:
    if not raw:
        return None
    statuses = []
    for part in raw.split(","):
        part = part.strip().upper()
        if not part:
            continue
        try:
            statuses.append(BookingStatus(part))
        except ValueError:
            raise ValidationError(f"Unknown booking status: {part}") from None
    return statuses or None


# ── Search & quotes ───────────────────────────────────────────────────


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Price every vehicle class for a trip",
)
@limiter.limit("60/minute")
async def search(
    request: Request,
    body: TripRequest,
    service: BookingService = Depends(get_booking_service),
):
    result = await service.search(_trip(body))
    return SearchResponse(
        booking_type=body.booking_type,
        distance_km=result.distance_km,
        distance_source=result.distance_source,
        distance_is_default=result.distance_is_default,
        options=[
            VehicleOptionResponse(
                vehicle_type=option.vehicle_type,
                display_name=option.display_name,
                passengers=option.passengers,
                luggage=option.luggage,
                features=list(option.features),
                description=option.description,
                recommended=option.recommended,
                savings=option.savings,
                fare=FareBreakdownResponse.from_fare(option.fare),
            )
            for option in result.options
        ],
    )


@router.post(
    "/estimate-fare",
    response_model=EstimateFareResponse,
    summary="Fare for a single vehicle class",
)
@limiter.limit("60/minute")
async def estimate_fare(
    request: Request,
    body: EstimateFareRequest,
    service: BookingService = Depends(get_booking_service),
):
    estimate = await service.estimate(_trip(body), body.vehicle_type)
    return EstimateFareResponse(
        distance_km=estimate.distance_km,
        distance_source=estimate.distance_source,
        fare=FareBreakdownResponse.from_fare(estimate.fare),
    )


# ── Bookings ──────────────────────────────────────────────────────────


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Create a booking",
    description="The fare is recomputed server-side; bookings start CONFIRMED.",
)
@limiter.limit("30/minute")
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.create(
        actor,
        NewBooking(
            trip=_trip(body),
            vehicle_type=body.vehicle_type,
            end=body.end_date_time,
            payment_method=body.payment_method,
        ),
    )
    return BookingResponse.from_booking(booking)


@router.get("", response_model=list[BookingResponse], summary="List bookings")
@limiter.limit("100/minute")
async def list_bookings(
    request: Request,
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    bookings = await service.list_for(
        actor, statuses=_parse_statuses(status), limit=limit, offset=offset
    )
    return [BookingResponse.from_booking(b) for b in bookings]


@router.get(
    "/code/{booking_code}",
    response_model=BookingResponse,
    summary="Get a booking by its booking code",
)
@limiter.limit("100/minute")
async def get_booking_by_code(
    request: Request,
    booking_code: str,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(await service.get_by_code(actor, booking_code))


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit("100/minute")
async def get_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(await service.get(actor, booking_id))


# ── Cancellation ──────────────────────────────────────────────────────


@router.get(
    "/{booking_id}/cancellation-charges",
    response_model=CancellationChargesResponse,
    summary="Preview the charge for cancelling now",
)
@limiter.limit("100/minute")
async def cancellation_charges(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    preview = await service.cancellation_preview(actor, booking_id)
    booking, quote = preview.booking, preview.quote
    return CancellationChargesResponse(
        booking_id=booking.id,
        booking_code=booking.booking_code,
        status=booking.status,
        is_cancellable=preview.is_cancellable,
        final_amount=booking.fare_details.final_amount if booking.fare_details else 0,
        hours_until_start=quote.hours_until_start,
        window_hours=quote.window_hours,
        charge_percent=quote.charge_percent,
        charge_applies=quote.charge_applies,
        cancellation_charge=quote.charge,
        refund_amount=quote.refund_amount,
        note=quote.note,
    )


@router.patch(
    "/{booking_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel a booking",
    description=(
        "Customers pay the windowed cancellation charge; staff cancel free. "
        "An assigned driver is released and online payments are refunded."
    ),
)
@limiter.limit("30/minute")
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    outcome = await service.cancel(actor, booking_id, body.reason if body else None)
    return CancelResponse(
        booking=BookingResponse.from_booking(outcome.booking),
        cancellation_charge=outcome.quote.charge,
        refund_amount=outcome.quote.refund_amount,
        note=outcome.quote.note,
        refund_note=outcome.refund_note,
    )


# ── Lifecycle ─────────────────────────────────────────────────────────


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Move a booking through its lifecycle",
)
@limiter.limit("60/minute")
async def update_status(
    request: Request,
    booking_id: int,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.update_status(actor, booking_id, body.status, body.reason)
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/assign",
    response_model=BookingResponse,
    summary="Assign a driver (admin)",
    responses={409: {"description": "Booking or driver was taken concurrently."}},
)
@limiter.limit("60/minute")
async def assign_driver(
    request: Request,
    booking_id: int,
    body: AssignDriverRequest,
    actor: Actor = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.assign_driver(actor, booking_id, body.driver_id)
    return BookingResponse.from_booking(booking)


# ── Adjustments ───────────────────────────────────────────────────────


@router.post(
    "/{booking_id}/apply-discount",
    response_model=BookingResponse,
    summary="Apply a discount code",
)
@limiter.limit("30/minute")
async def apply_discount(
    request: Request,
    booking_id: int,
    body: ApplyDiscountRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.apply_discount(actor, booking_id, body.code)
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/rating",
    response_model=RatingResponse,
    summary="Rate a completed trip",
)
@limiter.limit("30/minute")
async def rate_booking(
    request: Request,
    booking_id: int,
    body: RatingRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking, average = await service.rate(actor, booking_id, body.rating, body.comment)
    return RatingResponse(
        booking=BookingResponse.from_booking(booking),
        driver_average_rating=average,
    )
