"""
Payment endpoints
=================

POST /api/v1/payments/orders -- open a gateway order for a booking's final amount
POST /api/v1/payments/verify -- verify the gateway signature and mark the booking paid
"""

from fastapi import APIRouter, Depends, Request

from cabcore.api.dependencies import get_actor, get_booking_service
from cabcore.api.middleware import limiter
from cabcore.api.schemas import (
    BookingResponse,
    PaymentOrderRequest,
    PaymentOrderResponse,
    PaymentVerifyRequest,
)
from cabcore.domain.entities import Actor
from cabcore.services.bookings import BookingService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/orders",
    status_code=201,
    response_model=PaymentOrderResponse,
    summary="Create a payment order for a booking",
)
@limiter.limit("20/minute")
async def create_order(
    request: Request,
    body: PaymentOrderRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    order = await service.create_payment_order(actor, body.booking_id)
    return PaymentOrderResponse(
        booking_id=body.booking_id,
        order_id=order["id"],
        # gateway amounts are in paise
        amount=int(order.get("amount", 0)) // 100,
        currency=order.get("currency", ""),
        receipt=order.get("receipt"),
        status=order.get("status"),
    )


@router.post(
    "/verify",
    response_model=BookingResponse,
    summary="Verify a payment signature",
)
@limiter.limit("20/minute")
async def verify_payment(
    request: Request,
    body: PaymentVerifyRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.verify_payment(
        actor, body.order_id, body.payment_id, body.signature
    )
    return BookingResponse.from_booking(booking)
