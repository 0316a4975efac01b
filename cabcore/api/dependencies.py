"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from cabcore.domain.entities import Actor
from cabcore.domain.enums import Role
from cabcore.domain.errors import PermissionDeniedError
from cabcore.infrastructure.database import async_session_factory
from cabcore.services import shared
from cabcore.services.bookings import BookingService


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_user_id: int = Header(..., description="Authenticated user id, set by the gateway"),
    x_user_role: Role = Header(..., description="customer | driver | admin"),
    x_driver_id: Optional[int] = Header(None, description="Driver id for driver callers"),
) -> Actor:
    """Identity comes from trusted gateway headers; authentication happens upstream."""
    if x_user_role == Role.DRIVER and x_driver_id is None:
        raise PermissionDeniedError("X-Driver-Id header is required for drivers")
    return Actor(
        user_id=x_user_id,
        role=x_user_role,
        driver_id=x_driver_id if x_user_role == Role.DRIVER else None,
    )


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != Role.ADMIN:
        raise PermissionDeniedError("Admin access required")
    return actor


async def get_booking_service(db: AsyncSession = Depends(get_db)) -> BookingService:
    return BookingService(
        db,
        pipeline=shared.pipeline,
        calculator=shared.calculator,
        discounts=shared.discounts,
        cancellation_policy=shared.cancellation_policy,
        rules=shared.booking_rules,
        publisher=shared.publisher,
        notifier=shared.notifier,
        payments=shared.payments if shared.payments.configured else None,
    )
