"""
FastAPI application factory.

* Registers routes for bookings, payments and admin.
* Creates tables and starts / stops the geo cache sweeper via lifespan events.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from cabcore.api.errors import register_error_handlers
from cabcore.api.middleware import limiter
from cabcore.api.routes import admin, bookings, payments
from cabcore.config import settings
from cabcore.infrastructure.database import init_models
from cabcore.infrastructure.redis_client import close_redis
from cabcore.workers import cache_sweeper as _sweeper

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the sweeper on startup; stop on shutdown."""
    await init_models()
    await _sweeper.start_sweep_loop()
    yield
    await _sweeper.stop_sweep_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="CabCore Booking API",
        description=(
            "Prices outstation, local-package and airport trips, and runs "
            "each booking from creation through completion or cancellation "
            "with role-checked transitions and time-windowed cancellation "
            "charges."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_error_handlers(app)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
