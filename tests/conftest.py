"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) with the production
models, so tests run without Docker / PostgreSQL / Redis.  All datetimes
are pinned to a fixed clock.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cabcore.domain.cancellation import CancellationPolicy
from cabcore.domain.discounts import DiscountEngine
from cabcore.domain.entities import Actor, Driver, Location
from cabcore.domain.enums import Role, VehicleType
from cabcore.domain.pricing import FareCalculator, PricingPolicy
from cabcore.infrastructure import models  # noqa: F401
from cabcore.infrastructure.database import Base
from cabcore.infrastructure.geocache import GeoCache
from cabcore.infrastructure.geocoding import GeocodingResolver
from cabcore.infrastructure.models import UserModel
from cabcore.infrastructure.repositories import DriverRepository
from cabcore.infrastructure.routing import RoutingResolver
from cabcore.services.bookings import BookingRules, BookingService
from cabcore.services.distance_pipeline import DistanceResolutionPipeline

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

IST = timezone(timedelta(hours=5, minutes=30))
# 10:00 in the service timezone
NOW = datetime(2026, 3, 10, 4, 30, tzinfo=timezone.utc)

MUMBAI = Location(city="Mumbai", address="Chhatrapati Shivaji Terminus, Mumbai")
PUNE = Location(city="Pune", address="Shivajinagar, Pune")


def fixed_clock() -> datetime:
    return NOW


def at_ist(days: int, hour: int, minute: int = 0) -> datetime:
    """A service-local wall-clock time *days* after the fixed clock's date."""
    return datetime(2026, 3, 10 + days, hour, minute, tzinfo=IST)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db_session):
    """Two customers, an admin, and three drivers (two verified sedans)."""
    db_session.add_all(
        [
            UserModel(id=1, name="Asha", email="asha@example.com", role=Role.CUSTOMER,
                      device_token="tok-asha"),
            UserModel(id=2, name="Ravi", email="ravi@example.com", role=Role.CUSTOMER),
            UserModel(id=3, name="Ops", email="ops@example.com", role=Role.ADMIN),
        ]
    )
    await db_session.flush()
    drivers = DriverRepository(db_session)
    sedan_a = await drivers.add(
        Driver(name="Kiran", vehicle_type=VehicleType.SEDAN, is_verified=True,
               device_token="tok-kiran")
    )
    sedan_b = await drivers.add(
        Driver(name="Manoj", vehicle_type=VehicleType.SEDAN, is_verified=True)
    )
    unverified = await drivers.add(
        Driver(name="Suresh", vehicle_type=VehicleType.SEDAN, is_verified=False)
    )
    await db_session.commit()
    return {"sedan_a": sedan_a, "sedan_b": sedan_b, "unverified": unverified}


# ── Actors ────────────────────────────────────────────────────────────


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id=1, role=Role.CUSTOMER)


@pytest.fixture
def other_customer() -> Actor:
    return Actor(user_id=2, role=Role.CUSTOMER)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=3, role=Role.ADMIN)


# ── Domain collaborators ──────────────────────────────────────────────


@pytest.fixture
def calculator() -> FareCalculator:
    return FareCalculator(PricingPolicy(), clock=fixed_clock)


@pytest.fixture
def geo_cache() -> GeoCache:
    return GeoCache(default_ttl=3600, max_entries=100)


@pytest.fixture
def pipeline(geo_cache) -> DistanceResolutionPipeline:
    geocoder = GeocodingResolver(
        "https://geo.test", user_agent="cabcore-tests", cache=geo_cache
    )
    router = RoutingResolver("https://route.test", cache=geo_cache)
    return DistanceResolutionPipeline(geocoder, router)


@pytest.fixture
def publisher():
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def make_service(calculator, pipeline, publisher, notifier):
    def _make(session: AsyncSession, payments=None, clock=fixed_clock) -> BookingService:
        return BookingService(
            session,
            pipeline=pipeline,
            calculator=calculator,
            discounts=DiscountEngine(clock=clock),
            cancellation_policy=CancellationPolicy(),
            rules=BookingRules(),
            publisher=publisher,
            notifier=notifier,
            payments=payments,
            clock=clock,
        )

    return _make
