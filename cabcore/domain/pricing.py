"""
Fare Computation Engine  (Strategy Pattern)
===========================================

Formulae
--------
* **Outstation**: ``base = max(km x per_km_rate, min_fare x (1.5 if round trip else 1))``
  where a round trip doubles ``km``.
* **Local package**: ``base = package price``; extra km and extra hours are
  billed at the vehicle's overage rates.  No night surcharge.
* **Airport transfer**: ``base = base_price + max(0, km - free_km) x per_km_rate``.

Night surcharge (outstation and airport) is ``base x (night_multiplier - 1)``
when the trip starts inside the night window of the service timezone.

Currency is rounded half-up to whole rupees only at output.  Tax is charged on
the whole-rupee subtotal, so ``final_amount == subtotal + tax`` holds exactly.

Complexity: O(1) per quote, O(V) for the vehicle options of a booking type.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Mapping, Optional
from zoneinfo import ZoneInfo

from .entities import FareBreakdown, one_decimal
from .enums import (
    AIRPORT_TYPES,
    LOCAL_TYPES,
    OUTSTATION_TYPES,
    BookingType,
    VehicleType,
)
from .errors import ValidationError
from .tariffs import (
    LOCAL_PACKAGES,
    RECOMMENDED_VEHICLE,
    TARIFFS,
    VEHICLE_PROFILES,
    LocalPackage,
    VehicleTariff,
    package_for,
    tariff_for,
)
from .timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

ROUND_TRIP_MIN_FARE_FACTOR = Decimal("1.5")
_WHOLE = Decimal("1")


# ── Money helpers ─────────────────────────────────────────────────────


def whole(amount: Decimal) -> int:
    """Round half-up to a whole currency unit."""
    return int(amount.quantize(_WHOLE, rounding=ROUND_HALF_UP))


def tax_on(subtotal: int, rate: Decimal) -> int:
    return whole(Decimal(subtotal) * rate)


def _percent(rate: Decimal) -> str:
    return f"{float(rate * 100):g}%"


# ── Policy ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.05")
    night_start_hour: int = 22
    night_end_hour: int = 6
    timezone: str = "Asia/Kolkata"
    outstation_min_km: float = 10.0
    outstation_max_km: float = 2000.0
    airport_max_km: float = 200.0
    airport_free_km: float = 30.0
    highway_speed_kmph: float = 60.0
    city_speed_kmph: float = 30.0
    quote_validity: timedelta = timedelta(hours=1)
    advance_booking: timedelta = timedelta(days=30)
    local_max_extra_km: float = 500.0
    local_max_extra_hours: float = 12.0
    tariffs: Mapping[VehicleType, VehicleTariff] = field(
        default_factory=lambda: TARIFFS, compare=False, hash=False
    )
    packages: Mapping[BookingType, LocalPackage] = field(
        default_factory=lambda: LOCAL_PACKAGES, compare=False, hash=False
    )

    @classmethod
    def from_settings(cls, config) -> PricingPolicy:
        return cls(
            tax_rate=Decimal(str(config.tax_rate)),
            night_start_hour=config.night_start_hour,
            night_end_hour=config.night_end_hour,
            timezone=config.service_timezone,
            outstation_min_km=config.outstation_min_km,
            outstation_max_km=config.outstation_max_km,
            airport_max_km=config.airport_max_km,
            airport_free_km=config.airport_free_km,
            highway_speed_kmph=config.highway_speed_kmph,
            city_speed_kmph=config.city_speed_kmph,
            quote_validity=timedelta(minutes=config.quote_validity_minutes),
            advance_booking=timedelta(days=config.advance_booking_days),
            local_max_extra_km=config.local_max_extra_km,
            local_max_extra_hours=config.local_max_extra_hours,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def localize(self, moment: datetime) -> datetime:
        """Naive datetimes are read as service-local wall-clock time."""
        return ensure_aware(moment, self.tz).astimezone(self.tz)

    def is_night(self, moment: datetime) -> bool:
        hour = self.localize(moment).hour
        if self.night_start_hour > self.night_end_hour:
            return hour >= self.night_start_hour or hour < self.night_end_hour
        return self.night_start_hour <= hour < self.night_end_hour


@dataclass(frozen=True)
class FareRequest:
    vehicle_type: VehicleType
    booking_type: BookingType
    start: datetime
    distance_km: Optional[float] = None
    extra_km: float = 0.0
    extra_hours: float = 0.0


@dataclass(frozen=True)
class VehicleOption:
    vehicle_type: VehicleType
    display_name: str
    passengers: int
    luggage: int
    features: tuple[str, ...]
    description: str
    fare: FareBreakdown
    recommended: bool = False
    savings: Optional[str] = None


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    booking_types: frozenset[BookingType] = frozenset()

    def __init__(self, policy: PricingPolicy):
        self.policy = policy

    @abstractmethod
    def price(self, request: FareRequest, now: datetime) -> FareBreakdown: ...

    def _night_surcharge(
        self, base: Decimal, tariff: VehicleTariff, start: datetime
    ) -> tuple[bool, Decimal]:
        if not self.policy.is_night(start):
            return False, Decimal(0)
        return True, base * (tariff.night_multiplier - 1)

    def _close(
        self, subtotal_raw: Decimal, lines: list[str]
    ) -> tuple[int, int, list[str]]:
        subtotal = whole(subtotal_raw)
        tax = tax_on(subtotal, self.policy.tax_rate)
        lines = lines + [
            f"GST ({_percent(self.policy.tax_rate)}) = ₹{tax}",
            f"Total Amount = ₹{subtotal + tax}",
        ]
        return subtotal, tax, lines


def _require_distance(distance_km: Optional[float]) -> float:
    if distance_km is None:
        raise ValidationError("Distance is required")
    if (
        isinstance(distance_km, bool)
        or not isinstance(distance_km, (int, float))
        or not math.isfinite(distance_km)
        or distance_km <= 0
    ):
        raise ValidationError("Distance must be a valid positive number")
    return float(distance_km)


def _night_line(tariff: VehicleTariff, amount: int) -> str:
    pct = (tariff.night_multiplier - 1) * 100
    return f"Night charges ({float(pct):g}%) = ₹{amount}"


class OutstationFare(FareStrategy):
    booking_types = OUTSTATION_TYPES

    def price(self, request: FareRequest, now: datetime) -> FareBreakdown:
        p = self.policy
        tariff = tariff_for(request.vehicle_type, p.tariffs)
        distance = _require_distance(request.distance_km)
        if distance < p.outstation_min_km:
            raise ValidationError(
                f"Minimum distance for outstation booking is {p.outstation_min_km:g} km"
            )
        if distance > p.outstation_max_km:
            raise ValidationError(
                f"Maximum distance per booking is {p.outstation_max_km:g} km"
            )

        round_trip = request.booking_type == BookingType.ROUND_TRIP
        total_km = one_decimal(distance * (2 if round_trip else 1))
        km_fare = Decimal(str(total_km)) * tariff.per_km_rate
        floor = Decimal(tariff.min_fare) * (
            ROUND_TRIP_MIN_FARE_FACTOR if round_trip else 1
        )
        min_fare_applied = km_fare < floor
        base = floor if min_fare_applied else km_fare
        is_night, night = self._night_surcharge(base, tariff, request.start)

        lines = [f"{total_km:g} km × ₹{tariff.per_km_rate}/km = ₹{whole(km_fare)}"]
        if min_fare_applied:
            lines.append(f"Minimum fare applied = ₹{whole(floor)}")
        if is_night:
            lines.append(_night_line(tariff, whole(night)))
        subtotal, tax, lines = self._close(base + night, lines)

        inclusions = ["Driver allowance", "Fuel charges included", "Base fare", "GST included"]
        if round_trip:
            inclusions.append("Return journey included")
        return FareBreakdown(
            vehicle_type=request.vehicle_type,
            booking_type=request.booking_type,
            base_fare=whole(base),
            distance=total_km,
            night_charges=whole(night),
            is_night_time=is_night,
            subtotal=subtotal,
            tax=tax,
            tax_rate_percent=float(p.tax_rate * 100),
            total_fare=subtotal,
            final_amount=subtotal + tax,
            valid_until=now + p.quote_validity,
            per_km_rate=tariff.per_km_rate,
            min_fare_applied=min_fare_applied,
            estimated_travel_time=f"{total_km / p.highway_speed_kmph:.1f} hours",
            breakdown=tuple(lines),
            inclusions=tuple(inclusions),
            exclusions=(
                "Toll charges (paid separately)",
                "Parking charges (if any)",
                "State permit charges (if applicable)",
            ),
        )


class LocalPackageFare(FareStrategy):
    booking_types = LOCAL_TYPES

    def price(self, request: FareRequest, now: datetime) -> FareBreakdown:
        p = self.policy
        package = package_for(request.booking_type, p.packages)
        vehicle = request.vehicle_type
        package_price = package.prices.get(vehicle)
        if package_price is None:
            raise ValidationError(
                f"Vehicle type {vehicle.value} not available for package {package.code}",
                {"vehicle_type": vehicle.value, "package": package.code},
            )
        km_rate = package.extra_km_rates.get(vehicle)
        hour_rate = package.extra_hour_rates.get(vehicle)
        if km_rate is None or hour_rate is None:
            raise ValidationError(
                f"No overage rates configured for vehicle type: {vehicle.value}",
                {"vehicle_type": vehicle.value, "package": package.code},
            )
        extra_km = _check_extra(request.extra_km, p.local_max_extra_km, "Extra km", "km")
        extra_hours = _check_extra(
            request.extra_hours, p.local_max_extra_hours, "Extra hours", "hours"
        )

        km_charge = Decimal(str(extra_km)) * km_rate
        hour_charge = Decimal(str(extra_hours)) * hour_rate
        lines = [f"{package.label} Package = ₹{package_price}"]
        if extra_km:
            lines.append(f"Extra {extra_km:g} km × ₹{km_rate} = ₹{whole(km_charge)}")
        if extra_hours:
            lines.append(f"Extra {extra_hours:g} hrs × ₹{hour_rate} = ₹{whole(hour_charge)}")
        subtotal, tax, lines = self._close(
            Decimal(package_price) + km_charge + hour_charge, lines
        )

        return FareBreakdown(
            vehicle_type=vehicle,
            booking_type=request.booking_type,
            base_fare=package_price,
            distance=one_decimal(package.km + extra_km),
            night_charges=0,
            is_night_time=False,
            subtotal=subtotal,
            tax=tax,
            tax_rate_percent=float(p.tax_rate * 100),
            total_fare=subtotal,
            final_amount=subtotal + tax,
            valid_until=now + p.quote_validity,
            package_type=package.code,
            included_km=float(package.km),
            included_hours=float(package.hours),
            extra_km=extra_km,
            extra_hours=extra_hours,
            extra_km_charge=whole(km_charge),
            extra_hour_charge=whole(hour_charge),
            extra_km_rate=km_rate,
            extra_hour_rate=hour_rate,
            estimated_travel_time=f"{package.hours} hours",
            breakdown=tuple(lines),
            inclusions=(
                f"{package.hours} hours included",
                f"{package.km} kilometers included",
                "Fuel charges included",
                "Driver allowance included",
                "GST included",
            ),
            exclusions=(
                "Toll charges",
                "Parking charges",
                f"Extra km: ₹{km_rate}/km after {package.km} km",
                f"Extra hour: ₹{hour_rate}/hr after {package.hours} hours",
            ),
        )


def _check_extra(value: float, limit: float, label: str, unit: str) -> float:
    if value is None:
        return 0.0
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value < 0
    ):
        raise ValidationError(f"{label} must be a positive number")
    if value > limit:
        raise ValidationError(f"{label} cannot exceed {limit:g} {unit}")
    return one_decimal(value)


class AirportTransferFare(FareStrategy):
    booking_types = AIRPORT_TYPES

    def price(self, request: FareRequest, now: datetime) -> FareBreakdown:
        p = self.policy
        tariff = tariff_for(request.vehicle_type, p.tariffs)
        distance = _require_distance(request.distance_km)
        if distance > p.airport_max_km:
            raise ValidationError(
                f"Airport transfers are only for distances up to {p.airport_max_km:g} km"
            )
        distance = one_decimal(distance)
        extra_km = one_decimal(max(0.0, distance - p.airport_free_km))
        extra_charge = Decimal(str(extra_km)) * tariff.per_km_rate
        base = Decimal(tariff.airport_base_price) + extra_charge
        is_night, night = self._night_surcharge(base, tariff, request.start)

        lines = [
            f"Base charge = ₹{tariff.airport_base_price}",
            f"First {p.airport_free_km:g} km included",
            (
                f"Extra {extra_km:g} km × ₹{tariff.per_km_rate} = ₹{whole(extra_charge)}"
                if extra_km
                else "No extra km"
            ),
        ]
        if is_night:
            lines.append(_night_line(tariff, whole(night)))
        subtotal, tax, lines = self._close(base + night, lines)
        minutes = round(distance / p.city_speed_kmph * 60)

        return FareBreakdown(
            vehicle_type=request.vehicle_type,
            booking_type=request.booking_type,
            base_fare=whole(base),
            distance=distance,
            night_charges=whole(night),
            is_night_time=is_night,
            subtotal=subtotal,
            tax=tax,
            tax_rate_percent=float(p.tax_rate * 100),
            total_fare=subtotal,
            final_amount=subtotal + tax,
            valid_until=now + p.quote_validity,
            per_km_rate=tariff.per_km_rate,
            free_km=p.airport_free_km,
            extra_km=extra_km,
            extra_km_charge=whole(extra_charge),
            extra_km_rate=tariff.per_km_rate,
            estimated_travel_time=f"{minutes} minutes",
            breakdown=tuple(lines),
            inclusions=(
                "Airport pickup/drop",
                f"First {p.airport_free_km:g} km included",
                "Driver allowance",
                "Fuel charges",
                "GST included",
            ),
            exclusions=(
                "Toll charges (paid separately)",
                "Parking charges at airport",
                f"Extra km beyond {p.airport_free_km:g} km: ₹{tariff.per_km_rate}/km",
                "Waiting charges after 30 minutes",
            ),
        )


# ── Calculator facade ─────────────────────────────────────────────────


class FareCalculator:
    """High-level API used by the booking service and the API layer."""

    def __init__(
        self,
        policy: Optional[PricingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy or PricingPolicy()
        self.clock = clock
        self._strategies: dict[BookingType, FareStrategy] = {}
        for strategy_cls in (OutstationFare, LocalPackageFare, AirportTransferFare):
            strategy = strategy_cls(self.policy)
            for booking_type in strategy.booking_types:
                self._strategies[booking_type] = strategy

    def strategy_for(self, booking_type: BookingType) -> FareStrategy:
        try:
            return self._strategies[booking_type]
        except KeyError:
            raise ValidationError(
                f"Invalid booking type: {getattr(booking_type, 'value', booking_type)}"
            ) from None

    def check_start(self, start: Optional[datetime], now: datetime) -> datetime:
        """Validate that *start* lies in ``[now, now + advance_booking]``."""
        if start is None:
            return now
        start = self.policy.localize(start)
        if start < now:
            raise ValidationError("Start time cannot be in the past")
        if start > now + self.policy.advance_booking:
            raise ValidationError(
                f"Cannot book more than {self.policy.advance_booking.days} days in advance"
            )
        return start

    def quote(
        self,
        vehicle_type: VehicleType,
        booking_type: BookingType,
        distance_km: Optional[float] = None,
        start: Optional[datetime] = None,
        extra_km: float = 0.0,
        extra_hours: float = 0.0,
    ) -> FareBreakdown:
        now = self.clock()
        strategy = self.strategy_for(booking_type)
        request = FareRequest(
            vehicle_type=vehicle_type,
            booking_type=booking_type,
            start=self.check_start(start, now),
            distance_km=distance_km,
            extra_km=extra_km,
            extra_hours=extra_hours,
        )
        fare = strategy.price(request, now)
        logger.info(
            "Fare computed: %s %s %.1f km night=%s final=%d",
            booking_type.value, vehicle_type.value, fare.distance,
            fare.is_night_time, fare.final_amount,
        )
        return fare

    def vehicle_options(
        self,
        booking_type: BookingType,
        distance_km: Optional[float] = None,
        start: Optional[datetime] = None,
        extra_km: float = 0.0,
        extra_hours: float = 0.0,
    ) -> list[VehicleOption]:
        """Price every vehicle class for *booking_type*, cheapest first.

        Classes the tariff tables do not offer for this booking type are
        skipped; if nothing can be priced the call fails.
        """
        self.strategy_for(booking_type)
        if booking_type not in LOCAL_TYPES:
            _require_distance(distance_km)
        self.check_start(start, self.clock())

        options: list[VehicleOption] = []
        skipped: dict[str, str] = {}
        for vehicle_type in VehicleType:
            try:
                fare = self.quote(
                    vehicle_type, booking_type, distance_km, start, extra_km, extra_hours
                )
            except ValidationError as exc:
                logger.debug(
                    "Skipping %s for %s: %s", vehicle_type.value, booking_type.value, exc.message
                )
                skipped[vehicle_type.value] = exc.message
                continue
            profile = VEHICLE_PROFILES.get(vehicle_type)
            options.append(
                VehicleOption(
                    vehicle_type=vehicle_type,
                    display_name=profile.display_name if profile else vehicle_type.value,
                    passengers=profile.passengers if profile else 4,
                    luggage=profile.luggage if profile else 2,
                    features=profile.features if profile else (),
                    description=profile.description if profile else "",
                    fare=fare,
                    recommended=vehicle_type == RECOMMENDED_VEHICLE,
                    savings="Most Economical" if vehicle_type == VehicleType.HATCHBACK else None,
                )
            )

        if not options:
            raise ValidationError(
                "No vehicles available for the selected booking type and parameters",
                {"reasons": skipped},
            )
        options.sort(key=lambda option: option.fare.final_amount)
        return options
