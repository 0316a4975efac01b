"""
Tariff tables: per-vehicle rates, local rental packages and vehicle profiles.

All amounts are whole rupees.  A vehicle missing from a table is a
configuration defect and surfaces as a ``ValidationError`` naming the key.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from .enums import BookingType, VehicleType
from .errors import ValidationError


@dataclass(frozen=True)
class VehicleTariff:
    per_km_rate: int
    min_fare: int
    night_multiplier: Decimal
    airport_base_price: int


@dataclass(frozen=True)
class LocalPackage:
    code: str
    hours: int
    km: int
    prices: Mapping[VehicleType, int]
    extra_km_rates: Mapping[VehicleType, int]
    extra_hour_rates: Mapping[VehicleType, int]

    @property
    def label(self) -> str:
        return f"{self.hours}hrs/{self.km}km"


@dataclass(frozen=True)
class VehicleProfile:
    display_name: str
    passengers: int
    luggage: int
    features: tuple[str, ...]
    description: str


TARIFFS: Mapping[VehicleType, VehicleTariff] = MappingProxyType({
    VehicleType.HATCHBACK: VehicleTariff(12, 1200, Decimal("1.25"), 799),
    VehicleType.SEDAN: VehicleTariff(14, 1500, Decimal("1.25"), 999),
    VehicleType.SUV: VehicleTariff(18, 2000, Decimal("1.25"), 1399),
    VehicleType.PREMIUM_SEDAN: VehicleTariff(22, 2500, Decimal("1.25"), 1799),
})

_EXTRA_KM_RATES = MappingProxyType({
    VehicleType.HATCHBACK: 12,
    VehicleType.SEDAN: 14,
    VehicleType.SUV: 18,
    VehicleType.PREMIUM_SEDAN: 22,
})

_EXTRA_HOUR_RATES = MappingProxyType({
    VehicleType.HATCHBACK: 150,
    VehicleType.SEDAN: 180,
    VehicleType.SUV: 220,
    VehicleType.PREMIUM_SEDAN: 300,
})

LOCAL_PACKAGES: Mapping[BookingType, LocalPackage] = MappingProxyType({
    BookingType.LOCAL_8_80: LocalPackage(
        code="8_80",
        hours=8,
        km=80,
        # premium sedans are not rented on the short package
        prices=MappingProxyType({
            VehicleType.HATCHBACK: 1299,
            VehicleType.SEDAN: 1499,
            VehicleType.SUV: 1999,
        }),
        extra_km_rates=_EXTRA_KM_RATES,
        extra_hour_rates=_EXTRA_HOUR_RATES,
    ),
    BookingType.LOCAL_12_120: LocalPackage(
        code="12_120",
        hours=12,
        km=120,
        prices=MappingProxyType({
            VehicleType.HATCHBACK: 1899,
            VehicleType.SEDAN: 2199,
            VehicleType.SUV: 2899,
            VehicleType.PREMIUM_SEDAN: 3799,
        }),
        extra_km_rates=_EXTRA_KM_RATES,
        extra_hour_rates=_EXTRA_HOUR_RATES,
    ),
})

VEHICLE_PROFILES: Mapping[VehicleType, VehicleProfile] = MappingProxyType({
    VehicleType.HATCHBACK: VehicleProfile(
        "AC Hatchback", 4, 2, ("AC", "Music System"),
        "Economical for short trips",
    ),
    VehicleType.SEDAN: VehicleProfile(
        "AC Sedan", 4, 3, ("AC", "Music System", "Extra Legroom"),
        "Comfortable for city and outstation",
    ),
    VehicleType.SUV: VehicleProfile(
        "AC SUV / MUV", 6, 4, ("AC", "Music System", "Spacious", "Carrier"),
        "Spacious for families and groups",
    ),
    VehicleType.PREMIUM_SEDAN: VehicleProfile(
        "Premium Sedan", 4, 3, ("AC", "Leather Seats", "Premium Audio", "Water Bottles"),
        "Luxury travel experience",
    ),
})

RECOMMENDED_VEHICLE = VehicleType.SEDAN


def tariff_for(
    vehicle_type: VehicleType,
    tariffs: Mapping[VehicleType, VehicleTariff] = TARIFFS,
) -> VehicleTariff:
    try:
        return tariffs[vehicle_type]
    except KeyError:
        raise ValidationError(
            f"No tariff configured for vehicle type: {_key(vehicle_type)}",
            {"vehicle_type": _key(vehicle_type)},
        ) from None


def package_for(
    booking_type: BookingType,
    packages: Mapping[BookingType, LocalPackage] = LOCAL_PACKAGES,
) -> LocalPackage:
    try:
        return packages[booking_type]
    except KeyError:
        raise ValidationError(
            f"Invalid package type: {_key(booking_type)}",
            {"booking_type": _key(booking_type)},
        ) from None


def _key(value) -> str:
    return getattr(value, "value", str(value))
