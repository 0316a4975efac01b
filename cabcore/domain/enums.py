"""Domain enumerations and the role-gated booking transition table."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


class BookingType(str, enum.Enum):
    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"
    LOCAL_8_80 = "LOCAL_8_80"
    LOCAL_12_120 = "LOCAL_12_120"
    AIRPORT_PICKUP = "AIRPORT_PICKUP"
    AIRPORT_DROP = "AIRPORT_DROP"


OUTSTATION_TYPES = frozenset({BookingType.ONE_WAY, BookingType.ROUND_TRIP})
LOCAL_TYPES = frozenset({BookingType.LOCAL_8_80, BookingType.LOCAL_12_120})
AIRPORT_TYPES = frozenset({BookingType.AIRPORT_PICKUP, BookingType.AIRPORT_DROP})


class VehicleType(str, enum.Enum):
    HATCHBACK = "HATCHBACK"
    SEDAN = "SEDAN"
    SUV = "SUV"
    PREMIUM_SEDAN = "PREMIUM_SEDAN"


class DistanceSource(str, enum.Enum):
    USER_PROVIDED = "user_provided"
    ROUTED = "routed"
    GEOMETRIC_FALLBACK = "geometric_fallback"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUND_INITIATED = "REFUND_INITIATED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"


# State machine: (current, next) -> roles allowed to initiate the change.
# Any pair missing from this map is an illegal transition.
BOOKING_TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], frozenset[Role]] = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): frozenset({Role.ADMIN}),
    (BookingStatus.PENDING, BookingStatus.REJECTED): frozenset({Role.ADMIN}),
    (BookingStatus.PENDING, BookingStatus.CANCELLED): frozenset(
        {Role.ADMIN, Role.CUSTOMER}
    ),
    (BookingStatus.CONFIRMED, BookingStatus.ASSIGNED): frozenset({Role.ADMIN}),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): frozenset(
        {Role.ADMIN, Role.CUSTOMER}
    ),
    (BookingStatus.ASSIGNED, BookingStatus.IN_PROGRESS): frozenset({Role.DRIVER}),
    (BookingStatus.ASSIGNED, BookingStatus.CANCELLED): frozenset(
        {Role.ADMIN, Role.CUSTOMER, Role.DRIVER}
    ),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED): frozenset({Role.DRIVER}),
}


def validate_transition_table(
    table: dict[tuple[BookingStatus, BookingStatus], frozenset[Role]],
) -> None:
    """Check the transition table once at import time.

    Every non-terminal status must have a way out, terminal statuses must
    have none, nothing may move back to PENDING, and every legal pair must
    name at least one role.
    """
    sources = {src for src, _ in table}
    for status in BookingStatus:
        if status in TERMINAL_STATUSES and status in sources:
            raise RuntimeError(f"Terminal status {status.value} has outgoing transitions")
        if status not in TERMINAL_STATUSES and status not in sources:
            raise RuntimeError(f"Status {status.value} has no outgoing transitions")
    for (src, dst), roles in table.items():
        if src == dst:
            raise RuntimeError(f"Self-transition declared for {src.value}")
        if not roles:
            raise RuntimeError(f"No role may move {src.value} -> {dst.value}")
        if dst == BookingStatus.PENDING:
            raise RuntimeError(f"{src.value} -> PENDING is not allowed")


validate_transition_table(BOOKING_TRANSITIONS)
