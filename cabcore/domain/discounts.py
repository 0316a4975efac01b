"""
Discount codes.

A discount is taken off the pre-tax subtotal, never off the taxed total.
Tax and final amount are then recomputed from the discounted subtotal at
the rate the fare was quoted with.  A fare carries at most one discount.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Mapping, Optional

from .entities import FareBreakdown
from .enums import DiscountType
from .errors import ConflictError, ValidationError
from .pricing import tax_on, whole
from .timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountRule:
    code: str
    kind: DiscountType
    value: Decimal
    max_discount: Optional[int] = None
    first_ride_only: bool = False
    min_subtotal: int = 0
    expires_at: Optional[datetime] = None

    def amount_for(self, subtotal: int) -> int:
        if self.kind == DiscountType.PERCENTAGE:
            amount = whole(Decimal(subtotal) * self.value / 100)
        else:
            amount = whole(self.value)
        if self.max_discount is not None:
            amount = min(amount, self.max_discount)
        return min(amount, subtotal)


@dataclass(frozen=True)
class UserHistory:
    completed_bookings: int = 0


DEFAULT_RULES: dict[str, DiscountRule] = {
    "FIRST100": DiscountRule(
        code="FIRST100",
        kind=DiscountType.FIXED,
        value=Decimal("100"),
        first_ride_only=True,
    ),
    "SAVE10": DiscountRule(
        code="SAVE10",
        kind=DiscountType.PERCENTAGE,
        value=Decimal("10"),
        max_discount=150,
    ),
}


class DiscountEngine:
    def __init__(
        self,
        rules: Optional[Mapping[str, DiscountRule]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rules = dict(DEFAULT_RULES if rules is None else rules)
        self.clock = clock

    def rule_for(self, code: str) -> DiscountRule:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise ValidationError("Discount code is required")
        rule = self.rules.get(normalized)
        if rule is None:
            raise ValidationError(f"Invalid discount code: {normalized}")
        return rule

    def apply(
        self, fare: FareBreakdown, code: str, history: UserHistory
    ) -> FareBreakdown:
        """Return a new breakdown with *code* applied to *fare*."""
        if fare.discount_amount != 0 or fare.discount_code:
            raise ConflictError(
                "A discount has already been applied to this booking",
                {"discount_code": fare.discount_code},
            )
        rule = self.rule_for(code)
        if rule.expires_at is not None and self.clock() >= ensure_aware(rule.expires_at):
            raise ValidationError(f"Discount code {rule.code} has expired")
        if rule.first_ride_only and history.completed_bookings > 0:
            raise ValidationError(
                f"Discount code {rule.code} is valid only on your first ride"
            )
        if fare.subtotal < rule.min_subtotal:
            raise ValidationError(
                f"Discount code {rule.code} needs a fare of at least ₹{rule.min_subtotal}"
            )

        amount = rule.amount_for(fare.subtotal)
        if amount <= 0:
            raise ValidationError(f"Discount code {rule.code} does not apply to this fare")

        subtotal = fare.subtotal - amount
        tax_rate = Decimal(str(fare.tax_rate_percent)) / 100
        tax = tax_on(subtotal, tax_rate)
        lines = [
            line for line in fare.breakdown
            if not line.startswith(("GST (", "Total Amount"))
        ]
        lines += [
            f"Discount ({rule.code}) = -₹{amount}",
            f"GST ({fare.tax_rate_percent:g}%) = ₹{tax}",
            f"Total Amount = ₹{subtotal + tax}",
        ]
        logger.info(
            "Discount %s applied: -%d, final %d -> %d",
            rule.code, amount, fare.final_amount, subtotal + tax,
        )
        return replace(
            fare,
            subtotal=subtotal,
            tax=tax,
            final_amount=subtotal + tax,
            discount_code=rule.code,
            discount_amount=amount,
            discount_type=rule.kind,
            breakdown=tuple(lines),
        )
