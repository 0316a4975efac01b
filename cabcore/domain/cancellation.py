"""Time-windowed cancellation charges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .pricing import whole
from .timeutils import ensure_aware, hours_between


@dataclass(frozen=True)
class CancellationQuote:
    charge: int
    refund_amount: int
    charge_applies: bool
    hours_until_start: float
    window_hours: float
    charge_percent: float
    note: str


@dataclass(frozen=True)
class CancellationPolicy:
    window_hours: float = 24.0
    charge_percent: Decimal = Decimal("10")

    @classmethod
    def from_settings(cls, config) -> CancellationPolicy:
        return cls(
            window_hours=config.cancellation_window_hours,
            charge_percent=Decimal(str(config.cancellation_charge_percent)),
        )

    def evaluate(
        self, final_amount: int, start: datetime, now: datetime
    ) -> CancellationQuote:
        """Charge for a customer cancelling a fare of *final_amount* at *now*.

        Inside ``[0, window)`` hours before the start the charge is
        ``round(final_amount x percent / 100)``; earlier it is free, and a
        start already in the past yields no charge with its own note.
        """
        hours = hours_between(ensure_aware(now), ensure_aware(start))
        if hours < 0:
            charge, note = 0, "Trip already started"
        elif hours < self.window_hours:
            charge = whole(Decimal(final_amount) * self.charge_percent / 100)
            note = (
                f"Cancellation within {self.window_hours:g} hours of the trip "
                f"attracts a {float(self.charge_percent):g}% charge"
            )
        else:
            charge, note = 0, "Free cancellation"
        return self._quote(final_amount, charge, hours, note)

    def waived(
        self, final_amount: int, start: datetime, now: datetime, note: str
    ) -> CancellationQuote:
        hours = hours_between(ensure_aware(now), ensure_aware(start))
        return self._quote(final_amount, 0, hours, note)

    def _quote(
        self, final_amount: int, charge: int, hours: float, note: str
    ) -> CancellationQuote:
        return CancellationQuote(
            charge=charge,
            refund_amount=max(0, final_amount - charge),
            charge_applies=charge > 0,
            hours_until_start=round(hours, 2),
            window_hours=self.window_hours,
            charge_percent=float(self.charge_percent),
            note=note,
        )
