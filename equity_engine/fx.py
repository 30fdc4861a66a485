"""FX conversion helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Tuple

ONE = Decimal("1")


@dataclass
class FXRateProvider:
    """Look up FX conversion rates to the base currency.

    Rates are keyed by ``(day, from_currency, to_currency)``. When no rate is
    recorded for the exact day, the latest earlier rate for the same pair is
    used, since FX fixings are not published on weekends.
    """

    rates: Dict[Tuple[date, str, str], Decimal] = field(default_factory=dict)
    base_currency: str = "USD"

    def rate(self, d: date, from_currency: str, to_currency: str | None = None) -> Decimal:
        """Return the conversion rate from ``from_currency`` to ``to_currency``."""

        source = from_currency.upper()
        target = (to_currency or self.base_currency).upper()
        if source == target:
            return ONE
        key = (d, source, target)
        if key in self.rates:
            return Decimal(str(self.rates[key]))
        earlier = [
            day for (day, src, dst) in self.rates if src == source and dst == target and day < d
        ]
        if not earlier:
            raise KeyError(f"Missing FX rate for {source}->{target} on {d.isoformat()}")
        return Decimal(str(self.rates[(max(earlier), source, target)]))

    def convert(self, amount: Decimal, d: date, from_currency: str) -> Decimal:
        return amount * self.rate(d, from_currency)
