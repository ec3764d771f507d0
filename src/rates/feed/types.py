"""Feed record types.

All prices use Decimal. Never use float for prices.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass
class Quote:
    """Latest price observation for one instrument, possibly in several currencies."""

    symbol: str
    name: str
    observed_at: datetime
    prices: dict[str, Decimal] = field(default_factory=dict)  # currency code -> price

    def price_in(self, currency: str) -> Decimal | None:
        """Return the price in currency, or None if the feed did not quote it."""
        return self.prices.get(currency.upper())
