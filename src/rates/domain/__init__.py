"""Domain layer: Money, the Instrument aggregate and variation detection."""

from rates.domain.clock import Clock, utc_now
from rates.domain.instrument import (
    DEFAULT_LOOKBACK,
    DEFAULT_RETENTION,
    HistoricalRate,
    Instrument,
    normalize_symbol,
)
from rates.domain.money import Money
from rates.domain.variation import (
    VariationCheckResult,
    VariationDetector,
    check_variation,
)

__all__ = [
    "Clock",
    "DEFAULT_LOOKBACK",
    "DEFAULT_RETENTION",
    "HistoricalRate",
    "Instrument",
    "Money",
    "VariationCheckResult",
    "VariationDetector",
    "check_variation",
    "normalize_symbol",
    "utc_now",
]
