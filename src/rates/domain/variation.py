"""Variation detection: compares the current rate with the oldest rate in a lookback window.

Pure and synchronous. The lookback window and significance threshold are
parameters so both are tunable without touching the Instrument aggregate.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from rates.domain.clock import Clock, utc_now
from rates.domain.instrument import DEFAULT_LOOKBACK, Instrument
from rates.domain.money import Money
from rates.logging import get_logger

logger = get_logger(__name__)

DEFAULT_THRESHOLD = Decimal("0.05")


@dataclass(frozen=True)
class VariationCheckResult:
    """Outcome of a variation check, including the comparison basis."""

    symbol: str
    is_significant: bool
    percentage_change: Decimal  # unsigned fraction, 0.06 == 6%
    oldest_rate_in_window: Money | None
    current_rate: Money


def check_variation(
    instrument: Instrument,
    threshold: Decimal,
    lookback: timedelta = DEFAULT_LOOKBACK,
    *,
    now: datetime | None = None,
) -> VariationCheckResult:
    """Check whether the instrument moved more than threshold over the lookback window.

    Significant iff |current - oldest| / oldest is strictly greater than
    threshold. A missing or zero-valued oldest sample is "no data", not an
    error. A currency mismatch between the two rates is logged and reported
    as not significant.
    """
    current = instrument.current_rate
    sample = instrument.oldest_sample_within(lookback, now=now)
    oldest = sample.rate if sample is not None else None

    if oldest is None or oldest.amount == 0:
        logger.debug(
            "variation_check_no_baseline",
            symbol=instrument.symbol,
            lookback_hours=lookback.total_seconds() / 3600,
        )
        return VariationCheckResult(
            instrument.symbol, False, Decimal("0"), oldest, current
        )

    if oldest.currency != current.currency:
        logger.error(
            "variation_check_currency_mismatch",
            symbol=instrument.symbol,
            oldest_currency=oldest.currency,
            current_currency=current.currency,
        )
        return VariationCheckResult(
            instrument.symbol, False, Decimal("0"), oldest, current
        )

    change = abs(current.amount - oldest.amount) / oldest.amount
    return VariationCheckResult(
        symbol=instrument.symbol,
        is_significant=change > threshold,
        percentage_change=change,
        oldest_rate_in_window=oldest,
        current_rate=current,
    )


class VariationDetector:
    """check_variation() bound to configured defaults and a clock.

    Args:
        threshold: Default significance threshold as a fraction (0.05 = 5%).
        lookback: Default lookback window.
        clock: Source of "now" for the window cutoff.
    """

    def __init__(
        self,
        threshold: Decimal = DEFAULT_THRESHOLD,
        lookback: timedelta = DEFAULT_LOOKBACK,
        clock: Clock = utc_now,
    ) -> None:
        self._threshold = threshold
        self._lookback = lookback
        self._clock = clock

    @property
    def threshold(self) -> Decimal:
        return self._threshold

    @property
    def lookback(self) -> timedelta:
        return self._lookback

    def check(
        self,
        instrument: Instrument,
        threshold: Decimal | None = None,
        lookback: timedelta | None = None,
    ) -> VariationCheckResult:
        return check_variation(
            instrument,
            self._threshold if threshold is None else threshold,
            self._lookback if lookback is None else lookback,
            now=self._clock(),
        )
