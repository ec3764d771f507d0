"""Instrument aggregate root and its historical rate samples.

An Instrument is only mutated through accept_update(). Reconstruction from
storage goes through Instrument.rehydrate(), which skips validation and
eviction so loading never changes what was persisted.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from rates.domain.clock import ensure_utc, utc_now
from rates.domain.money import Money
from rates.exceptions import CurrencyMismatch, InvalidArgument, StaleObservation

DEFAULT_LOOKBACK = timedelta(hours=24)
RETENTION_MARGIN = timedelta(minutes=5)
DEFAULT_RETENTION = DEFAULT_LOOKBACK + RETENTION_MARGIN


def normalize_symbol(symbol: str) -> str:
    """Canonical symbol form used for storage and lookup."""
    return symbol.strip().upper()


@dataclass(frozen=True)
class HistoricalRate:
    """One observed (timestamp, rate) sample in an instrument's timeline."""

    timestamp: datetime
    rate: Money


class Instrument:
    """A tracked tradable instrument with a current rate and bounded history.

    Invariants:
      - current_rate is the rate of the most recently accepted sample
      - last_updated strictly increases across accepted updates
      - current_rate.currency never changes after creation
      - history holds only samples younger than the retention window as of
        the last accepted update

    Use Instrument.create() for a first observation and Instrument.rehydrate()
    to materialize from storage.
    """

    def __init__(
        self,
        id: str,
        symbol: str,
        name: str,
        current_rate: Money,
        last_updated: datetime,
        history: Iterable[HistoricalRate],
    ) -> None:
        self._id = id
        self._symbol = symbol
        self._name = name
        self._current_rate = current_rate
        self._last_updated = last_updated
        self._history: list[HistoricalRate] = list(history)

    # ──────────────────────────────────────────────
    # Construction paths
    # ──────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        symbol: str,
        name: str,
        initial_rate: Money,
        observed_at: datetime,
    ) -> Instrument:
        """Create an instrument from its first observation.

        Seeds history with exactly one sample (observed_at, initial_rate)
        and assigns a fresh surrogate id.

        Raises:
            InvalidArgument: symbol or name empty, initial_rate not Money,
                or observed_at unset.
        """
        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidArgument("Symbol cannot be empty.")
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgument("Name cannot be empty.")
        if not isinstance(initial_rate, Money):
            raise InvalidArgument("Initial rate must be a Money value.")
        if (
            not isinstance(observed_at, datetime)
            or observed_at.replace(tzinfo=None) == datetime.min
        ):
            raise InvalidArgument("Observation timestamp cannot be unset.")

        observed_at = ensure_utc(observed_at)
        return cls(
            id=str(uuid.uuid4()),
            symbol=normalize_symbol(symbol),
            name=name.strip(),
            current_rate=initial_rate,
            last_updated=observed_at,
            history=[HistoricalRate(observed_at, initial_rate)],
        )

    @classmethod
    def rehydrate(
        cls,
        id: str,
        symbol: str,
        name: str,
        current_rate: Money,
        last_updated: datetime,
        history: Iterable[HistoricalRate],
    ) -> Instrument:
        """Materialize a persisted instrument as-is."""
        return cls(id, symbol, name, current_rate, last_updated, history)

    # ──────────────────────────────────────────────
    # Read access
    # ──────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def name(self) -> str:
        return self._name

    @property
    def current_rate(self) -> Money:
        return self._current_rate

    @property
    def last_updated(self) -> datetime:
        return self._last_updated

    @property
    def history(self) -> tuple[HistoricalRate, ...]:
        """Retained samples in insertion order."""
        return tuple(self._history)

    # ──────────────────────────────────────────────
    # Behaviour
    # ──────────────────────────────────────────────

    def accept_update(
        self,
        new_rate: Money,
        observed_at: datetime,
        *,
        now: datetime | None = None,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        """Accept a newer observation and prune history older than the retention window.

        State is untouched when a rule is violated.

        Raises:
            CurrencyMismatch: new_rate is not in the instrument's currency.
            StaleObservation: observed_at does not advance past last_updated.
        """
        if not isinstance(new_rate, Money):
            raise InvalidArgument("New rate must be a Money value.")
        if new_rate.currency != self._current_rate.currency:
            raise CurrencyMismatch(
                f"{self._symbol} is tracked in {self._current_rate.currency}, "
                f"got {new_rate.currency}"
            )
        observed_at = ensure_utc(observed_at)
        if observed_at <= self._last_updated:
            raise StaleObservation(
                f"{self._symbol} observation at {observed_at.isoformat()} is not "
                f"newer than {self._last_updated.isoformat()}"
            )

        self._current_rate = new_rate
        self._last_updated = observed_at
        self._history.append(HistoricalRate(observed_at, new_rate))
        self._evict_older_than(ensure_utc(now or utc_now()) - retention)

    def oldest_sample_within(
        self, window: timedelta, *, now: datetime | None = None
    ) -> HistoricalRate | None:
        """Return the earliest retained sample no older than window, or None.

        Ties resolve to the earliest inserted sample.
        """
        cutoff = ensure_utc(now or utc_now()) - window
        oldest: HistoricalRate | None = None
        for sample in self._history:
            if sample.timestamp >= cutoff and (
                oldest is None or sample.timestamp < oldest.timestamp
            ):
                oldest = sample
        return oldest

    def _evict_older_than(self, cutoff: datetime) -> None:
        self._history = [s for s in self._history if s.timestamp >= cutoff]

    def __repr__(self) -> str:
        return (
            f"Instrument(symbol={self._symbol!r}, current_rate={self._current_rate}, "
            f"last_updated={self._last_updated.isoformat()}, samples={len(self._history)})"
        )
