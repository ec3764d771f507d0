"""Tests for the Instrument aggregate.

Tests verify:
- create() seeds exactly one history sample
- accept_update() enforces strictly increasing timestamps and a fixed currency
- rejected updates leave state untouched
- history older than the retention window is evicted on accept
- oldest_sample_within() picks the earliest in-window sample
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rates.domain.instrument import (
    DEFAULT_RETENTION,
    HistoricalRate,
    Instrument,
    normalize_symbol,
)
from rates.domain.money import Money
from rates.exceptions import CurrencyMismatch, InvalidArgument, StaleObservation

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def usd(amount: str) -> Money:
    return Money(Decimal(amount), "USD")


@pytest.fixture
def btc() -> Instrument:
    return Instrument.create("BTC", "Bitcoin", usd("100"), T0)


class TestCreate:
    """Instrument.create() validation and initial state."""

    def test_seeds_single_sample(self, btc: Instrument) -> None:
        assert btc.symbol == "BTC"
        assert btc.name == "Bitcoin"
        assert btc.current_rate == usd("100")
        assert btc.last_updated == T0
        assert btc.history == (HistoricalRate(T0, usd("100")),)

    def test_assigns_unique_ids(self) -> None:
        a = Instrument.create("BTC", "Bitcoin", usd("1"), T0)
        b = Instrument.create("BTC", "Bitcoin", usd("1"), T0)
        assert a.id and b.id and a.id != b.id

    def test_symbol_normalized(self) -> None:
        assert Instrument.create(" eth ", "Ethereum", usd("1"), T0).symbol == "ETH"

    @pytest.mark.parametrize("raw", ["BTC", "btc", " btc ", "\tBtc\n"])
    def test_normalize_symbol(self, raw: str) -> None:
        assert normalize_symbol(raw) == "BTC"
        assert Instrument.create(raw, "Bitcoin", usd("1"), T0).symbol == normalize_symbol(raw)

    def test_naive_timestamp_treated_as_utc(self) -> None:
        instrument = Instrument.create("BTC", "Bitcoin", usd("1"), datetime(2024, 5, 1, 12, 0))
        assert instrument.last_updated == T0

    @pytest.mark.parametrize("symbol,name", [("", "Bitcoin"), ("  ", "Bitcoin"), ("BTC", "")])
    def test_empty_symbol_or_name_rejected(self, symbol: str, name: str) -> None:
        with pytest.raises(InvalidArgument):
            Instrument.create(symbol, name, usd("1"), T0)

    def test_rate_must_be_money(self) -> None:
        with pytest.raises(InvalidArgument):
            Instrument.create("BTC", "Bitcoin", Decimal("1"), T0)  # type: ignore[arg-type]

    def test_unset_timestamp_rejected(self) -> None:
        with pytest.raises(InvalidArgument):
            Instrument.create("BTC", "Bitcoin", usd("1"), datetime.min)
        with pytest.raises(InvalidArgument):
            Instrument.create("BTC", "Bitcoin", usd("1"), None)  # type: ignore[arg-type]


class TestAcceptUpdate:
    """accept_update() invariants."""

    def test_newer_update_applied(self, btc: Instrument) -> None:
        t1 = T0 + timedelta(minutes=5)
        btc.accept_update(usd("101"), t1, now=t1)

        assert btc.current_rate == usd("101")
        assert btc.last_updated == t1
        assert [s.rate for s in btc.history] == [usd("100"), usd("101")]

    def test_equal_timestamp_is_stale(self, btc: Instrument) -> None:
        with pytest.raises(StaleObservation):
            btc.accept_update(usd("101"), T0, now=T0)
        assert btc.current_rate == usd("100")
        assert len(btc.history) == 1

    def test_older_timestamp_is_stale(self, btc: Instrument) -> None:
        with pytest.raises(StaleObservation):
            btc.accept_update(usd("101"), T0 - timedelta(seconds=1), now=T0)
        assert btc.last_updated == T0

    def test_currency_mismatch_leaves_state(self, btc: Instrument) -> None:
        t1 = T0 + timedelta(minutes=1)
        with pytest.raises(CurrencyMismatch):
            btc.accept_update(Money(Decimal("95"), "EUR"), t1, now=t1)
        assert btc.current_rate == usd("100")
        assert btc.last_updated == T0
        assert len(btc.history) == 1

    def test_currency_checked_before_staleness(self, btc: Instrument) -> None:
        with pytest.raises(CurrencyMismatch):
            btc.accept_update(Money(Decimal("95"), "EUR"), T0, now=T0)

    def test_evicts_samples_older_than_retention(self, btc: Instrument) -> None:
        t1 = T0 + timedelta(hours=25)
        btc.accept_update(usd("110"), t1, now=t1)

        assert btc.history == (HistoricalRate(t1, usd("110")),)

    def test_keeps_samples_inside_retention_margin(self, btc: Instrument) -> None:
        """24h02m is still inside the 24h + 5min retention window."""
        t1 = T0 + timedelta(hours=24, minutes=2)
        btc.accept_update(usd("110"), t1, now=t1)

        assert len(btc.history) == 2
        assert DEFAULT_RETENTION == timedelta(hours=24, minutes=5)

    def test_custom_retention(self, btc: Instrument) -> None:
        t1 = T0 + timedelta(hours=2)
        btc.accept_update(usd("110"), t1, now=t1, retention=timedelta(hours=1))
        assert len(btc.history) == 1

    def test_history_is_read_only_snapshot(self, btc: Instrument) -> None:
        snapshot = btc.history
        btc.accept_update(usd("101"), T0 + timedelta(minutes=1), now=T0 + timedelta(minutes=1))
        assert len(snapshot) == 1
        assert isinstance(btc.history, tuple)


class TestOldestSampleWithin:
    """oldest_sample_within() window queries."""

    def test_returns_earliest_in_window(self, btc: Instrument) -> None:
        t1 = T0 + timedelta(hours=2)
        t2 = T0 + timedelta(hours=3)
        btc.accept_update(usd("101"), t1, now=t1)
        btc.accept_update(usd("102"), t2, now=t2)

        sample = btc.oldest_sample_within(timedelta(hours=2, minutes=30), now=t2)
        assert sample == HistoricalRate(t1, usd("101"))

    def test_none_when_nothing_in_window(self, btc: Instrument) -> None:
        assert btc.oldest_sample_within(timedelta(hours=1), now=T0 + timedelta(hours=2)) is None

    def test_boundary_sample_included(self, btc: Instrument) -> None:
        now = T0 + timedelta(hours=24)
        assert btc.oldest_sample_within(timedelta(hours=24), now=now) == btc.history[0]

    def test_ties_resolve_to_first_inserted(self) -> None:
        instrument = Instrument.rehydrate(
            id="i-1",
            symbol="BTC",
            name="Bitcoin",
            current_rate=usd("2"),
            last_updated=T0,
            history=[HistoricalRate(T0, usd("1")), HistoricalRate(T0, usd("2"))],
        )
        assert instrument.oldest_sample_within(timedelta(hours=1), now=T0).rate == usd("1")


class TestRehydrate:
    """rehydrate() restores persisted state without validation or eviction."""

    def test_restores_state_as_is(self) -> None:
        old = T0 - timedelta(days=3)
        instrument = Instrument.rehydrate(
            id="i-1",
            symbol="BTC",
            name="Bitcoin",
            current_rate=usd("100"),
            last_updated=T0,
            history=[HistoricalRate(old, usd("90")), HistoricalRate(T0, usd("100"))],
        )
        assert instrument.id == "i-1"
        assert len(instrument.history) == 2
        assert "BTC" in repr(instrument)
