"""Tests for the SQLite instrument store and its units of work.

Uses a real aiosqlite database in a temp directory.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rates.data.database import RatesDatabase
from rates.data.store import SqliteInstrumentStore
from rates.domain.instrument import HistoricalRate, Instrument
from rates.domain.money import Money
from rates.exceptions import StoreError

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def usd(amount: str) -> Money:
    return Money(Decimal(amount), "USD")


async def insert_btc(store: SqliteInstrumentStore, rate: str = "58400.82") -> Instrument:
    btc = Instrument.create("BTC", "Bitcoin", usd(rate), T0)
    uow = await store.begin("BTC")
    await store.insert(uow, btc)
    await uow.commit()
    return btc


class TestRatesDatabase:
    """Connection lifecycle."""

    def test_db_before_connect_raises(self, tmp_path) -> None:
        database = RatesDatabase(str(tmp_path / "x.db"))
        with pytest.raises(RuntimeError):
            _ = database.db

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path) -> None:
        path = tmp_path / "nested" / "dir" / "rates.db"
        async with RatesDatabase(str(path)):
            pass
        assert path.exists()


class TestInsertAndLoad:
    """Round trip of the aggregate including history and Decimal precision."""

    @pytest.mark.asyncio
    async def test_insert_then_get(self, store: SqliteInstrumentStore) -> None:
        btc = await insert_btc(store)

        uow = await store.begin("BTC")
        loaded = await store.get_by_symbol(uow, "btc")
        await uow.rollback()

        assert loaded is not None
        assert loaded.id == btc.id
        assert loaded.name == "Bitcoin"
        assert loaded.current_rate == usd("58400.82")
        assert loaded.last_updated == T0
        assert loaded.history == (HistoricalRate(T0, usd("58400.82")),)

    @pytest.mark.asyncio
    async def test_unknown_symbol_returns_none(self, store: SqliteInstrumentStore) -> None:
        uow = await store.begin("ETH")
        assert await store.get_by_symbol(uow, "ETH") is None
        await uow.rollback()

    @pytest.mark.asyncio
    async def test_duplicate_symbol_rejected(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store)
        uow = await store.begin("BTC")
        with pytest.raises(StoreError):
            await store.insert(uow, Instrument.create("BTC", "Bitcoin", usd("1"), T0))
        await uow.rollback()

    @pytest.mark.asyncio
    async def test_decimal_precision_preserved(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store, rate="0.000000012345678901")
        loaded = await store.find_by_symbol("BTC")
        assert loaded is not None
        assert loaded.current_rate.amount == Decimal("0.000000012345678901")


class TestUpdate:
    """update() replaces the row and its retained history."""

    @pytest.mark.asyncio
    async def test_update_persists_new_state(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store, rate="100")
        t1 = T0 + timedelta(hours=25)

        uow = await store.begin("BTC")
        btc = await store.get_by_symbol(uow, "BTC")
        assert btc is not None
        btc.accept_update(usd("110"), t1, now=t1)
        await store.update(uow, btc)
        await uow.commit()

        loaded = await store.find_by_symbol("BTC")
        assert loaded is not None
        assert loaded.current_rate == usd("110")
        assert loaded.last_updated == t1
        # 25h later the first sample fell out of the retention window
        assert loaded.history == (HistoricalRate(t1, usd("110")),)

    @pytest.mark.asyncio
    async def test_update_keeps_history_order(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store, rate="100")
        uow = await store.begin("BTC")
        btc = await store.get_by_symbol(uow, "BTC")
        assert btc is not None
        for minutes, rate in [(1, "101"), (2, "102")]:
            t = T0 + timedelta(minutes=minutes)
            btc.accept_update(usd(rate), t, now=t)
        await store.update(uow, btc)
        await uow.commit()

        loaded = await store.find_by_symbol("BTC")
        assert loaded is not None
        assert [s.rate.amount for s in loaded.history] == [
            Decimal("100"),
            Decimal("101"),
            Decimal("102"),
        ]

    @pytest.mark.asyncio
    async def test_update_missing_instrument_raises(self, store: SqliteInstrumentStore) -> None:
        uow = await store.begin("BTC")
        with pytest.raises(StoreError):
            await store.update(uow, Instrument.create("BTC", "Bitcoin", usd("1"), T0))
        await uow.rollback()


class TestUnitOfWork:
    """Transaction boundaries."""

    @pytest.mark.asyncio
    async def test_rollback_discards_changes(self, store: SqliteInstrumentStore) -> None:
        uow = await store.begin("BTC")
        await store.insert(uow, Instrument.create("BTC", "Bitcoin", usd("1"), T0))
        await uow.rollback()

        assert await store.find_by_symbol("BTC") is None
        assert uow.active is False

    @pytest.mark.asyncio
    async def test_rollback_after_commit_is_noop(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store)
        uow = await store.begin("BTC")
        await uow.commit()
        await uow.rollback()
        assert await store.find_by_symbol("BTC") is not None

    @pytest.mark.asyncio
    async def test_inactive_unit_of_work_rejected(self, store: SqliteInstrumentStore) -> None:
        uow = await store.begin("BTC")
        await uow.commit()

        with pytest.raises(StoreError):
            await store.get_by_symbol(uow, "BTC")
        with pytest.raises(StoreError):
            await store.insert(uow, Instrument.create("BTC", "Bitcoin", usd("1"), T0))
        with pytest.raises(StoreError):
            await uow.commit()

    @pytest.mark.asyncio
    async def test_units_of_work_are_serialized(
        self, store: SqliteInstrumentStore, database: RatesDatabase
    ) -> None:
        """A second begin() waits until the first unit of work finishes."""
        first = await store.begin("BTC")
        assert database.write_lock.locked()

        second_task = asyncio.create_task(store.begin("ETH"))
        await asyncio.sleep(0.05)
        assert not second_task.done()

        await first.rollback()
        second = await asyncio.wait_for(second_task, timeout=2)
        assert second.active
        await second.rollback()
        assert not database.write_lock.locked()

    @pytest.mark.asyncio
    async def test_lock_released_after_failed_operation(
        self, store: SqliteInstrumentStore, database: RatesDatabase
    ) -> None:
        await insert_btc(store)
        uow = await store.begin("BTC")
        with pytest.raises(StoreError):
            await store.insert(uow, Instrument.create("BTC", "Bitcoin", usd("1"), T0))
        await uow.rollback()
        assert not database.write_lock.locked()


class TestListInstruments:
    """Standalone reads."""

    @pytest.mark.asyncio
    async def test_list_ordered_by_symbol(self, store: SqliteInstrumentStore) -> None:
        for symbol, name in [("SOL", "Solana"), ("BTC", "Bitcoin"), ("ETH", "Ethereum")]:
            uow = await store.begin(symbol)
            await store.insert(uow, Instrument.create(symbol, name, usd("1"), T0))
            await uow.commit()

        instruments = await store.list_instruments()
        assert [i.symbol for i in instruments] == ["BTC", "ETH", "SOL"]

    @pytest.mark.asyncio
    async def test_list_empty(self, store: SqliteInstrumentStore) -> None:
        assert await store.list_instruments() == []


class TestSymbolLookup:
    """Lookups use the same canonical symbol form as Instrument.create()."""

    @pytest.mark.asyncio
    async def test_padded_lowercase_symbol_found(self, store: SqliteInstrumentStore) -> None:
        await insert_btc(store)

        uow = await store.begin(" btc ")
        assert uow.symbol == "BTC"
        found = await store.get_by_symbol(uow, " btc ")
        await uow.rollback()

        assert found is not None
        assert (await store.find_by_symbol("\tBtc\n")) is not None
