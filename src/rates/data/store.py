"""Instrument store: unit-of-work scoped persistence for the Instrument aggregate.

Provides the InstrumentStore contract consumed by the orchestrator and its
SQLite implementation. All SQL is isolated behind this interface.

CRITICAL: Money amounts are stored as TEXT in SQLite, restored as Decimal on read.
"""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from rates.data.database import RatesDatabase
from rates.domain.instrument import HistoricalRate, Instrument, normalize_symbol
from rates.domain.money import Money
from rates.exceptions import StoreError
from rates.logging import get_logger

logger = get_logger(__name__)


class UnitOfWork:
    """One atomic transaction scoped to a single instrument symbol.

    Created by SqliteInstrumentStore.begin() and finalized by the caller with
    commit() or rollback(). While active it holds the database write lock,
    so no other unit of work or standalone read observes intermediate state.
    """

    def __init__(self, database: RatesDatabase, symbol: str) -> None:
        self._database = database
        self._symbol = symbol
        self._active = False

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def active(self) -> bool:
        return self._active

    async def _begin(self) -> None:
        await self._database.write_lock.acquire()
        try:
            await self._database.db.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._database.write_lock.release()
            raise StoreError(f"Could not begin transaction for {self._symbol}: {e}") from e
        except asyncio.CancelledError:
            # BEGIN may still run on the connection thread; undo it before releasing
            await self._safe_rollback()
            self._database.write_lock.release()
            raise
        self._active = True

    async def commit(self) -> None:
        """Commit the transaction.

        Raises:
            StoreError: Not active, or the commit failed (the transaction is rolled back).
        """
        if not self._active:
            raise StoreError(f"Unit of work for {self._symbol} is not active")
        try:
            await self._database.db.execute("COMMIT")
        except sqlite3.Error as e:
            await self._safe_rollback()
            raise StoreError(f"Commit failed for {self._symbol}: {e}") from e
        finally:
            self._finish()

    async def rollback(self) -> None:
        """Roll back the transaction. A no-op if already finalized."""
        if not self._active:
            return
        try:
            await self._safe_rollback()
        finally:
            self._finish()

    async def _safe_rollback(self) -> None:
        try:
            await self._database.db.execute("ROLLBACK")
        except sqlite3.Error as e:
            # No transaction left to roll back after a failed COMMIT
            logger.warning("rollback_failed", symbol=self._symbol, error=str(e))

    def _finish(self) -> None:
        if self._active:
            self._active = False
            self._database.write_lock.release()


class InstrumentStore(ABC):
    """Persistence contract for Instrument aggregates keyed by symbol."""

    @abstractmethod
    async def begin(self, symbol: str) -> UnitOfWork:
        """Open a unit of work for one symbol."""
        ...

    @abstractmethod
    async def get_by_symbol(self, uow: UnitOfWork, symbol: str) -> Instrument | None:
        """Load an instrument with its history inside the unit of work."""
        ...

    @abstractmethod
    async def insert(self, uow: UnitOfWork, instrument: Instrument) -> None:
        """Persist a newly created instrument."""
        ...

    @abstractmethod
    async def update(self, uow: UnitOfWork, instrument: Instrument) -> None:
        """Persist the current state of an existing instrument."""
        ...

    @abstractmethod
    async def find_by_symbol(self, symbol: str) -> Instrument | None:
        """Read an instrument outside of any unit of work."""
        ...

    @abstractmethod
    async def list_instruments(self) -> list[Instrument]:
        """Read all instruments ordered by symbol."""
        ...


class SqliteInstrumentStore(InstrumentStore):
    """Async SQLite store for Instrument aggregates.

    Usage:
        async with RatesDatabase("data/rates.db") as database:
            store = SqliteInstrumentStore(database)
            uow = await store.begin("BTC")
            instrument = await store.get_by_symbol(uow, "BTC")
            ...
            await uow.commit()
    """

    def __init__(self, database: RatesDatabase) -> None:
        self._database = database

    async def begin(self, symbol: str) -> UnitOfWork:
        uow = UnitOfWork(self._database, normalize_symbol(symbol))
        await uow._begin()
        return uow

    # ──────────────────────────────────────────────
    # Unit-of-work operations
    # ──────────────────────────────────────────────

    async def get_by_symbol(self, uow: UnitOfWork, symbol: str) -> Instrument | None:
        self._ensure_active(uow)
        try:
            return await self._load(symbol)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load {symbol}: {e}") from e

    async def insert(self, uow: UnitOfWork, instrument: Instrument) -> None:
        self._ensure_active(uow)
        db = self._database.db
        try:
            await db.execute(
                "INSERT INTO instruments "
                "(id, symbol, name, current_rate_amount, current_rate_currency, last_updated) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    instrument.id,
                    instrument.symbol,
                    instrument.name,
                    str(instrument.current_rate.amount),
                    instrument.current_rate.currency,
                    instrument.last_updated.isoformat(),
                ),
            )
            await self._write_history(instrument)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to insert {instrument.symbol}: {e}") from e

        logger.debug(
            "instrument_inserted",
            symbol=instrument.symbol,
            samples=len(instrument.history),
        )

    async def update(self, uow: UnitOfWork, instrument: Instrument) -> None:
        self._ensure_active(uow)
        db = self._database.db
        try:
            cursor = await db.execute(
                "UPDATE instruments SET name = ?, current_rate_amount = ?, "
                "current_rate_currency = ?, last_updated = ? "
                "WHERE id = ? AND symbol = ?",
                (
                    instrument.name,
                    str(instrument.current_rate.amount),
                    instrument.current_rate.currency,
                    instrument.last_updated.isoformat(),
                    instrument.id,
                    instrument.symbol,
                ),
            )
            if cursor.rowcount == 0:
                raise StoreError(
                    f"Instrument {instrument.symbol} ({instrument.id}) does not exist"
                )
            await db.execute(
                "DELETE FROM historical_rates WHERE instrument_id = ?",
                (instrument.id,),
            )
            await self._write_history(instrument)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update {instrument.symbol}: {e}") from e

        logger.debug(
            "instrument_updated",
            symbol=instrument.symbol,
            samples=len(instrument.history),
        )

    # ──────────────────────────────────────────────
    # Standalone reads
    # ──────────────────────────────────────────────

    async def find_by_symbol(self, symbol: str) -> Instrument | None:
        async with self._database.write_lock:
            try:
                return await self._load(symbol)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to load {symbol}: {e}") from e

    async def list_instruments(self) -> list[Instrument]:
        async with self._database.write_lock:
            try:
                cursor = await self._database.db.execute(
                    "SELECT symbol FROM instruments ORDER BY symbol ASC"
                )
                rows = await cursor.fetchall()
                instruments = [await self._load(row[0]) for row in rows]
            except sqlite3.Error as e:
                raise StoreError(f"Failed to list instruments: {e}") from e
        return [i for i in instruments if i is not None]

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    @staticmethod
    def _ensure_active(uow: UnitOfWork) -> None:
        if not uow.active:
            raise StoreError(f"Unit of work for {uow.symbol} is not active")

    async def _load(self, symbol: str) -> Instrument | None:
        db = self._database.db
        cursor = await db.execute(
            "SELECT id, symbol, name, current_rate_amount, current_rate_currency, last_updated "
            "FROM instruments WHERE symbol = ?",
            (normalize_symbol(symbol),),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await db.execute(
            "SELECT timestamp, rate_amount, rate_currency FROM historical_rates "
            "WHERE instrument_id = ? ORDER BY seq ASC",
            (row[0],),
        )
        history_rows = await cursor.fetchall()

        return Instrument.rehydrate(
            id=row[0],
            symbol=row[1],
            name=row[2],
            current_rate=Money(Decimal(row[3]), row[4]),
            last_updated=datetime.fromisoformat(row[5]),
            history=[
                HistoricalRate(datetime.fromisoformat(h[0]), Money(Decimal(h[1]), h[2]))
                for h in history_rows
            ],
        )

    async def _write_history(self, instrument: Instrument) -> None:
        data = [
            (
                instrument.id,
                seq,
                sample.timestamp.isoformat(),
                str(sample.rate.amount),
                sample.rate.currency,
            )
            for seq, sample in enumerate(instrument.history)
        ]
        await self._database.db.executemany(
            "INSERT INTO historical_rates "
            "(instrument_id, seq, timestamp, rate_amount, rate_currency) "
            "VALUES (?, ?, ?, ?, ?)",
            data,
        )
