"""Async SQLite database manager for instrument persistence.

Uses aiosqlite in autocommit mode so transactions are explicit
(BEGIN IMMEDIATE / COMMIT / ROLLBACK) and owned by a unit of work.
The schema version lives in PRAGMA user_version.
"""

import asyncio
from pathlib import Path
from typing import Self

import aiosqlite

from rates.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

# Index in this list + 1 == the user_version after the script runs
_MIGRATIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS instruments (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        current_rate_amount TEXT NOT NULL,
        current_rate_currency TEXT NOT NULL,
        last_updated TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS historical_rates (
        instrument_id TEXT NOT NULL REFERENCES instruments(id) ON DELETE CASCADE,
        seq INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        rate_amount TEXT NOT NULL,
        rate_currency TEXT NOT NULL,
        PRIMARY KEY (instrument_id, seq)
    );

    CREATE INDEX IF NOT EXISTS idx_historical_instrument_ts
        ON historical_rates(instrument_id, timestamp);
    """,
]


class RatesDatabase:
    """Owns the single aiosqlite connection shared by the instrument store.

    Also owns the write lock that serializes units of work on that
    connection; see SqliteInstrumentStore.

    Usage:
        async with RatesDatabase("data/rates.db") as database:
            store = SqliteInstrumentStore(database)
    """

    def __init__(self, db_path: str = "data/rates.db") -> None:
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def db(self) -> aiosqlite.Connection:
        """The open connection. Raises RuntimeError before connect()."""
        if self._conn is None:
            raise RuntimeError(f"RatesDatabase({self._db_path}) is not connected")
        return self._conn

    @property
    def write_lock(self) -> asyncio.Lock:
        """Held for the lifetime of a unit of work and around standalone reads."""
        return self._write_lock

    async def connect(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "foreign_keys=ON"):
            await conn.execute(f"PRAGMA {pragma}")
        self._conn = conn

        version = await self._migrate()
        logger.info("rates_db_connected", db_path=self._db_path, schema_version=version)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("rates_db_closed", db_path=self._db_path)

    async def _migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""
        cursor = await self.db.execute("PRAGMA user_version")
        (current,) = await cursor.fetchone()  # type: ignore[misc]
        for version in range(current + 1, SCHEMA_VERSION + 1):
            await self.db.executescript(_MIGRATIONS[version - 1])
            await self.db.execute(f"PRAGMA user_version = {version}")
            logger.info("schema_migrated", version=version)
        return max(current, SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
