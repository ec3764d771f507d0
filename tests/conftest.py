"""Shared test fixtures for the rates service."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from rates.config import AppSettings, CoinMarketCapSettings, StoreSettings, VariationSettings
from rates.data.database import RatesDatabase
from rates.data.store import SqliteInstrumentStore


class ManualClock:
    """Clock whose "now" only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def mock_settings(tmp_path) -> AppSettings:
    """Return AppSettings with test defaults (temp database, dummy API key)."""
    return AppSettings(
        log_level="DEBUG",
        coinmarketcap=CoinMarketCapSettings(api_key="test-api-key"),  # type: ignore[arg-type]
        store=StoreSettings(db_path=str(tmp_path / "rates.db")),
        variation=VariationSettings(),
    )


@pytest.fixture
def start_time() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time: datetime) -> ManualClock:
    """Pinned clock starting at 2024-05-01 12:00 UTC."""
    return ManualClock(start_time)


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected RatesDatabase on a temp file, closed after the test."""
    db = RatesDatabase(str(tmp_path / "rates.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database: RatesDatabase) -> SqliteInstrumentStore:
    return SqliteInstrumentStore(database)
