"""Instrument persistence layer.

Provides the SQLite database manager, the unit-of-work scoped instrument
store and demo data seeding.
"""

from rates.data.database import RatesDatabase
from rates.data.seeder import seed_initial_data
from rates.data.store import InstrumentStore, SqliteInstrumentStore, UnitOfWork

__all__ = [
    "InstrumentStore",
    "RatesDatabase",
    "SqliteInstrumentStore",
    "UnitOfWork",
    "seed_initial_data",
]
