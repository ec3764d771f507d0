"""Demo data seeding for a fresh store.

Creates BTC from a 25h-old observation and accepts a 23h-old update.
The older sample falls outside the retention window and is evicted, so
the stored instrument holds a single baseline (59000.00 USD, 23h old)
for the first live BTC quote to compare against.
"""

from datetime import timedelta
from decimal import Decimal

from rates.data.store import InstrumentStore
from rates.domain.clock import Clock, utc_now
from rates.domain.instrument import Instrument
from rates.domain.money import Money
from rates.logging import get_logger

logger = get_logger(__name__)


async def seed_initial_data(store: InstrumentStore, clock: Clock = utc_now) -> bool:
    """Seed BTC if it is not already stored.

    Returns True when the instrument was created, False if it already existed.
    """
    uow = await store.begin("BTC")
    try:
        if await store.get_by_symbol(uow, "BTC") is not None:
            await uow.rollback()
            logger.info("seed_skipped", symbol="BTC", reason="already_exists")
            return False

        now = clock()
        btc = Instrument.create(
            "BTC", "Bitcoin", Money(Decimal("58400.82"), "USD"), now - timedelta(hours=25)
        )
        btc.accept_update(
            Money(Decimal("59000.00"), "USD"), now - timedelta(hours=23), now=now
        )
        await store.insert(uow, btc)
        await uow.commit()
    except Exception:
        await uow.rollback()
        raise

    logger.info(
        "seeded_instrument",
        symbol=btc.symbol,
        current_rate=str(btc.current_rate.amount),
        currency=btc.current_rate.currency,
        samples=len(btc.history),
    )
    return True
