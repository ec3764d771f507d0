"""Entry point for the rates service.

Wires all components together, optionally serves the FastAPI control API,
and runs the trigger sources. When the API is enabled (default), the
service and API share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. RatesDatabase + SqliteInstrumentStore
4. QuoteFeed (CoinMarketCap or exchange tickers)
5. Redis client + RedisStreamNotifier
6. VariationDetector
7. IngestionOrchestrator
8. TriggerConsumer (Redis stream triggers)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI
from redis.asyncio import Redis

from rates.config import AppSettings
from rates.data.database import RatesDatabase
from rates.data.seeder import seed_initial_data
from rates.data.store import SqliteInstrumentStore
from rates.domain.clock import utc_now
from rates.domain.variation import VariationDetector
from rates.feed.client import QuoteFeed
from rates.feed.coinmarketcap import CoinMarketCapFeed
from rates.feed.exchange import ExchangeTickerFeed
from rates.logging import get_logger, setup_logging
from rates.messaging.consumer import TriggerConsumer
from rates.messaging.notifier import RedisStreamNotifier
from rates.orchestrator import IngestionOrchestrator


def _build_feed(settings: AppSettings) -> QuoteFeed:
    if settings.feed.source == "exchange":
        return ExchangeTickerFeed(settings.exchange)
    return CoinMarketCapFeed(
        settings.coinmarketcap,
        convert=settings.feed.reference_currency,
        limit=settings.feed.listings_limit,
        timeout=settings.feed.timeout_seconds,
    )


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT open connections -- that happens in _startup().

    Returns:
        Dict mapping component names to instances.
    """
    clock = utc_now

    database = RatesDatabase(settings.store.db_path)
    store = SqliteInstrumentStore(database)
    feed = _build_feed(settings)

    redis = Redis.from_url(
        settings.messaging.url,
        decode_responses=True,
        socket_timeout=settings.messaging.socket_timeout,
    )
    notifier = RedisStreamNotifier(
        redis,
        settings.messaging.rate_change_stream,
        maxlen=settings.messaging.stream_maxlen,
        clock=clock,
    )

    detector = VariationDetector(
        threshold=settings.variation.threshold,
        lookback=settings.variation.lookback,
        clock=clock,
    )

    orchestrator = IngestionOrchestrator(
        feed=feed,
        store=store,
        notifier=notifier,
        detector=detector,
        reference_currency=settings.feed.reference_currency,
        retention=settings.variation.retention,
        clock=clock,
        cycle_interval=settings.scheduler.interval_seconds,
    )

    consumer = None
    if settings.messaging.consume_triggers:
        consumer = TriggerConsumer(
            redis,
            handler=orchestrator.handle_trigger,
            stream=settings.messaging.trigger_stream,
            group=settings.messaging.consumer_group,
            dead_letter_stream=settings.messaging.dead_letter_stream,
            block_ms=settings.messaging.block_ms,
            retry_interval=settings.messaging.retry_interval_seconds,
        )

    return {
        "database": database,
        "store": store,
        "feed": feed,
        "redis": redis,
        "notifier": notifier,
        "detector": detector,
        "orchestrator": orchestrator,
        "consumer": consumer,
    }


async def _startup(settings: AppSettings, components: dict[str, Any]) -> list[asyncio.Task]:
    """Open connections, seed, and start trigger sources. Returns background tasks."""
    logger = get_logger("rates.main")

    await components["database"].connect()
    if settings.store.seed_demo_data:
        await seed_initial_data(components["store"])
    await components["feed"].connect()

    tasks: list[asyncio.Task] = []
    if components["consumer"] is not None:
        await components["consumer"].start()
    if settings.scheduler.enabled:
        tasks.append(asyncio.create_task(components["orchestrator"].start()))

    logger.info(
        "rates_service_started",
        feed=settings.feed.source,
        reference_currency=settings.feed.reference_currency,
        threshold=str(settings.variation.threshold),
        consume_triggers=components["consumer"] is not None,
        scheduler=settings.scheduler.enabled,
    )
    return tasks


async def _shutdown(components: dict[str, Any], tasks: list[asyncio.Task]) -> None:
    """Stop trigger sources and close connections in reverse order."""
    logger = get_logger("rates.main")

    if components["consumer"] is not None:
        await components["consumer"].stop()
    await components["orchestrator"].stop()
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await components["feed"].close()
    await components["redis"].aclose()
    await components["database"].close()
    logger.info("rates_service_stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application."""
    settings = app.state.settings
    components = app.state.components

    app.state.orchestrator = components["orchestrator"]
    app.state.store = components["store"]

    tasks = await _startup(settings, components)
    try:
        yield
    finally:
        await _shutdown(components, tasks)


async def run() -> None:
    """Run the rates service.

    With the API enabled (API_ENABLED=true, the default) uvicorn serves the
    control API and the lifespan manages startup/shutdown. Otherwise the
    service runs headless until SIGINT/SIGTERM.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("rates.main")

    # 3-8. Build all components
    components = _build_components(settings)

    if settings.api.enabled:
        from rates.api.app import create_api_app

        app = create_api_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("starting_without_api")
    tasks = await _startup(settings, components)
    try:
        await stop_event.wait()
        logger.info("graceful_shutdown_signal")
    finally:
        await _shutdown(components, tasks)


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
