"""Ingestion orchestrator -- fetch, persist, detect and notify, one symbol at a time.

Each cycle pulls one quote batch from the feed. Every quote is handled in
its own unit of work:
  1. SKIP: quotes without a reference-currency price
  2. LOAD: instrument by symbol
  3. CREATE or UPDATE: new symbol, or strictly newer observation
  4. IGNORE: not-newer observations (duplicate or out-of-order delivery)
  5. DETECT: variation check on the persisted state
  6. COMMIT, then NOTIFY on significant variation (best effort)

A failure while handling one symbol rolls back that symbol only. Feed
failures abort the whole cycle; the next trigger retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from rates.data.store import InstrumentStore
from rates.domain.clock import Clock, ensure_utc, utc_now
from rates.domain.instrument import DEFAULT_RETENTION, Instrument, normalize_symbol
from rates.domain.money import Money
from rates.domain.variation import VariationCheckResult, VariationDetector
from rates.exceptions import CurrencyMismatch, FeedError, RatesError
from rates.feed.client import QuoteFeed
from rates.feed.types import Quote
from rates.logging import bind_symbol, get_logger, unbind_symbol
from rates.messaging.models import FetchRatesCommand
from rates.messaging.notifier import Notifier

logger = get_logger(__name__)


@dataclass
class CycleReport:
    """Counters for one ingestion cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    quotes: int = 0
    created: int = 0
    updated: int = 0
    stale: int = 0
    skipped: int = 0  # no price in the reference currency
    failed: int = 0
    significant: int = 0
    notified: int = 0
    notify_failed: int = 0
    aborted: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class IngestionOrchestrator:
    """Runs ingestion cycles over a quote feed.

    At most one cycle runs at a time (guarded by an asyncio.Lock); triggers
    arriving mid-cycle wait for it to finish.

    Args:
        feed: Upstream quote source.
        store: Instrument persistence with per-symbol units of work.
        notifier: Publisher for significant rate changes.
        detector: Variation detector with configured threshold and lookback.
        reference_currency: Currency quotes are tracked in.
        retention: History kept on each accepted update.
        clock: Source of "now" for history eviction.
        cycle_interval: Seconds between scheduled cycles when start() is used.
    """

    def __init__(
        self,
        feed: QuoteFeed,
        store: InstrumentStore,
        notifier: Notifier,
        detector: VariationDetector,
        reference_currency: str = "USD",
        retention: timedelta = DEFAULT_RETENTION,
        clock: Clock = utc_now,
        cycle_interval: float = 300.0,
    ) -> None:
        self._feed = feed
        self._store = store
        self._notifier = notifier
        self._detector = detector
        self._reference_currency = reference_currency.upper()
        self._retention = retention
        self._clock = clock
        self._cycle_interval = cycle_interval
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._cycles_run = 0
        self._last_report: CycleReport | None = None
        self._background: set[asyncio.Task] = set()  # type: ignore[type-arg]

    # ──────────────────────────────────────────────
    # Triggers
    # ──────────────────────────────────────────────

    async def handle_trigger(self, command: FetchRatesCommand) -> CycleReport:
        """Run one cycle in response to an inbound trigger message."""
        logger.info("trigger_invoked", triggered_at=command.triggered_at.isoformat())
        return await self.run_cycle()

    def trigger(self) -> asyncio.Task:  # type: ignore[type-arg]
        """Schedule one cycle in the background and return its task."""
        task = asyncio.create_task(self.run_cycle())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def start(self) -> None:
        """Run cycles every cycle_interval seconds until stop() is called."""
        logger.info("scheduler_starting", interval_seconds=self._cycle_interval)
        self._running = True
        try:
            await self._run_loop()
        finally:
            logger.info("scheduler_stopped")

    async def stop(self) -> None:
        """Stop the scheduled loop and cancel cycles started by trigger().

        Returns once every background cycle has finished, so collaborators
        can be closed safely afterwards.
        """
        logger.info("scheduler_stopping", background_cycles=len(self._background))
        self._running = False
        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
                await asyncio.sleep(self._cycle_interval)
            except asyncio.CancelledError:
                break

    # ──────────────────────────────────────────────
    # Cycle
    # ──────────────────────────────────────────────

    async def run_cycle(self) -> CycleReport:
        """Run exactly one ingestion cycle. Never raises (except on cancellation)."""
        async with self._cycle_lock:
            report = CycleReport(started_at=self._clock())
            logger.info("ingestion_cycle_started", reference_currency=self._reference_currency)
            try:
                quotes = await self._feed.fetch_latest_quotes()
                report.quotes = len(quotes)
                if not quotes:
                    logger.warning("feed_returned_no_quotes")
                for quote in quotes:
                    await self._process_quote(quote, report)
            except FeedError as e:
                report.aborted = True
                report.error = str(e)
                logger.error("ingestion_cycle_aborted", error=str(e))
            except Exception as e:
                report.aborted = True
                report.error = str(e)
                logger.error("ingestion_cycle_unexpected_error", error=str(e), exc_info=True)
            finally:
                report.finished_at = self._clock()
                self._last_report = report
                self._cycles_run += 1
                logger.info(
                    "ingestion_cycle_completed",
                    quotes=report.quotes,
                    created=report.created,
                    updated=report.updated,
                    stale=report.stale,
                    skipped=report.skipped,
                    failed=report.failed,
                    notified=report.notified,
                    aborted=report.aborted,
                )
        return report

    async def _process_quote(self, quote: Quote, report: CycleReport) -> None:
        price = quote.price_in(self._reference_currency)
        if price is None:
            report.skipped += 1
            logger.warning(
                "quote_missing_reference_price",
                symbol=quote.symbol,
                currency=self._reference_currency,
            )
            return

        bind_symbol(normalize_symbol(quote.symbol))
        try:
            result = await self._ingest(quote, price, report)
            if result is not None:
                await self._report_variation(result, report)
        finally:
            unbind_symbol()

    async def _ingest(
        self, quote: Quote, price: Decimal, report: CycleReport
    ) -> VariationCheckResult | None:
        """Load, mutate, persist and detect inside one unit of work.

        Returns the variation result after a successful commit, or None when
        the quote was stale or failed.
        """
        try:
            uow = await self._store.begin(quote.symbol)
        except RatesError as e:
            report.failed += 1
            logger.error("unit_of_work_begin_failed", error=str(e))
            return None

        try:
            rate = Money(price, self._reference_currency)
            instrument = await self._store.get_by_symbol(uow, quote.symbol)

            if instrument is None:
                instrument = Instrument.create(
                    quote.symbol, quote.name, rate, quote.observed_at
                )
                await self._store.insert(uow, instrument)
                action = "created"
            elif ensure_utc(quote.observed_at) > instrument.last_updated:
                instrument.accept_update(
                    rate,
                    quote.observed_at,
                    now=self._clock(),
                    retention=self._retention,
                )
                await self._store.update(uow, instrument)
                action = "updated"
            else:
                report.stale += 1
                logger.info(
                    "instrument_not_newer",
                    observed_at=ensure_utc(quote.observed_at).isoformat(),
                    last_updated=instrument.last_updated.isoformat(),
                )
                return None

            result = self._detector.check(instrument)
            await uow.commit()
        except CurrencyMismatch as e:
            report.failed += 1
            logger.error("currency_mismatch_anomaly", error=str(e))
            return None
        except Exception as e:
            report.failed += 1
            logger.error("instrument_processing_failed", error=str(e), exc_info=True)
            return None
        finally:
            # No-op after commit; releases the write lock on any other exit, cancellation included
            await uow.rollback()

        if action == "created":
            report.created += 1
        else:
            report.updated += 1
        logger.info(
            f"instrument_{action}",
            rate=str(instrument.current_rate.amount),
            currency=instrument.current_rate.currency,
            samples=len(instrument.history),
        )
        return result

    async def _report_variation(
        self, result: VariationCheckResult, report: CycleReport
    ) -> None:
        if not result.is_significant:
            logger.info(
                "no_significant_variation",
                percentage_change=str(result.percentage_change),
            )
            return

        report.significant += 1
        logger.warning(
            "significant_variation",
            percentage_change=str(result.percentage_change),
            oldest_rate=(
                str(result.oldest_rate_in_window.amount)
                if result.oldest_rate_in_window
                else None
            ),
            current_rate=str(result.current_rate.amount),
        )
        try:
            await self._notifier.publish(result.symbol, result.current_rate)
            report.notified += 1
        except Exception as e:
            report.notify_failed += 1
            logger.error("rate_change_notification_failed", error=str(e))

    # ──────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────

    @property
    def detector(self) -> VariationDetector:
        return self._detector

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def get_status(self) -> dict:
        """Scheduler state and the most recent cycle report."""
        return {
            "scheduler_running": self._running,
            "cycle_in_progress": self._cycle_lock.locked(),
            "cycles_run": self._cycles_run,
            "reference_currency": self._reference_currency,
            "threshold": str(self._detector.threshold),
            "lookback_hours": self._detector.lookback.total_seconds() / 3600,
            "last_cycle": self._last_report.to_dict() if self._last_report else None,
        }
