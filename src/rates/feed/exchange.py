"""Exchange ticker feed via ccxt async.

Maps unified "BASE/QUOTE" tickers to Quotes keyed by the base asset, with
the quote asset as the price currency (e.g. BTC/USDT -> BTC priced in USDT).
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import ccxt.async_support as ccxt_async

from rates.config import ExchangeSettings
from rates.exceptions import FeedError
from rates.feed.client import QuoteFeed
from rates.feed.types import Quote
from rates.logging import get_logger

logger = get_logger(__name__)


def ticker_to_quote(ticker: dict) -> Quote | None:
    """Convert a ccxt ticker dict into a Quote.

    Returns None when the ticker has no last price or no timestamp.
    """
    symbol = ticker.get("symbol") or ""
    base, _, quote_ccy = symbol.partition("/")
    # Derivative symbols carry a settle suffix: "BTC/USDT:USDT"
    quote_ccy = quote_ccy.split(":")[0]
    last = ticker.get("last")
    timestamp_ms = ticker.get("timestamp")
    if not base or not quote_ccy or last is None or timestamp_ms is None:
        return None

    return Quote(
        symbol=base,
        name=base,
        observed_at=datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc),
        prices={quote_ccy.upper(): Decimal(str(last))},
    )


class ExchangeTickerFeed(QuoteFeed):
    """Quote feed backed by any ccxt exchange's public ticker endpoint."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        exchange_class = getattr(ccxt_async, settings.id)
        self._exchange = exchange_class({"enableRateLimit": True})

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        logger.info("connecting_to_exchange", exchange=self._settings.id)
        try:
            markets = await self._exchange.load_markets()
        except ccxt_async.BaseError as e:
            raise FeedError(f"Failed to load {self._settings.id} markets: {e}") from e
        logger.info(
            "exchange_connected",
            exchange=self._settings.id,
            market_count=len(markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("exchange_connection_closed", exchange=self._settings.id)

    async def fetch_latest_quotes(self) -> list[Quote]:
        try:
            tickers = await self._exchange.fetch_tickers(self._settings.symbols)
        except ccxt_async.BaseError as e:
            raise FeedError(f"fetch_tickers failed on {self._settings.id}: {e}") from e

        quotes: list[Quote] = []
        for symbol, ticker in tickers.items():
            try:
                quote = ticker_to_quote(ticker)
            except (InvalidOperation, TypeError, ValueError) as e:
                logger.warning("invalid_ticker", symbol=symbol, error=str(e))
                continue
            if quote is None:
                logger.warning("incomplete_ticker", symbol=symbol)
                continue
            quotes.append(quote)

        logger.debug("exchange_tickers_parsed", count=len(quotes))
        return quotes
