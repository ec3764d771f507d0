"""CoinMarketCap listings feed.

Polls the Pro API "latest listings" endpoint and maps each listing to a
Quote. Uses urllib.request (stdlib) run in a worker thread so the event
loop is never blocked.

Transport errors, non-2xx responses and undecodable bodies abort the batch
with FeedError. Individual listings with unparseable fields are dropped
with a warning so one bad entry does not discard the rest of the batch.
"""

import asyncio
import json
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime
from decimal import Decimal, InvalidOperation

from rates.config import CoinMarketCapSettings
from rates.domain.clock import ensure_utc
from rates.exceptions import FeedError
from rates.feed.client import QuoteFeed
from rates.feed.types import Quote
from rates.logging import get_logger

logger = get_logger(__name__)

LISTINGS_PATH = "cryptocurrency/listings/latest"


def _parse_timestamp(raw: str) -> datetime:
    # CoinMarketCap uses "2024-05-01T12:00:00.000Z"
    return ensure_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def parse_listing(entry: dict) -> Quote:
    """Map one listings entry to a Quote.

    Currencies whose price is null are left out of Quote.prices.

    Raises:
        KeyError, TypeError, ValueError, InvalidOperation: malformed entry.
    """
    prices: dict[str, Decimal] = {}
    for currency, quote in (entry.get("quote") or {}).items():
        if not quote or quote.get("price") is None:
            continue
        prices[currency.upper()] = Decimal(str(quote["price"]))

    return Quote(
        symbol=str(entry["symbol"]),
        name=str(entry["name"]),
        observed_at=_parse_timestamp(entry["last_updated"]),
        prices=prices,
    )


class CoinMarketCapFeed(QuoteFeed):
    """Quote feed backed by the CoinMarketCap Pro API.

    Args:
        settings: API key and base URL.
        convert: Currency requested in each listing's quote block.
        limit: Number of listings per batch.
        timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        settings: CoinMarketCapSettings,
        convert: str = "USD",
        limit: int = 100,
        timeout: float = 10.0,
    ) -> None:
        self._settings = settings
        self._convert = convert.upper()
        self._limit = limit
        self._timeout = timeout

    async def connect(self) -> None:
        if not self._settings.api_key.get_secret_value():
            logger.warning(
                "no_coinmarketcap_api_key",
                note="Requests will be rejected by the Pro API.",
            )
        logger.info("coinmarketcap_feed_ready", base_url=self._settings.base_url)

    async def close(self) -> None:
        logger.info("coinmarketcap_feed_closed")

    async def fetch_latest_quotes(self) -> list[Quote]:
        payload = await asyncio.to_thread(self._get_listings)
        return self._parse_listings(payload)

    def _listings_url(self) -> str:
        base = self._settings.base_url
        if not base.endswith("/"):
            base += "/"
        query = urllib.parse.urlencode({"convert": self._convert, "limit": self._limit})
        return f"{urllib.parse.urljoin(base, LISTINGS_PATH)}?{query}"

    def _get_listings(self) -> dict:
        """Blocking GET of the listings endpoint. Runs in a worker thread."""
        headers = {
            "Accept": "application/json",
            "User-Agent": "RatesService/1.0",
            "X-CMC_PRO_API_KEY": self._settings.api_key.get_secret_value(),
        }
        req = urllib.request.Request(self._listings_url(), headers=headers)

        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise FeedError(f"CoinMarketCap returned HTTP {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            raise FeedError(f"CoinMarketCap request failed: {e}") from e

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FeedError(f"CoinMarketCap returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise FeedError("CoinMarketCap response is not a JSON object")

        status = payload.get("status") or {}
        if status.get("error_code"):
            raise FeedError(
                f"CoinMarketCap error {status['error_code']}: {status.get('error_message')}"
            )
        return payload

    def _parse_listings(self, payload: dict) -> list[Quote]:
        data = payload.get("data")
        if not data:
            logger.warning("coinmarketcap_no_data")
            return []
        if not isinstance(data, list):
            raise FeedError("CoinMarketCap 'data' is not a list")

        quotes: list[Quote] = []
        for entry in data:
            try:
                quotes.append(parse_listing(entry))
            except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as e:
                logger.warning(
                    "invalid_listing_entry",
                    symbol=entry.get("symbol") if isinstance(entry, dict) else None,
                    error=str(e),
                )

        logger.debug("coinmarketcap_listings_parsed", count=len(quotes))
        return quotes
