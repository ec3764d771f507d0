"""Upstream price feeds -- CoinMarketCap listings and ccxt exchange tickers."""

from rates.feed.client import QuoteFeed
from rates.feed.coinmarketcap import CoinMarketCapFeed
from rates.feed.exchange import ExchangeTickerFeed
from rates.feed.types import Quote

__all__ = ["CoinMarketCapFeed", "ExchangeTickerFeed", "Quote", "QuoteFeed"]
