"""Configuration system using pydantic-settings with environment variable loading."""

from datetime import timedelta
from decimal import Decimal
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeedSettings(BaseSettings):
    """Price feed selection and shared feed parameters."""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    source: Literal["coinmarketcap", "exchange"] = "coinmarketcap"
    reference_currency: str = "USD"  # quotes without a price in this currency are skipped
    timeout_seconds: float = 10.0
    listings_limit: int = 100


class CoinMarketCapSettings(BaseSettings):
    """CoinMarketCap Pro API credentials."""

    model_config = SettingsConfigDict(env_prefix="COINMARKETCAP_")

    api_key: SecretStr = SecretStr("")
    base_url: str = "https://pro-api.coinmarketcap.com/v1/"


class ExchangeSettings(BaseSettings):
    """Exchange ticker feed settings (any ccxt exchange id)."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    id: str = "bybit"
    symbols: list[str] = ["BTC/USDT", "ETH/USDT", "SOL/USDT"]


class VariationSettings(BaseSettings):
    """Variation detection and history retention parameters."""

    model_config = SettingsConfigDict(env_prefix="VARIATION_")

    threshold: Decimal = Decimal("0.05")  # 5% absolute relative change
    lookback_hours: int = 24
    retention_margin_minutes: int = 5

    @property
    def lookback(self) -> timedelta:
        return timedelta(hours=self.lookback_hours)

    @property
    def retention(self) -> timedelta:
        """History kept on each accept: lookback plus the safety margin."""
        return self.lookback + timedelta(minutes=self.retention_margin_minutes)


class StoreSettings(BaseSettings):
    """SQLite instrument store location."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/rates.db"
    seed_demo_data: bool = False


class MessagingSettings(BaseSettings):
    """Redis Streams used for rate change notifications and ingestion triggers."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    consume_triggers: bool = True
    url: str = "redis://localhost:6379/0"
    rate_change_stream: str = "rates:rate-changes"
    trigger_stream: str = "rates:fetch-triggers"
    dead_letter_stream: str = "rates:fetch-triggers:dead-letter"
    consumer_group: str = "rates-service"
    stream_maxlen: int = 10000
    block_ms: int = 2000
    retry_interval_seconds: float = 30.0  # re-read of triggers whose cycle failed
    socket_timeout: float = 5.0


class SchedulerSettings(BaseSettings):
    """Optional in-process periodic trigger."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = False
    interval_seconds: int = 300


class ApiSettings(BaseSettings):
    """HTTP control API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    feed: FeedSettings = FeedSettings()
    coinmarketcap: CoinMarketCapSettings = CoinMarketCapSettings()
    exchange: ExchangeSettings = ExchangeSettings()
    variation: VariationSettings = VariationSettings()
    store: StoreSettings = StoreSettings()
    messaging: MessagingSettings = MessagingSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    api: ApiSettings = ApiSettings()

    @model_validator(mode="after")
    def validate_exchange_reference_currency(self) -> "AppSettings":
        """Exchange quotes are priced in each pair's quote asset (BTC/USDT -> USDT).

        With FEED_SOURCE=exchange at least one configured pair must be quoted
        in FEED_REFERENCE_CURRENCY, otherwise every quote would be skipped.
        """
        if self.feed.source != "exchange":
            return self
        quoted = {
            pair.partition("/")[2].split(":")[0].upper() for pair in self.exchange.symbols
        }
        if self.feed.reference_currency.upper() not in quoted:
            raise ValueError(
                f"FEED_REFERENCE_CURRENCY={self.feed.reference_currency} matches none of "
                f"the exchange pairs {self.exchange.symbols}; "
                f"set it to one of {sorted(quoted)}"
            )
        return self
