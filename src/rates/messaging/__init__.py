"""Redis Streams messaging -- rate change notifications and ingestion triggers."""

from rates.messaging.consumer import TriggerConsumer, publish_trigger
from rates.messaging.models import FetchRatesCommand, RateChangeMessage
from rates.messaging.notifier import Notifier, RedisStreamNotifier

__all__ = [
    "FetchRatesCommand",
    "Notifier",
    "RateChangeMessage",
    "RedisStreamNotifier",
    "TriggerConsumer",
    "publish_trigger",
]
