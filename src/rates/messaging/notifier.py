"""Rate change notification publishing.

The orchestrator depends on the Notifier ABC only. RedisStreamNotifier
appends a RateChangeMessage to a Redis stream, capped with MAXLEN so the
stream never grows without bound. Delivery guarantees beyond the XADD
belong to the stream's consumers.
"""

from abc import ABC, abstractmethod

from redis.asyncio import Redis
from redis.exceptions import RedisError

from rates.domain.clock import Clock, utc_now
from rates.domain.money import Money
from rates.exceptions import NotificationError
from rates.logging import get_logger
from rates.messaging.models import RateChangeMessage

logger = get_logger(__name__)


class Notifier(ABC):
    """Publishes significant rate changes to downstream consumers."""

    @abstractmethod
    async def publish(self, symbol: str, rate: Money) -> None:
        """Publish the new current rate for symbol.

        Raises:
            NotificationError: The message could not be handed to the transport.
        """
        ...


class RedisStreamNotifier(Notifier):
    """Notifier that XADDs rate change messages to a Redis stream.

    Args:
        redis: Async Redis client (decode_responses=True).
        stream: Target stream name.
        maxlen: Approximate stream length cap.
        clock: Source of the message timestamp.
    """

    def __init__(
        self,
        redis: Redis,
        stream: str,
        maxlen: int = 10000,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen
        self._clock = clock

    async def publish(self, symbol: str, rate: Money) -> None:
        message = RateChangeMessage(
            instrument_symbol=symbol,
            current_rate_amount=rate.amount,
            currency=rate.currency,
            timestamp=self._clock(),
        )
        payload = message.to_json()

        try:
            message_id = await self._redis.xadd(
                self._stream,
                {"data": payload},
                maxlen=self._maxlen,
                approximate=True,
            )
        except RedisError as e:
            logger.warning(
                "rate_change_publish_failed",
                symbol=symbol,
                stream=self._stream,
                error=str(e),
            )
            raise NotificationError(f"Failed to publish rate change for {symbol}: {e}") from e

        logger.info(
            "rate_change_published",
            symbol=symbol,
            stream=self._stream,
            message_id=message_id,
        )
        logger.debug("rate_change_payload", payload=payload)
