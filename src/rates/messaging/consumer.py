"""Trigger consumer -- runs one ingestion cycle per message on a Redis stream.

Reads through a consumer group one entry at a time, so at most one cycle
is driven by this consumer at once. Outcomes per entry:
  - decoded and handled: XACK
  - undecodable: copied to the dead-letter stream, then XACK
  - handler raised: left pending; re-read from the pending list after
    retry_interval seconds (and on the next start())
"""

import asyncio
import os
import socket
from collections.abc import Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from rates.exceptions import TriggerDecodeError
from rates.logging import get_logger
from rates.messaging.models import FetchRatesCommand

logger = get_logger(__name__)

PENDING_BATCH = 100

TriggerHandler = Callable[[FetchRatesCommand], Awaitable[object]]


async def publish_trigger(
    redis: Redis, stream: str, command: FetchRatesCommand | None = None, maxlen: int = 10000
) -> str:
    """Enqueue a FetchRatesCommand on the trigger stream. Returns the entry id."""
    command = command or FetchRatesCommand()
    message_id = await redis.xadd(
        stream, {"data": command.to_json()}, maxlen=maxlen, approximate=True
    )
    logger.info("trigger_published", stream=stream, message_id=message_id)
    return message_id


class TriggerConsumer:
    """Consumes FetchRatesCommand entries and invokes the handler for each.

    Args:
        redis: Async Redis client (decode_responses=True).
        handler: Coroutine run once per decoded trigger.
        stream: Trigger stream name.
        group: Consumer group name.
        dead_letter_stream: Where undecodable entries are copied.
        consumer_name: Defaults to "<hostname>-<pid>".
        block_ms: XREADGROUP block timeout.
        error_backoff: Seconds to wait after a transport error.
        retry_interval: Seconds before entries whose handler failed are re-read.
    """

    def __init__(
        self,
        redis: Redis,
        handler: TriggerHandler,
        stream: str,
        group: str,
        dead_letter_stream: str,
        consumer_name: str | None = None,
        block_ms: int = 2000,
        error_backoff: float = 5.0,
        retry_interval: float = 30.0,
    ) -> None:
        self._redis = redis
        self._handler = handler
        self._stream = stream
        self._group = group
        self._dead_letter_stream = dead_letter_stream
        self._consumer_name = consumer_name or f"{socket.gethostname()}-{os.getpid()}"
        self._block_ms = block_ms
        self._error_backoff = error_backoff
        self._retry_interval = retry_interval
        self._retry_at: float | None = None
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Create the consumer group if needed, drain pending entries, then consume in the background."""
        if self._running:
            logger.warning("trigger_consumer_already_running")
            return
        await self.ensure_group()
        await self.poll_once(pending=True)
        self._running = True
        self._task = asyncio.create_task(self._consume_loop())
        logger.info(
            "trigger_consumer_started",
            stream=self._stream,
            group=self._group,
            consumer=self._consumer_name,
        )

    async def stop(self) -> None:
        """Stop consuming gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("trigger_consumer_stopped", stream=self._stream)

    async def ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(
                self._stream, self._group, id="0", mkstream=True
            )
            logger.info("trigger_group_created", stream=self._stream, group=self._group)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def _consume_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                if self._retry_at is not None and loop.time() >= self._retry_at:
                    self._retry_at = None
                    await self.poll_once(pending=True)
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("trigger_consumer_poll_error", exc_info=True)
                await asyncio.sleep(self._error_backoff)

    async def poll_once(self, pending: bool = False) -> int:
        """Read and process at most one new entry.

        With pending=True, re-reads up to PENDING_BATCH of this consumer's
        unacknowledged entries instead of new ones. Returns the number of
        entries processed.
        """
        response = await self._redis.xreadgroup(
            self._group,
            self._consumer_name,
            {self._stream: "0" if pending else ">"},
            count=PENDING_BATCH if pending else 1,
            block=None if pending else self._block_ms,
        )
        processed = 0
        for _stream, entries in response or []:
            for message_id, fields in entries:
                await self._process_entry(message_id, fields or {})
                processed += 1
        return processed

    async def _process_entry(self, message_id: str, fields: dict) -> None:
        raw = fields.get("data")
        logger.info("trigger_received", message_id=message_id, stream=self._stream)

        try:
            command = FetchRatesCommand.decode(raw)
        except TriggerDecodeError as e:
            logger.error(
                "trigger_decode_failed",
                message_id=message_id,
                body=raw,
                error=str(e),
            )
            await self._redis.xadd(
                self._dead_letter_stream,
                {
                    "data": raw if raw is not None else "",
                    "reason": "DeserializationFailed",
                    "error": str(e),
                    "source_id": message_id,
                },
            )
            await self._redis.xack(self._stream, self._group, message_id)
            return

        try:
            await self._handler(command)
        except Exception:
            logger.error(
                "trigger_handler_failed",
                message_id=message_id,
                triggered_at=command.triggered_at.isoformat(),
                exc_info=True,
            )
            if self._retry_at is None:
                self._retry_at = asyncio.get_running_loop().time() + self._retry_interval
            return

        await self._redis.xack(self._stream, self._group, message_id)
        logger.info("trigger_completed", message_id=message_id)
