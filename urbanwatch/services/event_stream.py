"""
Redis Stream transport for domain events.

The API process appends committed events to a stream; notification
workers read them through a consumer group, so every event is delivered
at least once and pending entries survive worker restarts.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis

from urbanwatch.config import get_logger, get_settings
from urbanwatch.services.events import DomainEvent, event_from_payload, event_to_payload

logger = get_logger(__name__)

# Stream and consumer group names
EVENTS_STREAM = "urbanwatch:events"
CONSUMER_GROUP = "urbanwatch:notifiers"
STREAM_MAXLEN = 10000

# Redis client singleton
_redis_client: aioredis.Redis | None = None


async def get_redis_client() -> aioredis.Redis:
    """Get or create the Redis client singleton."""
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url.get_secret_value(),
            encoding="utf-8",
            decode_responses=True,
        )

    return _redis_client


async def close_redis_client() -> None:
    """Close the Redis client if we own it."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def encode_event(event: DomainEvent) -> dict[str, str]:
    """Flatten an event into stream entry fields."""
    return {
        "event": event.name,
        "payload": json.dumps(event_to_payload(event), ensure_ascii=False, default=str),
        "emitted_at": datetime.now(UTC).isoformat(),
    }


def decode_event(data: dict[str, str]) -> DomainEvent:
    """
    Rebuild an event from stream entry fields.

    Raises:
        KeyError: If the entry is missing fields or names an unknown event.
        ValueError: If the payload is not valid JSON.
    """
    return event_from_payload(data["event"], json.loads(data["payload"]))


class RedisEventPublisher:
    """Publishes domain events by appending them to the events stream."""

    def __init__(self, redis_client: aioredis.Redis, stream: str = EVENTS_STREAM) -> None:
        self._redis = redis_client
        self._stream = stream

    async def publish(self, event: DomainEvent) -> None:
        entry_id = await self._redis.xadd(
            self._stream,
            encode_event(event),
            maxlen=STREAM_MAXLEN,
        )
        logger.debug("Queued domain event", event_name=event.name, entry_id=entry_id)


async def ensure_consumer_group() -> None:
    """Create the stream and consumer group if they don't exist."""
    client = await get_redis_client()

    try:
        await client.xgroup_create(
            EVENTS_STREAM,
            CONSUMER_GROUP,
            id="0",
            mkstream=True,
        )
        logger.info(
            "Created consumer group",
            stream=EVENTS_STREAM,
            group=CONSUMER_GROUP,
        )
    except aioredis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


async def consume_events(
    consumer_name: str,
    batch_size: int = 10,
    block_ms: int = 5000,
) -> AsyncGenerator[tuple[str, DomainEvent | None], None]:
    """
    Consume events from the stream using the consumer group.

    Pending (delivered but unacknowledged) entries are replayed before new
    ones. Entries that cannot be decoded are yielded as (entry_id, None)
    so the caller can acknowledge and drop them.

    Yields:
        Tuple of (entry_id, event or None)
    """
    client = await get_redis_client()
    await ensure_consumer_group()

    logger.info(
        "Starting event consumer",
        consumer=consumer_name,
        group=CONSUMER_GROUP,
        stream=EVENTS_STREAM,
    )

    while True:
        try:
            pending = await client.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=consumer_name,
                streams={EVENTS_STREAM: "0"},
                count=batch_size,
                block=None,
            )
            new_entries = []
            if not _has_entries(pending):
                new_entries = await client.xreadgroup(
                    groupname=CONSUMER_GROUP,
                    consumername=consumer_name,
                    streams={EVENTS_STREAM: ">"},
                    count=batch_size,
                    block=block_ms,
                )

            for _stream_name, entries in (pending or []) + (new_entries or []):
                for entry_id, data in entries:
                    if not data:
                        # Trimmed from the stream while pending
                        yield entry_id, None
                        continue
                    try:
                        yield entry_id, decode_event(data)
                    except (KeyError, TypeError, ValueError) as e:
                        logger.error(
                            "Undecodable event entry",
                            entry_id=entry_id,
                            error=str(e),
                        )
                        yield entry_id, None

        except aioredis.ConnectionError as e:
            logger.error("Redis connection error in consumer", error=str(e))
            await asyncio.sleep(1)


def _has_entries(response: Any) -> bool:
    return any(entries for _stream_name, entries in (response or []))


async def acknowledge_event(entry_id: str) -> bool:
    """
    Acknowledge an event after its handlers ran.

    Returns:
        True if acknowledged, False if already acknowledged
    """
    client = await get_redis_client()
    result = await client.xack(EVENTS_STREAM, CONSUMER_GROUP, entry_id)
    if result:
        logger.debug("Acknowledged event", entry_id=entry_id)
    return result > 0


async def get_queue_stats() -> dict[str, Any]:
    """Get statistics about the events stream."""
    client = await get_redis_client()

    try:
        stream_length = await client.xlen(EVENTS_STREAM)
        pending_info = await client.xpending(EVENTS_STREAM, CONSUMER_GROUP)
        consumers = await client.xinfo_consumers(EVENTS_STREAM, CONSUMER_GROUP)

        return {
            "stream_length": stream_length,
            "pending_count": pending_info.get("pending", 0) if pending_info else 0,
            "consumer_count": len(consumers) if consumers else 0,
        }
    except aioredis.ResponseError:
        # Stream or group might not exist yet
        return {
            "stream_length": 0,
            "pending_count": 0,
            "consumer_count": 0,
        }
    except Exception as e:
        logger.error("Error getting queue stats", error=str(e))
        return {"error": str(e)}
