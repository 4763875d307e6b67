"""
Real-time messaging service for UrbanWatch.

Publishes events to Redis pub/sub channels for WebSocket/dashboard
delivery.

Channel structure:
- purok-leader:{leader_id}  - New assignments for one purok leader
- users:{user_id}           - Status updates for one citizen
- accidents:live            - Detected accidents, false alarms and accident status changes
"""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from urbanwatch.config import get_logger

logger = get_logger(__name__)

# Channel names
CHANNEL_PUROK_LEADER_PREFIX = "purok-leader:"
CHANNEL_USER_PREFIX = "users:"
CHANNEL_ACCIDENTS = "accidents:live"


def _serialize(data: dict[str, Any]) -> str:
    """Serialize a message dict to JSON string."""
    return json.dumps(data, ensure_ascii=False, default=str)


def purok_leader_channel(leader_id: str | UUID) -> str:
    return f"{CHANNEL_PUROK_LEADER_PREFIX}{leader_id}"


def user_channel(user_id: str | UUID) -> str:
    return f"{CHANNEL_USER_PREFIX}{user_id}"


class RealtimeService:
    """
    Publishes real-time events to Redis pub/sub channels.

    Unlike a fire-and-forget broadcaster, publish errors propagate so the
    notification dispatcher can retry them.
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def publish(
        self,
        channel: str,
        message_type: str,
        data: dict[str, Any],
    ) -> int:
        """
        Publish one message to a channel.

        Args:
            channel: Target pub/sub channel.
            message_type: Event name understood by the client
                (concern.assigned, concern.status.updated, ...).
            data: Message payload.

        Returns:
            Number of subscribers that received the message.
        """
        message = _serialize({
            "type": message_type,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
        })
        count = await self._redis.publish(channel, message)
        logger.debug(
            "Published realtime message",
            channel=channel,
            message_type=message_type,
            subscribers=count,
        )
        return count

    async def publish_to_purok_leader(
        self,
        leader_id: str | UUID,
        message_type: str,
        data: dict[str, Any],
    ) -> int:
        """Publish to a purok leader's private channel."""
        return await self.publish(purok_leader_channel(leader_id), message_type, data)

    async def publish_to_user(
        self,
        user_id: str | UUID,
        message_type: str,
        data: dict[str, Any],
    ) -> int:
        """Publish to a citizen's private channel."""
        return await self.publish(user_channel(user_id), message_type, data)

    async def publish_accident_feed(
        self,
        message_type: str,
        data: dict[str, Any],
    ) -> int:
        """Publish to the operators' live accident feed."""
        return await self.publish(CHANNEL_ACCIDENTS, message_type, data)
