"""
Live Event Publishing

Best-effort, at-most-once real-time notifications over Redis pub/sub.

Channels:
- user:{user_id}        events addressed to a single user (e.g. bg_chat_created)
- bg-chat:{chat_id}     events for everyone viewing a chat (e.g. bg_message)

A websocket gateway subscribes to these channels and forwards events to
connected clients. Publishing never raises: durability of chats and messages
is guaranteed by the database, not by delivery of these events.
"""

import json
import logging
from typing import Any

from app.core import redis as redis_module

logger = logging.getLogger(__name__)


def user_channel(user_id: object) -> str:
    return f"user:{user_id}"


def chat_channel(chat_id: object) -> str:
    return f"bg-chat:{chat_id}"


async def publish_event(channel: str, event: str, data: dict[str, Any]) -> bool:
    """
    Publish an event to a Redis channel.

    Args:
        channel: Target channel name
        event: Event name (e.g. "bg_message")
        data: JSON-serialisable payload

    Returns:
        True if the event was handed to Redis, False otherwise
    """
    client = redis_module.redis_client
    if client is None:
        logger.debug(f"Redis unavailable, dropping live event {event} for {channel}")
        return False

    try:
        message = json.dumps({"event": event, "data": data}, default=str)
        await client.publish(channel, message)
        return True
    except Exception as e:
        logger.error(f"Failed to publish live event {event} to {channel}: {e}")
        return False
