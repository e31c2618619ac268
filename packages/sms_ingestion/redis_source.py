"""Message source backed by Redis, shared by the API and the Celery worker.

Each user's inbox is a capped Redis list (newest at the head) and the live
feed is a pub/sub channel. Anything pushed through ``deliver`` is visible
both to listeners and to later inbox scans, from any process.
"""

import asyncio
import json
from datetime import datetime
from typing import List, Optional, Union

import redis
import structlog

from .errors import SourceUnavailable
from .models import RawMessage
from .sources import MessageCallback, MessageSource, Subscription

logger = structlog.get_logger()

USERS_KEY = "sms:users"
DEFAULT_MAX_INBOX = 500


def inbox_key(user_id: str) -> str:
    return f"sms:inbox:{user_id}"


def feed_channel(user_id: str) -> str:
    return f"sms:feed:{user_id}"


def encode_message(message: RawMessage) -> str:
    return json.dumps(
        {
            "body": message.body,
            "captured_at": message.captured_at.isoformat() if message.captured_at else None,
            "originator": message.originator,
        }
    )


def decode_message(payload: Union[str, bytes]) -> RawMessage:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    data = json.loads(payload)
    captured = data.get("captured_at")
    return RawMessage(
        body=data.get("body", ""),
        captured_at=datetime.fromisoformat(captured) if captured else None,
        originator=data.get("originator"),
    )


def registered_users(client: redis.Redis) -> List[str]:
    """User ids that have ever stored a message."""
    try:
        members = client.smembers(USERS_KEY)
    except redis.RedisError as e:
        raise SourceUnavailable(f"Redis unavailable: {e}") from e
    return sorted(m.decode("utf-8") if isinstance(m, bytes) else str(m) for m in members)


class RedisMessageSource(MessageSource):
    """Inbox and live feed for one user."""

    def __init__(
        self,
        client: redis.Redis,
        user_id: str,
        max_inbox: int = DEFAULT_MAX_INBOX,
        listen_sleep_seconds: float = 0.1,
    ):
        self.client = client
        self.user_id = user_id
        self.max_inbox = max_inbox
        self.listen_sleep_seconds = listen_sleep_seconds

    def store(self, message: RawMessage) -> None:
        """Add to the inbox without broadcasting."""
        pipe = self.client.pipeline()
        pipe.lpush(inbox_key(self.user_id), encode_message(message))
        pipe.ltrim(inbox_key(self.user_id), 0, self.max_inbox - 1)
        pipe.sadd(USERS_KEY, self.user_id)
        try:
            pipe.execute()
        except redis.RedisError as e:
            raise SourceUnavailable(f"Redis unavailable: {e}") from e

    def deliver(self, message: RawMessage) -> None:
        self.store(message)
        try:
            self.client.publish(feed_channel(self.user_id), encode_message(message))
        except redis.RedisError as e:
            raise SourceUnavailable(f"Redis unavailable: {e}") from e

    def subscribe(self, callback: MessageCallback) -> Subscription:
        def _handle(event: dict) -> None:
            try:
                callback(decode_message(event["data"]))
            except Exception as e:
                logger.warning("sms_subscriber_failed", user_id=self.user_id, error=str(e))

        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(**{feed_channel(self.user_id): _handle})
            # Handlers run on this thread; the listener adapter marshals them
            thread = pubsub.run_in_thread(sleep_time=self.listen_sleep_seconds, daemon=True)
        except redis.RedisError as e:
            pubsub.close()
            raise SourceUnavailable(f"Redis feed unavailable: {e}") from e

        def _remove() -> None:
            thread.stop()
            pubsub.close()

        logger.debug("redis_feed_subscribed", user_id=self.user_id)
        return Subscription(_remove)

    async def list_recent(self, max_count: int, min_date: Optional[datetime] = None) -> List[RawMessage]:
        if max_count <= 0:
            return []
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(
                None, self.client.lrange, inbox_key(self.user_id), 0, max_count - 1
            )
        except redis.RedisError as e:
            raise SourceUnavailable(f"Redis unavailable: {e}") from e

        messages = []
        for payload in raw:
            try:
                messages.append(decode_message(payload))
            except (ValueError, KeyError) as e:
                logger.warning("redis_inbox_entry_invalid", user_id=self.user_id, error=str(e))
        if min_date is not None:
            messages = [m for m in messages if m.captured_at is None or m.captured_at > min_date]
        messages.sort(key=lambda m: m.timestamp_ms or 0, reverse=True)
        return messages
