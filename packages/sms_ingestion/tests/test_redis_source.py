from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis

from packages.sms_ingestion.errors import SourceUnavailable
from packages.sms_ingestion.models import RawMessage
from packages.sms_ingestion.redis_source import (
    USERS_KEY,
    RedisMessageSource,
    decode_message,
    encode_message,
    feed_channel,
    inbox_key,
    registered_users,
)

MESSAGE = RawMessage(
    "M-PESA: Ksh 5 sent to Ann",
    datetime(2025, 10, 1, 10, 0, tzinfo=timezone.utc),
    "MPESA",
)


def test_encode_decode():
    assert decode_message(encode_message(MESSAGE).encode("utf-8")) == MESSAGE
    assert decode_message(encode_message(RawMessage("hi"))) == RawMessage("hi")


def test_store_pushes_trims_and_registers_user():
    client = MagicMock()
    pipe = client.pipeline.return_value
    source = RedisMessageSource(client, "u-1", max_inbox=10)

    source.store(MESSAGE)

    pipe.lpush.assert_called_once_with(inbox_key("u-1"), encode_message(MESSAGE))
    pipe.ltrim.assert_called_once_with(inbox_key("u-1"), 0, 9)
    pipe.sadd.assert_called_once_with(USERS_KEY, "u-1")
    pipe.execute.assert_called_once()


def test_deliver_publishes_on_user_channel():
    client = MagicMock()
    RedisMessageSource(client, "u-1").deliver(MESSAGE)
    client.publish.assert_called_once_with(feed_channel("u-1"), encode_message(MESSAGE))


def test_store_failure_raises_source_unavailable():
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
    with pytest.raises(SourceUnavailable):
        RedisMessageSource(client, "u-1").store(MESSAGE)


@pytest.mark.asyncio
async def test_list_recent_newest_first():
    older = RawMessage("a", datetime(2025, 10, 1, 9, 0, tzinfo=timezone.utc))
    client = MagicMock()
    client.lrange.return_value = [encode_message(older).encode(), encode_message(MESSAGE).encode(), b"{bad"]

    messages = await RedisMessageSource(client, "u-1").list_recent(5)

    client.lrange.assert_called_once_with(inbox_key("u-1"), 0, 4)
    assert messages == [MESSAGE, older]


@pytest.mark.asyncio
async def test_list_recent_failure():
    client = MagicMock()
    client.lrange.side_effect = redis.ConnectionError("down")
    with pytest.raises(SourceUnavailable):
        await RedisMessageSource(client, "u-1").list_recent(5)


def test_subscribe_dispatches_and_removes():
    client = MagicMock()
    pubsub = client.pubsub.return_value
    received = []
    subscription = RedisMessageSource(client, "u-1").subscribe(received.append)

    handler = pubsub.subscribe.call_args.kwargs[feed_channel("u-1")]
    handler({"data": encode_message(MESSAGE).encode()})
    assert received == [MESSAGE]

    subscription.remove()
    pubsub.run_in_thread.return_value.stop.assert_called_once()
    pubsub.close.assert_called_once()


def test_registered_users():
    client = MagicMock()
    client.smembers.return_value = {b"u-2", b"u-1"}
    assert registered_users(client) == ["u-1", "u-2"]
