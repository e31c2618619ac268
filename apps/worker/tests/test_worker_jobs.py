"""Tests for the long-running SMS ingestion worker."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from apps.worker import main
from packages.sms_ingestion.config import IngestionConfig
from packages.sms_ingestion.dedup import TRANSACTIONS_TABLE
from packages.sms_ingestion.errors import SourceUnavailable
from packages.sms_ingestion.gateway import InMemoryGateway
from packages.sms_ingestion.models import RawMessage
from packages.sms_ingestion.session import IngestionSession
from packages.sms_ingestion.sources import InMemoryMessageSource

CREDIT_SMS = "M-PESA: You have received KES 1,250.00 from John Doe Ref ABC123 on 12/09/2025"


class Inboxes:
    """Per-user in-memory sources standing in for the Redis inbox."""

    def __init__(self):
        self.sources = {}

    def build(self, settings, user_id, gateway, client=None):
        source = self.sources.setdefault(user_id, InMemoryMessageSource())
        return IngestionSession(user_id, source, gateway, config=IngestionConfig())


@pytest.fixture
def inboxes():
    inboxes = Inboxes()
    with patch.object(main, "build_shared_session", side_effect=inboxes.build):
        yield inboxes


@pytest.mark.asyncio
async def test_sync_sessions_starts_new_users_once(inboxes):
    gateway = InMemoryGateway()
    sessions = {}
    with patch.object(main, "registered_users", return_value=["u-1", "u-2"]):
        first = await main.sync_sessions(MagicMock(), MagicMock(), gateway, sessions)
        second = await main.sync_sessions(MagicMock(), MagicMock(), gateway, sessions)

    assert (first, second) == (2, 0)
    assert sorted(sessions) == ["u-1", "u-2"]
    assert sessions["u-1"].listener.active
    assert sessions["u-1"].poller.active
    for session in sessions.values():
        await session.stop()


@pytest.mark.asyncio
async def test_sync_sessions_survives_redis_outage(inboxes):
    sessions = {}
    with patch.object(main, "registered_users", side_effect=SourceUnavailable("Redis unreachable")):
        started = await main.sync_sessions(MagicMock(), MagicMock(), InMemoryGateway(), sessions)

    assert started == 0
    assert sessions == {}


@pytest.mark.asyncio
async def test_run_worker_catches_up_then_stops(inboxes):
    gateway = InMemoryGateway()
    inboxes.sources["u-1"] = InMemoryMessageSource()
    inboxes.sources["u-1"].store(
        RawMessage(CREDIT_SMS, datetime(2025, 10, 1, 10, 0, tzinfo=timezone.utc), "MPESA")
    )
    stop_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, stop_event.set)

    with patch.object(main, "registered_users", return_value=["u-1"]):
        sessions = await main.run_worker(
            MagicMock(), stop_event, client=MagicMock(), gateway=gateway, refresh_seconds=0.01
        )

    assert list(sessions) == ["u-1"]
    assert len(gateway.rows(TRANSACTIONS_TABLE)) == 1
    assert not sessions["u-1"].listener.active
    assert not sessions["u-1"].poller.active
    assert inboxes.sources["u-1"].subscriber_count == 0
