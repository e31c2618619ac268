"""Tests for the source adapters and the session that wires them."""

import asyncio
from datetime import datetime, timezone

import pytest

from packages.sms_ingestion.config import IngestionConfig
from packages.sms_ingestion.dedup import TRANSACTIONS_TABLE
from packages.sms_ingestion.models import OutcomeStatus, RawMessage
from packages.sms_ingestion.session import IngestionSession
from packages.sms_ingestion.sources import InMemoryMessageSource

CREDIT_SMS = "M-PESA: You have received KES 1,250.00 from John Doe Ref ABC123 on 12/09/2025"
DEBIT_SMS = "M-PESA: Ksh 100.00 sent to Jane Roe Ref XYZ1 on 01/10/2025 at 10:15 AM"

FAST = IngestionConfig(poll_interval_seconds=0.01, background_min_interval_seconds=900)


def _msg(body, minute):
    return RawMessage(body, datetime(2025, 10, 1, 10, minute, tzinfo=timezone.utc), "MPESA")


def _inserted(gateway):
    return [row for table, row in gateway.insert_calls if table == TRANSACTIONS_TABLE]


@pytest.fixture
def source():
    return InMemoryMessageSource()


@pytest.fixture
def session(source, gateway, clock):
    return IngestionSession("u-1", source, gateway, config=FAST, clock=clock)


class TestListener:
    @pytest.mark.asyncio
    async def test_delivered_message_is_ingested(self, session, source, gateway):
        await session.start(catchup=False)
        assert session.listener.active
        assert not session.poller.active

        source.deliver(_msg(CREDIT_SMS, 1))
        await session.listener.drain()

        assert len(gateway.rows(TRANSACTIONS_TABLE)) == 1
        await session.stop()
        assert source.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_callback_from_another_thread(self, session, source, gateway):
        await session.start(catchup=False)

        await asyncio.get_running_loop().run_in_executor(None, source.deliver, _msg(CREDIT_SMS, 1))
        await asyncio.sleep(0)
        await session.listener.drain()

        assert len(gateway.rows(TRANSACTIONS_TABLE)) == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_disabled_ingestion_ignores_messages(self, source, gateway, clock):
        session = IngestionSession("u-1", source, gateway, config=FAST, clock=clock, is_enabled=lambda: False)
        await session.start(catchup=False)

        source.deliver(_msg(CREDIT_SMS, 1))
        await session.listener.drain()

        assert gateway.insert_calls == []
        await session.stop()


class TestPoller:
    @pytest.mark.asyncio
    async def test_poll_loop_ingests_inbox(self, session, source, gateway):
        source.store(_msg(CREDIT_SMS, 1))
        await session.start(catchup=False, poll=True, listen=False)

        for _ in range(100):
            if gateway.rows(TRANSACTIONS_TABLE):
                break
            await asyncio.sleep(0.01)
        await session.stop()

        assert len(gateway.rows(TRANSACTIONS_TABLE)) == 1
        assert not session.poller.active

    @pytest.mark.asyncio
    async def test_listener_and_poller_race_persists_once(self, session, source, gateway):
        await session.start(catchup=False)

        source.deliver(_msg(CREDIT_SMS, 1))
        summary = await session.poller.scan(max_count=FAST.poll_batch_size)
        await session.listener.drain()

        assert summary.scanned == 1
        assert len(_inserted(gateway)) == 1
        await session.stop()


class TestScans:
    @pytest.mark.asyncio
    async def test_background_scan_respects_watermark(self, session, source, gateway):
        await session.ingest(_msg(DEBIT_SMS, 30))
        source.store(_msg(CREDIT_SMS, 1))

        summary = await session.run_background_scan()

        assert summary.scanned == 0
        assert len(_inserted(gateway)) == 1

    @pytest.mark.asyncio
    async def test_background_scan_minimum_interval(self, session, source, clock):
        source.store(_msg(CREDIT_SMS, 1))

        first = await session.run_background_scan()
        skipped = await session.run_background_scan()
        clock.advance(900)
        third = await session.run_background_scan()

        assert first.count(OutcomeStatus.INSERTED) == 1
        assert skipped is None
        assert third is not None

    @pytest.mark.asyncio
    async def test_manual_catchup_ignores_watermark(self, session, source, gateway):
        await session.ingest(_msg(DEBIT_SMS, 30))
        source.store(_msg(CREDIT_SMS, 1))

        summary = await session.run_catchup()

        assert summary.scanned == 1
        assert summary.count(OutcomeStatus.INSERTED) == 1
        assert len(_inserted(gateway)) == 2

    @pytest.mark.asyncio
    async def test_start_runs_catchup(self, session, source, gateway):
        source.store(_msg(CREDIT_SMS, 1))
        source.store(_msg(DEBIT_SMS, 2))

        await session.start()

        assert len(gateway.rows(TRANSACTIONS_TABLE)) == 2
        assert session.last_seen_at == _msg(DEBIT_SMS, 2).timestamp_ms
        await session.stop()


class TestPermission:
    @pytest.mark.asyncio
    async def test_denied_permission_disables_adapters_without_raising(self, gateway, clock):
        source = InMemoryMessageSource(permission_granted=False)
        session = IngestionSession("u-1", source, gateway, config=FAST, clock=clock)

        await session.start()
        await asyncio.sleep(0.05)

        assert not session.listener.available
        assert session.listener.disabled_reason == "Message read permission not granted"
        assert not session.catchup.available
        assert not session.poller.available
        await session.stop()

    @pytest.mark.asyncio
    async def test_manual_catchup_retries_after_grant(self, gateway, clock):
        source = InMemoryMessageSource(permission_granted=False)
        source.store(_msg(CREDIT_SMS, 1))
        session = IngestionSession("u-1", source, gateway, config=FAST, clock=clock)

        await session.run_catchup()
        assert not session.catchup.available

        source.permission_granted = True
        summary = await session.run_catchup()

        assert session.catchup.available
        assert summary.count(OutcomeStatus.INSERTED) == 1
