"""Composition root for one user's ingestion.

The session owns everything that must be process-wide for a user (the dedup
guard, the category cache, adapter subscriptions) so that none of it lives in
module globals. Pass a fake clock to control TTL expiry in tests.
"""

from typing import Callable, Optional

import structlog

from .adapters import BackgroundTaskAdapter, ListenerAdapter, ManualCatchupAdapter, PollerAdapter
from .categories import CategoryResolver
from .config import IngestionConfig
from .dedup import DedupGuard, RemoteDuplicateDetector
from .gateway import PersistenceGateway
from .models import BatchSummary, Clock, IngestOutcome, RawMessage, system_clock
from .orchestrator import IngestionOrchestrator
from .parser import SmsParser
from .sources import MessageSource
from .watermark import WatermarkStore

logger = structlog.get_logger()


class IngestionSession:
    """Wires parser, guards, resolver, detector, watermark and adapters."""

    def __init__(
        self,
        user_id: str,
        source: MessageSource,
        gateway: PersistenceGateway,
        config: Optional[IngestionConfig] = None,
        clock: Clock = system_clock,
        watermarks: Optional[WatermarkStore] = None,
        parser: Optional[SmsParser] = None,
        is_enabled: Optional[Callable[[], bool]] = None,
    ):
        self.user_id = user_id
        self.config = config or IngestionConfig()
        self.source = source
        self.gateway = gateway
        self.guard = DedupGuard(ttl_seconds=self.config.dedup_ttl_seconds, clock=clock)
        self.categories = CategoryResolver(
            gateway, ttl_seconds=self.config.category_cache_ttl_seconds, clock=clock
        )
        self.detector = RemoteDuplicateDetector(
            gateway, window_seconds=self.config.duplicate_window_seconds
        )
        self.watermarks = watermarks or WatermarkStore(self.config.watermark_path)
        self.orchestrator = IngestionOrchestrator(
            user_id=user_id,
            parser=parser or SmsParser(),
            guard=self.guard,
            categories=self.categories,
            detector=self.detector,
            gateway=gateway,
            watermarks=self.watermarks,
        )

        adapter_args = (source, self.orchestrator, self.watermarks, self.config)
        self.listener = ListenerAdapter(*adapter_args, is_enabled=is_enabled)
        self.poller = PollerAdapter(*adapter_args, is_enabled=is_enabled)
        self.background = BackgroundTaskAdapter(*adapter_args, is_enabled=is_enabled, clock=clock)
        self.catchup = ManualCatchupAdapter(*adapter_args, is_enabled=is_enabled)

    async def start(self, catchup: bool = True, poll: bool = False, listen: bool = True) -> None:
        """Start ingestion.

        The listener is tried first; the poller runs when requested or when
        the live feed is unavailable. With ``listen=False`` only the scans
        requested here run.
        """
        if catchup:
            await self.catchup.start()
        if listen:
            await self.listener.start()
        if poll or (listen and not self.listener.active):
            await self.poller.start()
        logger.info(
            "ingestion_session_started",
            user_id=self.user_id,
            listener=self.listener.active,
            poller=self.poller.active,
        )

    async def stop(self) -> None:
        await self.listener.stop()
        await self.poller.stop()
        logger.info("ingestion_session_stopped", user_id=self.user_id)

    async def ingest(self, message: RawMessage, adapter: str = "direct") -> IngestOutcome:
        return await self.orchestrator.process(message, adapter=adapter)

    async def run_background_scan(self) -> Optional[BatchSummary]:
        return await self.background.run_once()

    async def run_catchup(self) -> BatchSummary:
        return await self.catchup.run()

    @property
    def last_seen_at(self) -> int:
        return self.watermarks.get(self.user_id)
