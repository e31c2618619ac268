"""Source adapters: interchangeable producers of raw messages.

Every adapter hands messages to the same orchestrator, so the listener, the
poller, the background task and manual catch-up all share one dedup and
watermark path. None of them assumes it is the only channel.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional, Set

import structlog

from .config import IngestionConfig
from .errors import SourceUnavailable
from .models import BatchSummary, Clock, RawMessage, system_clock
from .orchestrator import IngestionOrchestrator
from .sources import MessageSource, Subscription
from .watermark import WatermarkStore

logger = structlog.get_logger()


class SourceAdapter(ABC):
    """Common lifecycle for all adapters.

    An adapter that hits ``SourceUnavailable``/``PermissionDenied`` disables
    itself until the next ``start()``; other adapters are unaffected.
    """

    name = "adapter"

    def __init__(
        self,
        source: MessageSource,
        orchestrator: IngestionOrchestrator,
        watermarks: WatermarkStore,
        config: IngestionConfig,
        is_enabled: Optional[Callable[[], bool]] = None,
    ):
        self.source = source
        self.orchestrator = orchestrator
        self.watermarks = watermarks
        self.config = config
        self._is_enabled = is_enabled or (lambda: config.ingestion_enabled)
        self.disabled_reason: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.orchestrator.user_id

    @property
    def available(self) -> bool:
        return self.disabled_reason is None

    def _disable(self, error: SourceUnavailable) -> None:
        self.disabled_reason = error.detail
        logger.warning(
            "adapter_unavailable",
            adapter=self.name,
            error_type=type(error).__name__,
            error=error.detail,
        )

    def ingestion_enabled(self) -> bool:
        return bool(self._is_enabled())

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...


class ScanningAdapter(SourceAdapter):
    """Adapter that reads the inbox in bounded batches."""

    async def scan(self, watermark: Optional[int] = None, max_count: Optional[int] = None) -> BatchSummary:
        """Process inbox messages newer than ``watermark`` (epoch ms).

        Defaults: the stored watermark and the catch-up batch size.
        Messages without a timestamp are always included.
        """
        summary = BatchSummary(adapter=self.name)
        if not self.available or not self.ingestion_enabled():
            return summary

        if watermark is None:
            watermark = self.watermarks.get(self.user_id)
        if max_count is None:
            max_count = self.config.catchup_batch_size

        try:
            recent = await self.source.list_recent(max_count)
        except SourceUnavailable as e:
            self._disable(e)
            return summary

        newer = [m for m in recent if m.timestamp_ms is None or m.timestamp_ms > watermark]
        return await self.orchestrator.process_batch(newer, adapter=self.name, stop_event=self._stop_event())

    def _stop_event(self) -> Optional[asyncio.Event]:
        return None

    async def start(self) -> None:
        self.disabled_reason = None

    async def stop(self) -> None:
        return None


class ListenerAdapter(SourceAdapter):
    """Subscribes to the live feed; each arrival becomes its own task.

    Callbacks may arrive on any thread; they are marshalled onto the loop
    that called ``start()``.
    """

    name = "listener"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._subscription: Optional[Subscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def start(self) -> None:
        self.disabled_reason = None
        if self.active:
            return
        self._loop = asyncio.get_running_loop()
        try:
            self._subscription = self.source.subscribe(self._on_message)
        except SourceUnavailable as e:
            self._disable(e)
            return
        logger.info("listener_started", user_id=self.user_id)

    def _on_message(self, message: RawMessage) -> None:
        if self._loop is None or not self.ingestion_enabled():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._spawn(message)
        else:
            self._loop.call_soon_threadsafe(self._spawn, message)

    def _spawn(self, message: RawMessage) -> None:
        task = self._loop.create_task(self.orchestrator.process(message, adapter=self.name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every admitted message to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.remove()
            self._subscription = None
        # Admitted messages run to completion rather than being cancelled
        await self.drain()
        logger.info("listener_stopped", user_id=self.user_id)


class PollerAdapter(ScanningAdapter):
    """Reads the newest inbox messages on a fixed interval."""

    name = "poller"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def _stop_event(self) -> Optional[asyncio.Event]:
        return self._stopping

    async def start(self) -> None:
        await super().start()
        if self.active:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("poller_started", user_id=self.user_id, interval_s=self.config.poll_interval_seconds)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.scan(max_count=self.config.poll_batch_size)
            except Exception as e:
                logger.error("poller_scan_failed", error=str(e))
            if not self.available:
                return
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("poller_stopped", user_id=self.user_id)


class BackgroundTaskAdapter(ScanningAdapter):
    """Bounded catch-up scan triggered by an external scheduler.

    Invocations closer together than the minimum interval are skipped.
    """

    name = "background"

    def __init__(self, *args, clock: Clock = system_clock, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock
        self._last_run: Optional[float] = None

    async def run_once(self) -> Optional[BatchSummary]:
        now = self._clock()
        if self._last_run is not None and now - self._last_run < self.config.background_min_interval_seconds:
            logger.debug("background_scan_skipped", user_id=self.user_id)
            return None
        self._last_run = now
        return await self.scan(max_count=self.config.catchup_batch_size)


class ManualCatchupAdapter(ScanningAdapter):
    """One-off backfill of the most recent window, ignoring the watermark."""

    name = "manual_catchup"

    async def run(self) -> BatchSummary:
        # A manual trigger retries a source that disabled this adapter earlier
        self.disabled_reason = None
        return await self.scan(watermark=0, max_count=self.config.catchup_batch_size)

    async def start(self) -> None:
        await self.run()

