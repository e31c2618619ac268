"""Ingestion service: per-user SMS sessions behind the HTTP surface.

One ``IngestionSession`` is kept per user for the life of the process, so
the dedup guard and the category cache are shared by the push endpoint, the
listener and every catch-up scan for that user. The Celery tasks and the
worker build their sessions through the same factories.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple

import redis
import structlog

from apps.api.core.auth import get_async_service_client, get_service_key
from apps.api.core.config import Settings, get_settings, settings as app_settings
from apps.api.core.errors import ServiceUnavailableError
from packages.sms_ingestion.config import IngestionConfig
from packages.sms_ingestion.errors import SourceUnavailable
from packages.sms_ingestion.gateway import InMemoryGateway, PersistenceGateway, SupabaseGateway
from packages.sms_ingestion.identity import message_identity
from packages.sms_ingestion.models import BatchSummary, ParsedTransaction, RawMessage
from packages.sms_ingestion.parser import SmsParser
from packages.sms_ingestion.redis_source import RedisMessageSource
from packages.sms_ingestion.session import IngestionSession
from packages.sms_ingestion.sources import InMemoryMessageSource, MessageSource
from packages.sms_ingestion.watermark import WatermarkStore

logger = structlog.get_logger()

GatewayFactory = Callable[[], Awaitable[PersistenceGateway]]
SourceFactory = Callable[[str], MessageSource]


async def build_gateway() -> PersistenceGateway:
    """Supabase gateway when a service key is configured, else process-local."""
    if not get_service_key():
        logger.warning("sms_gateway_in_memory", reason="SUPABASE_SERVICE_KEY not set")
        return InMemoryGateway()
    client = await get_async_service_client()
    return SupabaseGateway(client)


def build_source_factory(settings: Settings) -> SourceFactory:
    """Per-user message source factory for the configured backend."""
    if settings.SMS_SOURCE_BACKEND == "redis":
        client = redis.from_url(settings.REDIS_URL)
        return lambda user_id: RedisMessageSource(client, user_id)

    inboxes: Dict[str, InMemoryMessageSource] = {}

    def _memory_source(user_id: str) -> MessageSource:
        return inboxes.setdefault(user_id, InMemoryMessageSource())

    return _memory_source


class SmsIngestionService:
    """Owns the sessions, the gateway and the watermark store."""

    def __init__(
        self,
        config: IngestionConfig,
        source_factory: SourceFactory,
        gateway_factory: GatewayFactory = build_gateway,
        watermarks: Optional[WatermarkStore] = None,
        poll: bool = False,
        live: bool = True,
    ):
        self.config = config
        self.source_factory = source_factory
        self.gateway_factory = gateway_factory
        self.watermarks = watermarks or WatermarkStore(config.watermark_path)
        self.poll = poll
        # When not live the worker consumes the feed and sessions here only scan on request
        self.live = live
        self.parser = SmsParser()
        self._gateway: Optional[PersistenceGateway] = None
        self._sessions: Dict[str, IngestionSession] = {}
        self._lock = asyncio.Lock()

    async def gateway(self) -> PersistenceGateway:
        if self._gateway is None:
            self._gateway = await self.gateway_factory()
        return self._gateway

    async def session(self, user_id: str) -> IngestionSession:
        """Return the user's running session, starting it on first use."""
        async with self._lock:
            existing = self._sessions.get(user_id)
            if existing is not None:
                return existing
            session = IngestionSession(
                user_id=user_id,
                source=self.source_factory(user_id),
                gateway=await self.gateway(),
                config=self.config,
                watermarks=self.watermarks,
                parser=self.parser,
            )
            await session.start(catchup=self.live, poll=self.poll, listen=self.live)
            self._sessions[user_id] = session
            return session

    @property
    def active_users(self) -> list[str]:
        return sorted(self._sessions)

    async def push(self, user_id: str, message: RawMessage) -> Tuple[str, str]:
        """Deliver one device message to the user's feed and inbox.

        Returns the message identity and which adapter picked it up.
        """
        identity = message_identity(user_id, message)
        if not self.live:
            self._deliver(self.source_factory(user_id), message)
            return identity, "worker"

        session = await self.session(user_id)
        self._deliver(session.source, message)
        if session.listener.active:
            await session.listener.drain()
            processed_by = session.listener.name
        elif session.poller.active:
            processed_by = session.poller.name
        else:
            processed_by = "none"
        logger.info("sms_pushed", user_id=user_id, identity=identity[:12], processed_by=processed_by)
        return identity, processed_by

    @staticmethod
    def _deliver(source: MessageSource, message: RawMessage) -> None:
        # Both inbox backends accept pushes; a device platform source would not
        try:
            source.deliver(message)
        except SourceUnavailable as e:
            raise ServiceUnavailableError(e.detail) from e

    async def catchup(self, user_id: str) -> BatchSummary:
        session = await self.session(user_id)
        summary = await session.run_catchup()
        if not session.catchup.available:
            raise ServiceUnavailableError(session.catchup.disabled_reason or "Message source unavailable")
        return summary

    def watermark(self, user_id: str) -> int:
        return self.watermarks.get(user_id)

    def dry_run(
        self, body: str, captured_at: Optional[datetime] = None
    ) -> Tuple[Optional[ParsedTransaction], str]:
        return self.parser.parse_with_reason(body, captured_at)

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.stop()


def create_service(settings: Settings) -> SmsIngestionService:
    return SmsIngestionService(
        config=settings.ingestion_config(),
        source_factory=build_source_factory(settings),
        live=settings.SMS_SOURCE_BACKEND != "redis",
    )


_service: Optional[SmsIngestionService] = None


def get_ingestion_service() -> SmsIngestionService:
    """FastAPI dependency returning the process-wide service."""
    global _service
    if _service is None:
        _service = create_service(app_settings or get_settings())
    return _service


async def shutdown_ingestion_service() -> None:
    global _service
    if _service is not None:
        await _service.shutdown()
        _service = None


def build_shared_session(
    settings: Settings,
    user_id: str,
    gateway: PersistenceGateway,
    client: Optional[redis.Redis] = None,
) -> IngestionSession:
    """Session over the Redis inbox, for processes outside the API."""
    client = client or redis.from_url(settings.REDIS_URL)
    return IngestionSession(
        user_id=user_id,
        source=RedisMessageSource(client, user_id),
        gateway=gateway,
        config=settings.ingestion_config(),
    )
