"""Long-running SMS ingestion worker.

Keeps one ingestion session per user with a Redis inbox: catch-up on start,
then the live feed plus the inbox poller. New users are picked up every
``WORKER_REFRESH_SECONDS``.
"""

import asyncio
import os
import signal
from typing import Dict, Optional

import redis
import structlog
from dotenv import load_dotenv

from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import setup_logging
from apps.api.domains.ingestion.service import build_gateway, build_shared_session
from packages.sms_ingestion.errors import SourceUnavailable
from packages.sms_ingestion.gateway import PersistenceGateway
from packages.sms_ingestion.redis_source import registered_users
from packages.sms_ingestion.session import IngestionSession

# Load environment variables
load_dotenv()

logger = structlog.get_logger()

WORKER_REFRESH_SECONDS = float(os.environ.get("WORKER_REFRESH_SECONDS", "30"))


def get_redis(settings: Settings) -> redis.Redis:
    return redis.from_url(settings.REDIS_URL)


async def sync_sessions(
    settings: Settings,
    client: redis.Redis,
    gateway: PersistenceGateway,
    sessions: Dict[str, IngestionSession],
) -> int:
    """Start a session for every registered user without one. Returns how many started."""
    try:
        users = registered_users(client)
    except SourceUnavailable as e:
        logger.error("worker_user_listing_failed", error=e.detail)
        return 0

    started = 0
    for user_id in users:
        if user_id in sessions:
            continue
        session = build_shared_session(settings, user_id, gateway, client=client)
        await session.start(catchup=True, poll=True)
        sessions[user_id] = session
        started += 1
    return started


async def run_worker(
    settings: Settings,
    stop_event: asyncio.Event,
    client: Optional[redis.Redis] = None,
    gateway: Optional[PersistenceGateway] = None,
    refresh_seconds: float = WORKER_REFRESH_SECONDS,
) -> Dict[str, IngestionSession]:
    client = client or get_redis(settings)
    gateway = gateway or await build_gateway()
    sessions: Dict[str, IngestionSession] = {}

    logger.info("worker_started", refresh_s=refresh_seconds)
    try:
        while not stop_event.is_set():
            started = await sync_sessions(settings, client, gateway, sessions)
            if started:
                logger.info("worker_sessions_started", started=started, total=len(sessions))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=refresh_seconds)
            except asyncio.TimeoutError:
                pass
    finally:
        for session in sessions.values():
            await session.stop()
        logger.info("worker_stopped", sessions=len(sessions))
    return sessions


def main():
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=settings.ENVIRONMENT == "production")

    if not settings.SMS_INGESTION_ENABLED:
        logger.error("worker_ingestion_disabled")
        return

    async def _main() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        await run_worker(settings, stop_event)

    asyncio.run(_main())


if __name__ == "__main__":
    main()
