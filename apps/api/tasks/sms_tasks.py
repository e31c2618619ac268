"""Celery tasks for scheduled background SMS scans.

Beat fans out one ``background_sms_scan`` per user with a Redis inbox. Each
scan reads the newest messages past the user's watermark and pushes them
through the same pipeline as the API, so scans overlapping with live
ingestion produce no duplicates.
"""

import asyncio
from typing import Dict

import redis
import structlog
from celery import shared_task
from celery.exceptions import MaxRetriesExceededError

from apps.api.core.config import get_settings
from apps.api.core.logging import bind_ingestion_context, clear_ingestion_context
from apps.api.domains.ingestion.service import build_gateway, build_shared_session
from packages.sms_ingestion.errors import SourceUnavailable
from packages.sms_ingestion.redis_source import registered_users

logger = structlog.get_logger()


async def _scan_user(user_id: str) -> Dict:
    settings = get_settings()
    session = build_shared_session(settings, user_id, await build_gateway())
    summary = await session.run_background_scan()
    if summary is None:
        return {"status": "skipped", "user_id": user_id}
    if not session.background.available:
        return {
            "status": "unavailable",
            "user_id": user_id,
            "error": session.background.disabled_reason,
        }
    return {
        "status": "completed",
        "user_id": user_id,
        "scanned": summary.scanned,
        "outcomes": summary.outcomes,
        "last_seen_at_ms": session.last_seen_at,
    }


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def background_sms_scan(self, user_id: str) -> Dict:
    """Bounded catch-up scan for one user."""
    bind_ingestion_context(user_id, "background")
    try:
        result = asyncio.run(_scan_user(user_id))
        logger.info("background_scan_finished", **result)
        return result
    except Exception as exc:
        logger.error("background_scan_failed", user_id=user_id, error=str(exc))
        try:
            self.retry(exc=exc)
        except MaxRetriesExceededError:
            return {"status": "failed", "user_id": user_id, "error": str(exc)}
    finally:
        clear_ingestion_context()


@shared_task
def schedule_background_scans() -> Dict:
    """Queue a background scan for every user with a Redis inbox."""
    settings = get_settings()
    if not settings.SMS_INGESTION_ENABLED:
        logger.info("background_scan_disabled")
        return {"scheduled": 0}

    try:
        users = registered_users(redis.from_url(settings.REDIS_URL))
    except SourceUnavailable as e:
        logger.warning("background_scan_schedule_failed", error=e.detail)
        return {"scheduled": 0, "error": e.detail}

    for user_id in users:
        background_sms_scan.delay(user_id)
    logger.info("background_scans_scheduled", count=len(users))
    return {"scheduled": len(users)}
