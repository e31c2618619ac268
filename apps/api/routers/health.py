"""Liveness and readiness probes.

Readiness pings Redis, which carries the Celery broker and, with the redis
source backend, every user's inbox, and reports the ingestion sessions held
by this process.
"""

import asyncio

import redis
import structlog
from fastapi import APIRouter, Depends

from apps.api.core.config import settings
from apps.api.domains.ingestion.service import SmsIngestionService, get_ingestion_service

router = APIRouter(tags=["health"])
logger = structlog.get_logger()

REDIS_TIMEOUT_SECONDS = 2
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


async def _redis_state(url: str) -> str:
    """One of up, down or timeout."""
    client = redis.from_url(url, socket_connect_timeout=REDIS_TIMEOUT_SECONDS)
    loop = asyncio.get_running_loop()
    try:
        pong = await asyncio.wait_for(
            loop.run_in_executor(None, client.ping),
            timeout=REDIS_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("redis_health_timeout", timeout_s=REDIS_TIMEOUT_SECONDS)
        return "timeout"
    except redis.RedisError as e:
        logger.warning("redis_health_failed", error=str(e))
        return "down"
    return "up" if pong else "down"


@router.get("/health")
async def health_liveness():
    return {"status": "healthy", "service": "api"}


@router.get("/health/ready")
async def health_readiness(service: SmsIngestionService = Depends(get_ingestion_service)):
    redis_state = await _redis_state(settings.REDIS_URL if settings else DEFAULT_REDIS_URL)
    return {
        "status": "healthy" if redis_state == "up" else "degraded",
        "services": {"api": "up", "redis": redis_state},
        "ingestion": {
            "enabled": service.config.ingestion_enabled,
            "active_sessions": len(service.active_users),
        },
    }
