"""Ingestion router: SMS push, catch-up, watermark and dry-run parse.

Every endpoint is scoped to the authenticated user. Source failures surface
as RFC 7807 503 responses.
"""

import structlog
from fastapi import APIRouter, Depends

from apps.api.core.auth import get_current_user_id
from apps.api.domains.ingestion.schemas import (
    CatchupResponse,
    ParsedTransactionOut,
    ParseResponse,
    SmsMessageIn,
    SmsPushResponse,
    WatermarkResponse,
)
from apps.api.domains.ingestion.service import SmsIngestionService, get_ingestion_service
from packages.sms_ingestion.models import from_epoch_ms

router = APIRouter(prefix="/ingest/sms", tags=["ingestion"])
logger = structlog.get_logger()


@router.post("", status_code=202, response_model=SmsPushResponse)
async def push_sms(
    message: SmsMessageIn,
    user_id: str = Depends(get_current_user_id),
    service: SmsIngestionService = Depends(get_ingestion_service),
):
    """Accept one message from the device's live feed."""
    identity, processed_by = await service.push(user_id, message.to_raw())
    return SmsPushResponse(
        identity=identity,
        processed_by=processed_by,
        last_seen_at_ms=service.watermark(user_id),
    )


@router.post("/catchup", response_model=CatchupResponse)
async def run_catchup(
    user_id: str = Depends(get_current_user_id),
    service: SmsIngestionService = Depends(get_ingestion_service),
):
    """Backfill the most recent inbox window, ignoring the watermark."""
    summary = await service.catchup(user_id)
    logger.info("sms_catchup_requested", user_id=user_id, scanned=summary.scanned)
    return CatchupResponse.from_summary(summary, service.watermark(user_id))


@router.get("/watermark", response_model=WatermarkResponse)
async def get_watermark(
    user_id: str = Depends(get_current_user_id),
    service: SmsIngestionService = Depends(get_ingestion_service),
):
    last_seen = service.watermark(user_id)
    return WatermarkResponse(
        user_id=user_id,
        last_seen_at_ms=last_seen,
        last_seen_at=from_epoch_ms(last_seen) if last_seen else None,
    )


@router.post("/parse", response_model=ParseResponse)
async def parse_sms_body(
    message: SmsMessageIn,
    user_id: str = Depends(get_current_user_id),
    service: SmsIngestionService = Depends(get_ingestion_service),
):
    parsed, reason = service.dry_run(message.body, message.captured_at)
    return ParseResponse(
        accepted=parsed is not None,
        reason=reason,
        transaction=ParsedTransactionOut.from_parsed(parsed) if parsed else None,
    )
