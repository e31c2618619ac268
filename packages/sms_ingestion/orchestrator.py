"""Per-message ingestion pipeline.

Received -> identity -> in-process guard -> parse -> category -> remote
duplicate check -> insert -> watermark.

``process`` never raises: every message ends in exactly one terminal outcome,
so one bad message cannot abort the rest of a batch.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

import structlog

from .categories import CategoryResolver
from .dedup import TRANSACTIONS_TABLE, DedupGuard, RemoteDuplicateDetector
from .errors import PersistenceFailed
from .gateway import PersistenceGateway
from .identity import message_identity
from .models import (
    BatchSummary,
    CategoryAssignment,
    Direction,
    IngestOutcome,
    OutcomeStatus,
    ParsedTransaction,
    RawMessage,
)
from .rules import transaction_tags
from .parser import SmsParser
from .watermark import WatermarkStore

logger = structlog.get_logger()

REASON_VALIDATION_FAILED = "validation_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionOrchestrator:
    """Runs raw messages for one user through the pipeline."""

    def __init__(
        self,
        user_id: str,
        parser: SmsParser,
        guard: DedupGuard,
        categories: CategoryResolver,
        detector: RemoteDuplicateDetector,
        gateway: PersistenceGateway,
        watermarks: WatermarkStore,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.user_id = user_id
        self.parser = parser
        self.guard = guard
        self.categories = categories
        self.detector = detector
        self.gateway = gateway
        self.watermarks = watermarks
        self._now = now

    async def process(self, message: RawMessage, adapter: str = "") -> IngestOutcome:
        identity = message_identity(self.user_id, message)
        log = logger.bind(user_id=self.user_id, identity=identity[:12], adapter=adapter)

        if not self.guard.try_acquire(identity):
            log.debug("sms_dropped_in_flight")
            return IngestOutcome(OutcomeStatus.DROPPED_IN_FLIGHT, identity, reason="seen_recently")

        outcome = IngestOutcome(OutcomeStatus.FAILED, identity, reason="unprocessed")
        try:
            outcome = await self._run(identity, message, log)
        except Exception as e:
            log.exception("sms_pipeline_error", error=str(e))
            outcome = IngestOutcome(OutcomeStatus.FAILED, identity, reason="unexpected_error")
        finally:
            self.guard.release(identity, completed=outcome.status is not OutcomeStatus.FAILED)

        if outcome.advances_watermark and message.timestamp_ms is not None:
            try:
                self.watermarks.advance(self.user_id, message.timestamp_ms)
            except OSError as e:
                log.error("watermark_save_failed", error=str(e))
        return outcome

    async def _run(self, identity: str, message: RawMessage, log) -> IngestOutcome:
        parsed, reason = self.parser.parse_with_reason(message.body, message.captured_at)
        if parsed is None:
            log.info("sms_rejected", reason=reason)
            return IngestOutcome(OutcomeStatus.REJECTED, identity, reason=reason)

        if parsed.amount <= 0 or not isinstance(parsed.direction, Direction):
            log.warning("sms_validation_failed", amount=str(parsed.amount))
            return IngestOutcome(OutcomeStatus.REJECTED, identity, reason=REASON_VALIDATION_FAILED)

        if parsed.occurred_at is None:
            parsed = replace(parsed, occurred_at=self._now())

        category = await self.categories.resolve(self.user_id, parsed.category_hint, parsed.direction)

        duplicate = await self.detector.find_duplicate(self.user_id, parsed)
        if duplicate is not None:
            log.info("sms_duplicate_remote", stage=duplicate.stage, existing_id=duplicate.record_id)
            return IngestOutcome(
                OutcomeStatus.DUPLICATE,
                identity,
                reason=f"duplicate_{duplicate.stage}",
                transaction_id=duplicate.record_id,
                parsed=parsed,
            )

        row = build_transaction_row(self.user_id, identity, message, parsed, category)
        try:
            transaction_id = await self.gateway.insert(TRANSACTIONS_TABLE, row)
        except PersistenceFailed as e:
            log.error("sms_insert_failed", error=e.detail)
            return IngestOutcome(OutcomeStatus.FAILED, identity, reason="persistence_failed", parsed=parsed)

        log.info(
            "sms_inserted",
            transaction_id=transaction_id,
            amount=float(parsed.amount),
            direction=parsed.direction.value,
            category=row["category"],
        )
        return IngestOutcome(OutcomeStatus.INSERTED, identity, transaction_id=transaction_id, parsed=parsed)

    async def process_batch(
        self,
        messages: Iterable[RawMessage],
        adapter: str = "",
        stop_event: Optional[asyncio.Event] = None,
    ) -> BatchSummary:
        """Process messages oldest first so the watermark advances without gaps.

        Messages without a timestamp go last. A set ``stop_event`` ends the
        batch between messages, never mid-message.
        """
        ordered = sorted(messages, key=lambda m: (m.timestamp_ms is None, m.timestamp_ms or 0))
        summary = BatchSummary(adapter=adapter, scanned=len(ordered))
        for message in ordered:
            if stop_event is not None and stop_event.is_set():
                break
            summary.record(await self.process(message, adapter=adapter))
        if ordered:
            logger.info("sms_batch_processed", user_id=self.user_id, adapter=adapter, **summary.outcomes)
        return summary


def build_transaction_row(
    user_id: str,
    identity: str,
    message: RawMessage,
    parsed: ParsedTransaction,
    category: Optional[CategoryAssignment],
) -> Dict[str, Any]:
    """Row for the remote ``transactions`` table.

    Without a resolved category only the legacy free-text column is set.
    """
    return {
        "user_id": user_id,
        "type": parsed.direction.remote_type,
        "amount": float(parsed.amount),
        "category_id": category.id if category else None,
        "category": category.name if category else parsed.category_hint,
        "description": parsed.description,
        "sender": parsed.counterparty,
        "payment_method": parsed.payment_method,
        "reference_number": parsed.reference_code,
        "tags": transaction_tags(parsed.raw_text, parsed.reference_code),
        "metadata": {
            "source": "sms",
            "identity": identity,
            "reference_code": parsed.reference_code,
            "provider": parsed.provider,
            "originator": message.originator,
            "category_hint": parsed.category_hint,
            "raw_message": parsed.raw_text,
            "reference": parsed.reference_code,
            "message": parsed.raw_text,
            "parsed_at": datetime.now(timezone.utc).isoformat(),
        },
        "date": parsed.occurred_at.isoformat(),
    }
