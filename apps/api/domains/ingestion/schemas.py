"""Pydantic schemas for the SMS ingestion domain."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from packages.sms_ingestion.models import BatchSummary, ParsedTransaction, RawMessage


class SmsMessageIn(BaseModel):
    """A notification as read on the device."""

    body: str = Field(..., min_length=1, max_length=2000)
    captured_at: Optional[datetime] = None
    originator: Optional[str] = Field(default=None, max_length=64)

    def to_raw(self) -> RawMessage:
        return RawMessage(body=self.body, captured_at=self.captured_at, originator=self.originator)


class SmsPushResponse(BaseModel):
    identity: str
    processed_by: str  # listener, poller, worker or none
    last_seen_at_ms: int


class CatchupResponse(BaseModel):
    adapter: str
    scanned: int
    outcomes: dict[str, int] = Field(default_factory=dict)
    last_seen_at_ms: int

    @classmethod
    def from_summary(cls, summary: BatchSummary, last_seen_at_ms: int) -> "CatchupResponse":
        return cls(
            adapter=summary.adapter,
            scanned=summary.scanned,
            outcomes=dict(summary.outcomes),
            last_seen_at_ms=last_seen_at_ms,
        )


class WatermarkResponse(BaseModel):
    user_id: str
    last_seen_at_ms: int
    last_seen_at: Optional[datetime] = None


class ParsedTransactionOut(BaseModel):
    amount: float
    direction: str  # "credit" or "debit"
    counterparty: Optional[str] = None
    reference_code: Optional[str] = None
    category_hint: str
    description: str
    provider: str
    payment_method: str
    occurred_at: Optional[datetime] = None
    raw_text: str

    @classmethod
    def from_parsed(cls, parsed: ParsedTransaction) -> "ParsedTransactionOut":
        return cls(**parsed.to_dict())


class ParseResponse(BaseModel):
    """Dry-run parse result; nothing is persisted."""

    accepted: bool
    reason: str
    transaction: Optional[ParsedTransactionOut] = None
