"""Core data structures for SMS transaction ingestion."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

# Monotonic seconds; injectable so TTL expiry can be tested deterministically
Clock = Callable[[], float]


def system_clock() -> float:
    return time.monotonic()


class Direction(str, Enum):
    """Whether money was received (credit) or sent (debit)."""

    CREDIT = "credit"
    DEBIT = "debit"

    @property
    def remote_type(self) -> str:
        """Value stored in the remote ``type`` column."""
        return "income" if self is Direction.CREDIT else "expense"

    @classmethod
    def from_remote_type(cls, value: str) -> "Direction":
        return cls.CREDIT if value == "income" else cls.DEBIT


class OutcomeStatus(str, Enum):
    """Terminal states of the per-message pipeline."""

    DROPPED_IN_FLIGHT = "dropped_in_flight"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    INSERTED = "inserted"
    FAILED = "failed"


@dataclass(frozen=True)
class RawMessage:
    """A message as surfaced by a source adapter."""

    body: str
    captured_at: Optional[datetime] = None
    originator: Optional[str] = None

    @property
    def timestamp_ms(self) -> Optional[int]:
        if self.captured_at is None:
            return None
        return to_epoch_ms(self.captured_at)


@dataclass
class ParsedTransaction:
    """Structured candidate transaction extracted from message text."""

    amount: Decimal
    direction: Direction
    counterparty: Optional[str]
    reference_code: Optional[str]
    category_hint: str
    raw_text: str
    # None when neither a capture time nor an in-text date is known
    occurred_at: Optional[datetime] = None
    provider: str = "Other"
    payment_method: str = "mobile_money"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "direction": self.direction.value,
            "counterparty": self.counterparty,
            "reference_code": self.reference_code,
            "category_hint": self.category_hint,
            "raw_text": self.raw_text,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "provider": self.provider,
            "payment_method": self.payment_method,
            "description": self.description,
        }


@dataclass(frozen=True)
class CategoryAssignment:
    id: str
    name: str
    direction: Direction
    icon: str = ""
    color: str = ""


@dataclass
class IngestOutcome:
    """Result of pushing one raw message through the pipeline."""

    status: OutcomeStatus
    identity: str
    reason: str = ""
    transaction_id: Optional[str] = None
    parsed: Optional[ParsedTransaction] = None

    @property
    def advances_watermark(self) -> bool:
        return self.status in (
            OutcomeStatus.INSERTED,
            OutcomeStatus.DUPLICATE,
            OutcomeStatus.REJECTED,
        )


@dataclass
class BatchSummary:
    """Outcome counts for one adapter scan."""

    adapter: str
    scanned: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)

    def record(self, outcome: IngestOutcome) -> None:
        key = outcome.status.value
        self.outcomes[key] = self.outcomes.get(key, 0) + 1

    def count(self, status: OutcomeStatus) -> int:
        return self.outcomes.get(status.value, 0)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
