"""Two-tier duplicate prevention.

``DedupGuard`` is the fast in-process check that collapses near-simultaneous
deliveries of the same message by different channels. ``RemoteDuplicateDetector``
catches what the guard cannot see: deliveries spaced across restarts or
observed by another device on the same account.
"""

import threading
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from .errors import PersistenceFailed
from .gateway import PersistenceGateway
from .identity import normalize_body
from .models import Clock, ParsedTransaction, system_clock

logger = structlog.get_logger()

TRANSACTIONS_TABLE = "transactions"


class DedupGuard:
    """In-flight set plus a TTL-pruned map of recently completed identities.

    Methods never await, and a threading lock guards both structures, so
    callbacks arriving on other threads and coroutines on the event loop can
    share one guard.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Clock = system_clock):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._in_flight: set = set()
        self._completed: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [key for key, done_at in self._completed.items() if now - done_at >= self.ttl_seconds]
        for key in expired:
            del self._completed[key]

    def try_acquire(self, identity: str) -> bool:
        """Claim an identity for processing. False means drop the message."""
        with self._lock:
            self._prune(self._clock())
            if identity in self._in_flight or identity in self._completed:
                return False
            self._in_flight.add(identity)
            return True

    def release(self, identity: str, completed: bool = True) -> None:
        """Finish processing an identity.

        ``completed=False`` forgets the identity entirely so a later scan can
        retry it (used when persistence failed).
        """
        with self._lock:
            self._in_flight.discard(identity)
            if completed:
                self._completed[identity] = self._clock()

    def is_known(self, identity: str) -> bool:
        with self._lock:
            self._prune(self._clock())
            return identity in self._in_flight or identity in self._completed

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def completed_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._completed)

    def clear(self) -> None:
        with self._lock:
            self._in_flight.clear()
            self._completed.clear()


@dataclass(frozen=True)
class DuplicateMatch:
    stage: str  # "reference" or "amount_window"
    record_id: str


def _amount_of(row: Dict[str, Any]) -> Optional[Decimal]:
    try:
        return Decimal(str(row.get("amount")))
    except (InvalidOperation, ValueError):
        return None


def _norm(value: Optional[str]) -> str:
    return normalize_body(value or "")


class RemoteDuplicateDetector:
    """Looks for an already persisted copy of a parsed transaction."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        window_seconds: float = 300.0,
        amount_tolerance: Decimal = Decimal("0.01"),
    ):
        self.gateway = gateway
        self.window = timedelta(seconds=window_seconds)
        self.amount_tolerance = amount_tolerance

    async def find_duplicate(self, user_id: str, parsed: ParsedTransaction) -> Optional[DuplicateMatch]:
        match = None
        if parsed.reference_code:
            match = await self._match_reference(user_id, parsed)
        if match is None and parsed.occurred_at is not None:
            match = await self._match_amount_window(user_id, parsed)
        return match

    async def _safe_query(self, filters: List, stage: str) -> List[Dict[str, Any]]:
        try:
            return await self.gateway.query(TRANSACTIONS_TABLE, filters)
        except PersistenceFailed as e:
            # The in-process guard still holds; treat as no duplicate
            logger.warning("duplicate_lookup_failed", stage=stage, error=e.detail)
            return []

    async def _match_reference(self, user_id: str, parsed: ParsedTransaction) -> Optional[DuplicateMatch]:
        reference = parsed.reference_code
        rows = await self._safe_query(
            [("user_id", "eq", user_id), ("reference_number", "eq", reference)], "reference"
        )
        rows += await self._safe_query(
            [("user_id", "eq", user_id), ("metadata->>reference", "eq", reference)], "reference_legacy"
        )
        for row in rows:
            amount = _amount_of(row)
            # Same reference with a different amount is a distinct record
            # (e.g. a fee sharing its parent transaction's reference)
            if amount is not None and abs(amount - parsed.amount) <= self.amount_tolerance:
                return DuplicateMatch("reference", str(row.get("id")))
        return None

    async def _match_amount_window(self, user_id: str, parsed: ParsedTransaction) -> Optional[DuplicateMatch]:
        start = parsed.occurred_at - self.window
        end = parsed.occurred_at + self.window
        rows = await self._safe_query(
            [
                ("user_id", "eq", user_id),
                ("amount", "eq", parsed.amount),
                ("date", "gte", start),
                ("date", "lte", end),
            ],
            "amount_window",
        )
        for row in rows:
            if self._same_event(row, parsed):
                return DuplicateMatch("amount_window", str(row.get("id")))
        return None

    @staticmethod
    def _same_event(row: Dict[str, Any], parsed: ParsedTransaction) -> bool:
        metadata = row.get("metadata") or {}
        stored_text = None
        if isinstance(metadata, dict):
            stored_text = metadata.get("raw_message") or metadata.get("message")
        if stored_text and _norm(stored_text) == _norm(parsed.raw_text):
            return True
        if parsed.counterparty and row.get("sender"):
            if _norm(row["sender"]) == _norm(parsed.counterparty):
                return True
        if parsed.counterparty and parsed.description and row.get("description"):
            if _norm(row["description"]) == _norm(parsed.description):
                return True
        return False
