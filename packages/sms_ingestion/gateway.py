"""Persistence gateway: the remote store seen through insert/query only.

The gateway enforces no uniqueness of its own; duplicate prevention is the
pipeline's job.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog
from supabase import AsyncClient

from .errors import PersistenceFailed

logger = structlog.get_logger()

# (column, operator, value); operators: eq, gte, lte, ilike
Filter = Tuple[str, str, Any]

SUPPORTED_OPERATORS = ("eq", "gte", "lte", "ilike")


class PersistenceGateway(ABC):
    """Abstract remote store used by the category resolver, the duplicate
    detector and the orchestrator."""

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> str:
        """Insert one row and return its id. Raises PersistenceFailed."""

    @abstractmethod
    async def query(
        self, table: str, filters: List[Filter], limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Return rows matching all filters. Raises PersistenceFailed."""


class SupabaseGateway(PersistenceGateway):
    """Gateway backed by a Supabase (PostgREST) async client."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def insert(self, table: str, row: Dict[str, Any]) -> str:
        try:
            response = await self.client.table(table).insert(row).execute()
        except Exception as e:
            logger.error("supabase_insert_failed", table=table, error=str(e))
            raise PersistenceFailed(str(e), table=table) from e

        if not response.data:
            raise PersistenceFailed("Insert returned no rows", table=table)
        return str(response.data[0]["id"])

    async def query(
        self, table: str, filters: List[Filter], limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        builder = self.client.table(table).select("*")
        for column, op, value in filters:
            if op not in SUPPORTED_OPERATORS:
                raise ValueError(f"Unsupported filter operator: {op}")
            builder = getattr(builder, op)(column, _to_wire(value))
        if limit:
            builder = builder.limit(limit)

        try:
            response = await builder.execute()
        except Exception as e:
            logger.error("supabase_query_failed", table=table, error=str(e))
            raise PersistenceFailed(str(e), table=table) from e
        return list(response.data or [])


class InMemoryGateway(PersistenceGateway):
    """Process-local store with the same contract.

    Used when no Supabase service key is configured and throughout the tests.
    ``failing_tables`` makes inserts into the named tables raise.
    """

    def __init__(self, failing_tables: Optional[Set[str]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failing_tables: Set[str] = set(failing_tables or ())
        self.insert_calls: List[Tuple[str, Dict[str, Any]]] = []

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    async def insert(self, table: str, row: Dict[str, Any]) -> str:
        self.insert_calls.append((table, copy.deepcopy(row)))
        if table in self.failing_tables:
            raise PersistenceFailed(f"Insert into {table} rejected", table=table)
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(stored)
        return stored["id"]

    async def query(
        self, table: str, filters: List[Filter], limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        matches = [copy.deepcopy(row) for row in self.rows(table) if _row_matches(row, filters)]
        return matches[:limit] if limit else matches


def _to_wire(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _lookup(row: Dict[str, Any], column: str) -> Any:
    # PostgREST JSON path: metadata->>reference
    if "->>" in column:
        parent, key = column.split("->>", 1)
        nested = row.get(parent) or {}
        return nested.get(key) if isinstance(nested, dict) else None
    return row.get(column)


def _comparable(value: Any) -> Any:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and len(value) >= 19 and value[4] == "-" and value[10] == "T":
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _row_matches(row: Dict[str, Any], filters: List[Filter]) -> bool:
    for column, op, value in filters:
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        actual = _lookup(row, column)
        if actual is None:
            return False
        if op == "ilike":
            pattern = str(value).lower().replace("%", "")
            if pattern not in str(actual).lower():
                return False
            continue
        left, right = _comparable(actual), _comparable(value)
        try:
            if op == "eq" and not left == right:
                return False
            if op == "gte" and not left >= right:
                return False
            if op == "lte" and not left <= right:
                return False
        except TypeError:
            return False
    return True
