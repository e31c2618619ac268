"""Category taxonomy and per-user category resolution.

The taxonomy maps message keywords to a category hint. The resolver turns a
hint into a persisted category id, creating the category on first use.
"""

import asyncio
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from .errors import CategoryCreateFailed, PersistenceFailed
from .gateway import PersistenceGateway
from .models import CategoryAssignment, Clock, Direction, system_clock

logger = structlog.get_logger()

CATEGORIES_TABLE = "categories"


class Category(str, Enum):
    """Standard category hints produced by the parser."""

    SALARY = "Salary"
    MOBILE_MONEY = "Mobile Money"
    AIRTIME_DATA = "Airtime & Data"
    CASH_WITHDRAWAL = "Cash Withdrawal"
    BILLS = "Bills & Utilities"
    FOOD = "Food & Dining"
    TRANSPORT = "Transportation"
    SHOPPING = "Shopping"
    HEALTHCARE = "Healthcare"
    FULIZA_FEE = "Fuliza Fee"
    OTHER_INCOME = "Other Income"
    OTHER = "Other"


# Ordered: first match wins
CREDIT_KEYWORDS: List[Tuple[Category, List[str]]] = [
    (Category.SALARY, ["salary", "payroll", "wage", "wages"]),
    (Category.MOBILE_MONEY, ["m-pesa", "mpesa", "airtel money", "mobile money", "t-kash", "received from"]),
]

DEBIT_KEYWORDS: List[Tuple[Category, List[str]]] = [
    (Category.AIRTIME_DATA, ["airtime", "data bundle", "bundles", "recharge", "top up", "top-up"]),
    (Category.CASH_WITHDRAWAL, ["withdraw", "withdrawn", "atm", "agent"]),
    (
        Category.BILLS,
        ["bill", "kplc", "electricity", "water", "internet", "utilities", "dstv", "gotv", "zuku", "rent"],
    ),
    (
        Category.FOOD,
        ["food", "restaurant", "cafe", "dining", "meal", "lunch", "dinner", "breakfast", "hotel", "kfc", "java"],
    ),
    (
        Category.TRANSPORT,
        ["transport", "taxi", "uber", "bolt", "little cab", "bus", "matatu", "fuel", "petrol", "parking"],
    ),
    (
        Category.SHOPPING,
        ["shop", "store", "supermarket", "market", "mall", "naivas", "carrefour", "quickmart", "chandarana"],
    ),
    (Category.HEALTHCARE, ["medical", "hospital", "pharmacy", "chemist", "clinic", "doctor", "health"]),
    (Category.MOBILE_MONEY, ["m-pesa", "mpesa", "airtel money", "mobile money", "sent to"]),
]


def _keyword_in(keyword: str, text_lower: str) -> bool:
    # word boundary check for short keywords to avoid false positives
    if len(keyword) <= 4:
        return bool(re.search(r"\b" + re.escape(keyword) + r"\b", text_lower))
    return keyword in text_lower


def detect_category_hint(text: str, direction: Direction) -> str:
    """Map message keywords to a direction-aware category hint."""
    text_lower = (text or "").lower()
    table = CREDIT_KEYWORDS if direction is Direction.CREDIT else DEBIT_KEYWORDS
    for category, keywords in table:
        if any(_keyword_in(keyword, text_lower) for keyword in keywords):
            return category.value
    return Category.OTHER_INCOME.value if direction is Direction.CREDIT else Category.OTHER.value


def category_icon(name: str, direction: Direction) -> str:
    """Deterministic icon for a category name and direction."""
    lowered = name.lower()
    if direction is Direction.CREDIT:
        if "salary" in lowered:
            return "card"
        if "mobile" in lowered or "mpesa" in lowered:
            return "phone-portrait"
        return "arrow-up-circle"

    if "food" in lowered or "dining" in lowered:
        return "restaurant"
    if "transport" in lowered:
        return "car"
    if "shop" in lowered:
        return "bag"
    if "airtime" in lowered or "data" in lowered:
        return "phone-portrait"
    if "cash" in lowered or "withdraw" in lowered:
        return "cash"
    if "bill" in lowered or "utilities" in lowered:
        return "receipt"
    if "medical" in lowered or "health" in lowered:
        return "medical"
    if "mobile" in lowered or "mpesa" in lowered:
        return "phone-portrait"
    if "fee" in lowered:
        return "pricetag"
    return "arrow-down-circle"


# Ordered keyword palettes: first match wins
INCOME_COLORS: List[Tuple[str, str]] = [
    ("salary", "#27AE60"),
    ("mobile", "#1ABC9C"),
    ("mpesa", "#1ABC9C"),
]
EXPENSE_COLORS: List[Tuple[str, str]] = [
    ("food", "#FF6B6B"),
    ("transport", "#4ECDC4"),
    ("shop", "#45B7D1"),
    ("airtime", "#9B59B6"),
    ("cash", "#E67E22"),
    ("bill", "#FFEAA7"),
    ("medical", "#DDA0DD"),
    ("health", "#DDA0DD"),
    ("fee", "#E74C3C"),
    ("mobile", "#3498DB"),
]
DEFAULT_INCOME_COLOR = "#2ECC71"
DEFAULT_EXPENSE_COLOR = "#95A5A6"


def category_color(name: str, direction: Direction) -> str:
    """Deterministic color for a category name and direction."""
    lowered = name.lower()
    if direction is Direction.CREDIT:
        palette, default = INCOME_COLORS, DEFAULT_INCOME_COLOR
    else:
        palette, default = EXPENSE_COLORS, DEFAULT_EXPENSE_COLOR
    for keyword, color in palette:
        if keyword in lowered:
            return color
    return default


class CategoryResolver:
    """Resolves category hints to persisted category ids with a per-user TTL cache."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        ttl_seconds: float = 300.0,
        clock: Clock = system_clock,
    ):
        self.gateway = gateway
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Dict[Tuple[str, Direction], CategoryAssignment]]] = {}
        self._lock = asyncio.Lock()

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    async def refresh(self, user_id: str) -> Dict[Tuple[str, Direction], CategoryAssignment]:
        """Reload the user's categories from the remote store."""
        rows = await self.gateway.query(CATEGORIES_TABLE, [("user_id", "eq", user_id)])
        entries: Dict[Tuple[str, Direction], CategoryAssignment] = {}
        for row in rows:
            name = str(row.get("name") or "").strip()
            if not name:
                continue
            direction = Direction.from_remote_type(str(row.get("type") or ""))
            entries[(name.lower(), direction)] = CategoryAssignment(
                id=str(row["id"]),
                name=name,
                direction=direction,
                icon=row.get("icon") or "",
                color=row.get("color") or "",
            )
        self._cache[user_id] = (self._clock(), entries)
        logger.debug("category_cache_refreshed", user_id=user_id, count=len(entries))
        return entries

    async def _entries(self, user_id: str, force: bool = False) -> Dict[Tuple[str, Direction], CategoryAssignment]:
        cached = self._cache.get(user_id)
        if not force and cached and self._clock() - cached[0] < self.ttl_seconds:
            return cached[1]
        try:
            return await self.refresh(user_id)
        except PersistenceFailed as e:
            logger.warning("category_cache_refresh_failed", user_id=user_id, error=e.detail)
            return cached[1] if cached else {}

    async def resolve(
        self, user_id: str, hint: str, direction: Direction, force_refresh: bool = False
    ) -> Optional[CategoryAssignment]:
        """Find or create the category for a hint.

        Returns None when the category cannot be created; the caller then
        records the hint as a free-text category label.
        """
        key = (hint.strip().lower(), direction)
        async with self._lock:
            entries = await self._entries(user_id, force=force_refresh)
            if key in entries:
                return entries[key]
            try:
                return await self._create(user_id, hint.strip(), direction, entries)
            except CategoryCreateFailed as e:
                # Another device may have created it first
                entries = await self._entries(user_id, force=True)
                if key in entries:
                    return entries[key]
                logger.warning("category_create_failed", user_id=user_id, name=e.name, error=e.detail)
                return None

    async def _create(
        self,
        user_id: str,
        name: str,
        direction: Direction,
        entries: Dict[Tuple[str, Direction], CategoryAssignment],
    ) -> CategoryAssignment:
        icon = category_icon(name, direction)
        color = category_color(name, direction)
        row = {
            "user_id": user_id,
            "name": name,
            "type": direction.remote_type,
            "icon": icon,
            "color": color,
            "is_default": False,
        }
        try:
            category_id = await self.gateway.insert(CATEGORIES_TABLE, row)
        except PersistenceFailed as e:
            raise CategoryCreateFailed(e.detail, name=name) from e

        assignment = CategoryAssignment(id=category_id, name=name, direction=direction, icon=icon, color=color)
        entries[(name.lower(), direction)] = assignment
        logger.info("category_created", user_id=user_id, name=name, direction=direction.value)
        return assignment
