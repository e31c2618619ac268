"""Rule tables for SMS classification.

Rejection rules are evaluated in order and the first match wins. Special-case
handlers run after rejection and before generic extraction. Each rule is a
small named object so precedence stays auditable and every rule can be
exercised on its own.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Tuple

from .models import Direction

# --- Shared patterns ---------------------------------------------------------

CURRENCY = r"(?:US\$|USD|KES|KSH|KSHS|UGX|TZS|GHS|NGN|ZAR|EUR|GBP)"
NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)(?![\d,]*\d)"

AMOUNT_RE = re.compile(r"(?<![A-Za-z])" + CURRENCY + r"\.?\s?" + NUMBER, re.IGNORECASE)
AMOUNT_SUFFIX_RE = re.compile(
    r"(?<![\d.,])" + NUMBER + r"\s?" + CURRENCY + r"\b", re.IGNORECASE
)

CREDIT_RE = re.compile(
    r"\b(received|credited|deposited?|refund(?:ed)?|cash ?back|reversed|reversal"
    r"|salary|dividend|interest earned|payment received)\b",
    re.IGNORECASE,
)
DEBIT_RE = re.compile(
    r"\b(sent|paid|payment of|made to|withdrawn|withdraw|debited|purchased?"
    r"|bought|spent|charged|transferred to|buy goods)\b",
    re.IGNORECASE,
)
CONFIRMED_RE = re.compile(r"\bconfirmed\b", re.IGNORECASE)

_CODE = r"((?=[A-Za-z0-9-]*\d)[A-Za-z0-9][A-Za-z0-9-]{2,})"
_SEP = r"\s*[:#.\-]?\s*"

REFERENCE_PATTERNS = [
    re.compile(r"\bRef(?:erence)?(?:\s*(?:No|Number)\.?(?=[\s:#]))?" + _SEP + _CODE, re.IGNORECASE),
    re.compile(r"\bTransaction\s*(?:ID|Code|No\.?)" + _SEP + _CODE, re.IGNORECASE),
    re.compile(r"\b(?:TranID|TrxID|Txn\s*ID)" + _SEP + _CODE, re.IGNORECASE),
    re.compile(r"\bCode" + _SEP + _CODE, re.IGNORECASE),
    re.compile(r"\bReceipt(?:\s*No\.?(?=[\s:#]))?" + _SEP + _CODE, re.IGNORECASE),
]
# M-PESA style: "TJ12ABC345 Confirmed. ..."
LEADING_CODE_RE = re.compile(r"^\W*((?=[A-Z0-9]*\d)(?=[A-Z0-9]*[A-Z])[A-Z0-9]{6,14})\s+Confirmed\b")

COUNTERPARTY_RE = re.compile(r"\b(from|by|to|at)\s+([A-Za-z][A-Za-z0-9&'.\- ]*)", re.IGNORECASE)
_COUNTERPARTY_STOP = re.compile(
    r"\s+(?:ref\b|reference\b|on\b|at\b|via\b|for\b|transaction\b|trans\b|new\b"
    r"|code\b|receipt\b|acc(?:ount)?\b|is\b|has\b|was\b|and\b|to\b|from\b|by\b|\d)|[.,;:]\s|[.,;:]$",
    re.IGNORECASE,
)
_COUNTERPARTY_IGNORED = {"your", "you", "the", "your account", "your m-pesa", "account", "a"}
BANK_NAME_RE = re.compile(r"\b([A-Z][A-Za-z&]+(?:\s[A-Z][A-Za-z&]+)?)\s+Bank\b")

EMONEY_BRANDS: List[Tuple[str, re.Pattern]] = [
    ("Fuliza", re.compile(r"\bfuliza\b", re.IGNORECASE)),
    ("M-PESA", re.compile(r"\b(?:m-?pesa|m pesa)\b", re.IGNORECASE)),
    ("Airtel Money", re.compile(r"\bairtel(?: money)?\b", re.IGNORECASE)),
    ("T-Kash", re.compile(r"\bt-?kash\b", re.IGNORECASE)),
    ("Equitel", re.compile(r"\bequitel\b", re.IGNORECASE)),
    ("MTN MoMo", re.compile(r"\b(?:mtn momo|momo)\b", re.IGNORECASE)),
    ("Tigo Pesa", re.compile(r"\btigo ?pesa\b", re.IGNORECASE)),
    ("Mobile Money", re.compile(r"\bmobile money\b", re.IGNORECASE)),
]
BANK_KEYWORD_RE = re.compile(
    r"\b(?:bank|a/c|acct|account|atm|pos|card|equity|eazzy|kcb|co-?op|cooperative|ncba"
    r"|absa|barclays|stanchart|standard chartered|dtb|diamond trust|family bank|i&m|i & m)\b",
    re.IGNORECASE,
)

# Ordered: specific institutions before the generic bank bucket
PROVIDER_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("M-Pesa", re.compile(r"\b(?:mpesa|m-pesa|m pesa|safaricom|fuliza)\b", re.IGNORECASE)),
    ("Airtel", re.compile(r"\bairtel(?: money)?\b", re.IGNORECASE)),
    ("Equity", re.compile(r"\b(?:equity|eazzy|equitel)\b", re.IGNORECASE)),
    ("KCB", re.compile(r"\b(?:kcb|kenya commercial)\b", re.IGNORECASE)),
    ("Cooperative", re.compile(r"\b(?:cooperative|co-op)\b", re.IGNORECASE)),
    ("NCBA", re.compile(r"\bncba\b", re.IGNORECASE)),
    ("Absa", re.compile(r"\b(?:absa|barclays)\b", re.IGNORECASE)),
    ("Standard", re.compile(r"\b(?:standard chartered|stanchart)\b", re.IGNORECASE)),
    ("DTB", re.compile(r"\b(?:diamond trust|dtb)\b", re.IGNORECASE)),
    ("Family", re.compile(r"\bfamily bank\b", re.IGNORECASE)),
    ("I&M", re.compile(r"(?:\bi&m\b|\bi & m\b)", re.IGNORECASE)),
    ("Bank", re.compile(r"\b(?:bank|atm|pos|card)\b", re.IGNORECASE)),
]

MESSAGE_DATE_RE = re.compile(
    r"\bon\s+(\d{1,2})/(\d{1,2})/(\d{2,4})(?:\s+at\s+(\d{1,2}):(\d{2})\s*([AP]M)?)?",
    re.IGNORECASE,
)


# --- Rejection rules ---------------------------------------------------------


@dataclass(frozen=True)
class RejectionRule:
    """A named predicate; a match drops the message."""

    name: str
    predicate: Callable[[str], bool]

    def matches(self, text: str) -> bool:
        return self.predicate(text)


FAILURE_RE = re.compile(
    r"\b(?:failed|insufficient (?:funds|balance)|not successful|unsuccessful|declined"
    r"|could not be (?:completed|processed)|was not completed)\b",
    re.IGNORECASE,
)

NON_TRANSACTIONAL_RE = re.compile(
    r"okoa\s+jahazi"
    r"|you have received\b.*?\b\d+(?:\.\d+)?\s?(?:MB|GB)\b"
    r"|\b\d+(?:\.\d+)?\s?(?:MB|GB)\b.*?\bdata\b.*?\b(?:bonus|reward|free|gift)\b"
    r"|data valid for the next hour"
    r"|airtime (?:reward|bonus)|bonus airtime|received\b.*?\bairtime (?:bonus|reward)"
    r"|bonga points"
    r"|(?:successfully )?(?:opted out|unsubscribed)|opt[- ]out (?:request|confirmed)",
    re.IGNORECASE | re.DOTALL,
)

PROMOTIONAL_RE = re.compile(
    r"\b(?:offer|promo(?:tion)?|discount|win|winner|won|congratulations|free|deal|sale"
    r"|limited time|subscribe|click|visit|hurry|dial \*\d+|sms stop|reply stop)\b|\d+% off",
    re.IGNORECASE,
)

MINI_STATEMENT_SEGMENT_RE = re.compile(r"\[[^\[\]]+\]")
MINI_STATEMENT_COST_RE = re.compile(r"transaction\s+costs?\b[^\[\]]*$", re.IGNORECASE)

REMINDER_RE = re.compile(
    r"\b(?:reminder|will expire|expires? (?:on|in|today|tomorrow)|expiring|has expired"
    r"|renewal|renew your|is due|payment due|due date|kindly pay)\b",
    re.IGNORECASE,
)


def has_strong_transaction_signal(text: str) -> bool:
    """A parsable amount plus a direction keyword or a confirmation marker."""
    if extract_amount(text) is None:
        return False
    return bool(CREDIT_RE.search(text) or DEBIT_RE.search(text) or CONFIRMED_RE.search(text))


def is_promotional(text: str) -> bool:
    return bool(PROMOTIONAL_RE.search(text)) and not has_strong_transaction_signal(text)


def is_mini_statement(text: str) -> bool:
    segments = MINI_STATEMENT_SEGMENT_RE.findall(text)
    if len(segments) < 2:
        return False
    return bool(MINI_STATEMENT_COST_RE.search(text.strip()))


REJECTION_RULES: List[RejectionRule] = [
    RejectionRule("failed_transaction", lambda text: bool(FAILURE_RE.search(text))),
    RejectionRule("non_transactional_product", lambda text: bool(NON_TRANSACTIONAL_RE.search(text))),
    RejectionRule("promotional", is_promotional),
    RejectionRule("mini_statement", is_mini_statement),
    RejectionRule("informational_reminder", lambda text: bool(REMINDER_RE.search(text))),
]


def first_rejection(text: str, rules: Optional[List[RejectionRule]] = None) -> Optional[str]:
    """Name of the first matching rejection rule, or None."""
    for rule in rules if rules is not None else REJECTION_RULES:
        if rule.matches(text):
            return rule.name
    return None


# --- Special cases -----------------------------------------------------------


@dataclass(frozen=True)
class SpecialExtraction:
    amount: Decimal
    direction: Direction
    counterparty: str
    category_hint: str


@dataclass(frozen=True)
class SpecialCase:
    """Handler for a provider-specific message family.

    ``applies`` claims the message; ``extract`` then returns the transaction or
    None, and None means the message is discarded outright.
    """

    name: str
    applies: Callable[[str], bool]
    extract: Callable[[str], Optional[SpecialExtraction]]


FULIZA_RE = re.compile(r"\bfuliza\b", re.IGNORECASE)

# Tried in order. Only the fee is ever captured, never the advanced principal.
FULIZA_FEE_PATTERNS = [
    re.compile(r"access\s+fee\s+charged\s*(?:is\s*)?" + CURRENCY + r"\.?\s?" + NUMBER, re.IGNORECASE),
    re.compile(r"access\s+fee\s+(?:of\s*)?" + CURRENCY + r"\.?\s?" + NUMBER, re.IGNORECASE),
    re.compile(r"\bfee\s+(?:charged|of)\s*" + CURRENCY + r"\.?\s?" + NUMBER, re.IGNORECASE),
    re.compile(r"transaction\s+cost,?\s*" + CURRENCY + r"\.?\s?" + NUMBER, re.IGNORECASE),
]


def extract_fuliza_fee(text: str) -> Optional[SpecialExtraction]:
    for pattern in FULIZA_FEE_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        fee = _to_decimal(m.group(1))
        if fee is not None and fee > 0:
            return SpecialExtraction(fee, Direction.DEBIT, "Fuliza Fee", "Fuliza Fee")
    return None


AIRTIME_RE = re.compile(
    r"\b(?:airtime|recharge|top[- ]?up)\b.*?\b(?:success(?:ful(?:ly)?)?|confirmed|purchased|bought)\b"
    r"|\b(?:success(?:ful(?:ly)?)?|purchased|bought)\b.*?\b(?:airtime|recharge|top[- ]?up)\b",
    re.IGNORECASE | re.DOTALL,
)


def extract_airtime(text: str) -> Optional[SpecialExtraction]:
    amount = extract_amount(text)
    if amount is None or amount <= 0:
        return None
    return SpecialExtraction(amount, Direction.DEBIT, "Airtime Recharge", "Airtime & Data")


SPECIAL_CASES: List[SpecialCase] = [
    SpecialCase("fuliza_access_fee", lambda text: bool(FULIZA_RE.search(text)), extract_fuliza_fee),
    SpecialCase("airtime_recharge", lambda text: bool(AIRTIME_RE.search(text)), extract_airtime),
]


# --- Generic extractors ------------------------------------------------------


def _to_decimal(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", ""))
    except (InvalidOperation, AttributeError):
        return None


def extract_amount(text: str) -> Optional[Decimal]:
    """First currency-tagged amount in the text."""
    m = AMOUNT_RE.search(text) or AMOUNT_SUFFIX_RE.search(text)
    if not m:
        return None
    return _to_decimal(m.group(1))


def extract_direction(text: str) -> Optional[Direction]:
    """Resolve credit vs debit from keyword sets.

    An exclusive match wins. When both sets match, the keyword appearing first
    in the message wins. With no keyword, a lone "from" or "to/at" decides;
    anything else is ambiguous.
    """
    credit = CREDIT_RE.search(text)
    debit = DEBIT_RE.search(text)
    if credit and not debit:
        return Direction.CREDIT
    if debit and not credit:
        return Direction.DEBIT
    if credit and debit:
        return Direction.CREDIT if credit.start() < debit.start() else Direction.DEBIT

    has_from = re.search(r"\bfrom\b", text, re.IGNORECASE)
    has_to = re.search(r"\b(?:to|at)\b", text, re.IGNORECASE)
    if has_from and not has_to:
        return Direction.CREDIT
    if has_to and not has_from:
        return Direction.DEBIT
    return None


def extract_reference(text: str) -> Optional[str]:
    for pattern in REFERENCE_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1).strip("-")
    m = LEADING_CODE_RE.search(text)
    if m:
        return m.group(1)
    return None


def _clean_counterparty(candidate: str) -> Optional[str]:
    name = _COUNTERPARTY_STOP.split(candidate, maxsplit=1)[0]
    name = name.strip().rstrip(".,;:-").strip()
    if len(name) < 2 or name.lower() in _COUNTERPARTY_IGNORED:
        return None
    if name.lower().startswith(("your ", "you ")):
        return None
    return name


def extract_counterparty(text: str, direction: Optional[Direction] = None) -> Optional[str]:
    """Name following from/by (credits) or to/at (debits), with brand fallbacks."""
    preferred = {"from", "by"} if direction is Direction.CREDIT else {"to", "at"}
    matches = list(COUNTERPARTY_RE.finditer(text))
    ordered = [m for m in matches if m.group(1).lower() in preferred]
    ordered += [m for m in matches if m.group(1).lower() not in preferred]
    for m in ordered:
        name = _clean_counterparty(m.group(2))
        if name:
            return name

    brand = detect_emoney_brand(text)
    if brand:
        return brand
    bank = BANK_NAME_RE.search(text)
    if bank:
        return f"{bank.group(1)} Bank"
    return None


def detect_emoney_brand(text: str) -> Optional[str]:
    for brand, pattern in EMONEY_BRANDS:
        if brand == "Fuliza":
            continue
        if pattern.search(text):
            return brand
    return None


def detect_provider(text: str) -> str:
    for provider, pattern in PROVIDER_PATTERNS:
        if pattern.search(text):
            return provider
    return "Other"


def guess_payment_method(text: str) -> str:
    if detect_emoney_brand(text) or FULIZA_RE.search(text):
        return "mobile_money"
    lowered = text.lower()
    if re.search(r"\b(?:card|pos|visa|mastercard)\b", lowered):
        return "card"
    if re.search(r"\b(?:atm|cash withdrawal|withdrawn at agent)\b", lowered):
        return "cash"
    if BANK_KEYWORD_RE.search(text):
        return "bank_transfer"
    return "mobile_money"


def has_financial_signature(text: str, counterparty: Optional[str] = None) -> bool:
    """Known e-money brand, bank keyword, or a counterparty that is one."""
    if any(pattern.search(text) for _, pattern in EMONEY_BRANDS):
        return True
    if BANK_KEYWORD_RE.search(text):
        return True
    if counterparty:
        return bool(
            BANK_KEYWORD_RE.search(counterparty)
            or any(pattern.search(counterparty) for _, pattern in EMONEY_BRANDS)
        )
    return False


def extract_message_date(text: str) -> Optional[datetime]:
    """Parse an embedded "on DD/MM/YY [at HH:MM AM]" stamp (day first)."""
    m = MESSAGE_DATE_RE.search(text)
    if not m:
        return None
    day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if year < 100:
        year += 2000
    hour = int(m.group(4)) if m.group(4) else 0
    minute = int(m.group(5)) if m.group(5) else 0
    meridiem = (m.group(6) or "").upper()
    if meridiem == "PM" and hour < 12:
        hour += 12
    elif meridiem == "AM" and hour == 12:
        hour = 0
    try:
        return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None


# --- Descriptions and tags ---------------------------------------------------

PAYBILL_RE = re.compile(r"paybill\s+(?:no\.?\s*|number\s+)?(\w+)", re.IGNORECASE)
TILL_RE = re.compile(r"\btill\s+(?:no\.?\s*|number\s+)?(\w+)", re.IGNORECASE)

TAG_RULES: List[Tuple[str, re.Pattern]] = [
    ("mpesa", re.compile(r"m-?pesa", re.IGNORECASE)),
    ("paybill", re.compile(r"paybill", re.IGNORECASE)),
    ("till-number", re.compile(r"\btill\b", re.IGNORECASE)),
    ("airtime", re.compile(r"airtime", re.IGNORECASE)),
    ("withdrawal", re.compile(r"withdraw", re.IGNORECASE)),
]


def describe_transaction(
    text: str,
    direction: Direction,
    counterparty: Optional[str],
    provider: str = "Other",
    category_hint: str = "",
) -> str:
    """Human readable description stored alongside the record.

    Debits name the paybill or till when the text carries one, then airtime
    and withdrawals, then the counterparty.
    """
    if direction is Direction.DEBIT:
        paybill = PAYBILL_RE.search(text)
        if paybill:
            return f"Payment to {paybill.group(1)}"
        till = TILL_RE.search(text)
        if till:
            return f"Payment at Till {till.group(1)}"
        lowered = text.lower()
        if "airtime" in lowered:
            return "Airtime purchase"
        if "withdraw" in lowered:
            return "Cash withdrawal"
        if counterparty:
            return f"Paid to {counterparty}"
    elif counterparty:
        return f"Received from {counterparty}"
    return f"{provider} {category_hint}".strip()


def transaction_tags(text: str, reference: Optional[str] = None) -> List[str]:
    tags = ["sms-import"]
    tags.extend(tag for tag, pattern in TAG_RULES if pattern.search(text))
    if reference:
        tags.append("has-reference")
    return tags
