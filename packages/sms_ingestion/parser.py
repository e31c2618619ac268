"""
SMS Parser - turns provider notification text into a candidate transaction.

Pipeline: rejection rules (short-circuit) -> special cases (Fuliza fee,
airtime recharge) -> generic extraction (amount, direction, reference,
counterparty, category hint) -> acceptance checks.
"""

from datetime import datetime
from typing import List, Optional, Tuple

import structlog

from .categories import detect_category_hint
from .models import ParsedTransaction
from .rules import (
    REJECTION_RULES,
    SPECIAL_CASES,
    RejectionRule,
    SpecialCase,
    describe_transaction,
    detect_provider,
    extract_amount,
    extract_counterparty,
    extract_direction,
    extract_message_date,
    extract_reference,
    first_rejection,
    guess_payment_method,
    has_financial_signature,
)

logger = structlog.get_logger()

# Rejection reasons produced outside the rule table
REASON_NO_AMOUNT = "no_amount"
REASON_AMBIGUOUS_DIRECTION = "ambiguous_direction"
REASON_NO_FINANCIAL_SIGNATURE = "no_financial_signature"
REASON_EMPTY = "empty_body"


class SmsParser:
    """Rule-driven classifier for mobile-money and bank notifications."""

    def __init__(
        self,
        rejection_rules: Optional[List[RejectionRule]] = None,
        special_cases: Optional[List[SpecialCase]] = None,
    ):
        self.rejection_rules = rejection_rules if rejection_rules is not None else REJECTION_RULES
        self.special_cases = special_cases if special_cases is not None else SPECIAL_CASES

    def parse(self, body: str, captured_at: Optional[datetime] = None) -> Optional[ParsedTransaction]:
        parsed, _ = self.parse_with_reason(body, captured_at)
        return parsed

    def parse_with_reason(
        self, body: str, captured_at: Optional[datetime] = None
    ) -> Tuple[Optional[ParsedTransaction], str]:
        """Parse a message body, returning the transaction or the rejection reason."""
        text = (body or "").strip()
        if not text:
            return None, REASON_EMPTY

        rejected_by = first_rejection(text, self.rejection_rules)
        if rejected_by:
            return None, rejected_by

        occurred_at = captured_at or extract_message_date(text)
        reference = extract_reference(text)
        provider = detect_provider(text)
        payment_method = guess_payment_method(text)

        for case in self.special_cases:
            if not case.applies(text):
                continue
            extraction = case.extract(text)
            if extraction is None:
                return None, f"{case.name}_unmatched"
            return (
                ParsedTransaction(
                    amount=extraction.amount,
                    direction=extraction.direction,
                    counterparty=extraction.counterparty,
                    reference_code=reference,
                    category_hint=extraction.category_hint,
                    raw_text=text,
                    occurred_at=occurred_at,
                    provider=provider,
                    payment_method=payment_method,
                    description=describe_transaction(
                        text, extraction.direction, extraction.counterparty, provider, extraction.category_hint
                    ),
                ),
                case.name,
            )

        amount = extract_amount(text)
        if amount is None or amount <= 0:
            return None, REASON_NO_AMOUNT

        direction = extract_direction(text)
        if direction is None:
            return None, REASON_AMBIGUOUS_DIRECTION

        counterparty = extract_counterparty(text, direction)
        if reference is None and not has_financial_signature(text, counterparty):
            return None, REASON_NO_FINANCIAL_SIGNATURE

        category_hint = detect_category_hint(text, direction)

        return (
            ParsedTransaction(
                amount=amount,
                direction=direction,
                counterparty=counterparty,
                reference_code=reference,
                category_hint=category_hint,
                raw_text=text,
                occurred_at=occurred_at,
                provider=provider,
                payment_method=payment_method,
                description=describe_transaction(text, direction, counterparty, provider, category_hint),
            ),
            "parsed",
        )


def parse_sms(body: str, captured_at: Optional[datetime] = None) -> Optional[ParsedTransaction]:
    """
    Convenience function to parse a single message with the default rules.

    Args:
        body: Message text
        captured_at: Device capture timestamp, if known

    Returns:
        ParsedTransaction or None when the message is not a transaction
    """
    parsed, reason = SmsParser().parse_with_reason(body, captured_at)
    if parsed is None:
        logger.debug("sms_parse_rejected", reason=reason)
    return parsed
