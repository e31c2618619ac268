"""Tests for the individual extraction and rejection rules."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from packages.sms_ingestion.models import Direction
from packages.sms_ingestion.rules import (
    describe_transaction,
    detect_emoney_brand,
    detect_provider,
    extract_amount,
    extract_counterparty,
    extract_direction,
    extract_message_date,
    extract_reference,
    first_rejection,
    guess_payment_method,
    has_financial_signature,
    is_mini_statement,
    is_promotional,
    transaction_tags,
)


class TestAmount:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("You have received KES 1,250.00 from John", Decimal("1250.00")),
            ("Ksh1,000 sent to Ann", Decimal("1000")),
            ("Ksh. 50 paid", Decimal("50")),
            ("USD 12.50 charged on card", Decimal("12.50")),
            ("1,234.56 KES debited", Decimal("1234.56")),
        ],
    )
    def test_currency_tagged_amounts(self, text, expected):
        assert extract_amount(text) == expected

    def test_first_amount_wins(self):
        assert extract_amount("Ksh 100.00 sent. New balance is Ksh 5,000.00") == Decimal("100.00")

    def test_untagged_number_is_not_an_amount(self):
        assert extract_amount("Your PIN 1234 was changed") is None


class TestDirection:
    def test_exclusive_credit(self):
        assert extract_direction("Ksh 100 received from Ann") is Direction.CREDIT

    def test_exclusive_debit(self):
        assert extract_direction("Ksh 100 paid to Bob") is Direction.DEBIT

    def test_both_sets_earliest_keyword_wins(self):
        assert extract_direction("Ksh 100 received from Ann. Transaction charged Ksh 0") is Direction.CREDIT
        assert extract_direction("Ksh 100 sent to Bob. Cashback of Ksh 1 applied") is Direction.DEBIT

    def test_preposition_fallback(self):
        assert extract_direction("Ksh 100 from Ann") is Direction.CREDIT
        assert extract_direction("Ksh 100 to Bob") is Direction.DEBIT

    def test_no_signal_is_ambiguous(self):
        assert extract_direction("Ksh 100") is None


class TestReference:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Ref ABC123 received", "ABC123"),
            ("Ref No. AB12345 processed", "AB12345"),
            ("Reference: TRX-789", "TRX-789"),
            ("Transaction ID: 9XK2LM", "9XK2LM"),
            ("TranID 77AA11 done", "77AA11"),
            ("Receipt No. RC5512 issued", "RC5512"),
            ("QK81XYZ23A Confirmed. Ksh 20 sent", "QK81XYZ23A"),
        ],
    )
    def test_reference_formats(self, text, expected):
        assert extract_reference(text) == expected

    def test_reference_needs_a_digit(self):
        assert extract_reference("Reference: hello there") is None


class TestCounterparty:
    def test_credit_prefers_from(self):
        text = "Ksh 500 received from Jane Doe to your M-PESA"
        assert extract_counterparty(text, Direction.CREDIT) == "Jane Doe"

    def test_debit_prefers_to(self):
        text = "Ksh 500 sent to Bob Otieno from your account"
        assert extract_counterparty(text, Direction.DEBIT) == "Bob Otieno"

    def test_self_references_are_ignored(self):
        assert extract_counterparty("Ksh 500 received from your account", Direction.CREDIT) is None

    def test_brand_fallback(self):
        assert extract_counterparty("Airtel Money: Ksh 300 received", Direction.CREDIT) == "Airtel Money"

    def test_bank_name_fallback(self):
        assert extract_counterparty("Equity Bank: Ksh 300 credited", Direction.CREDIT) == "Equity Bank"


class TestSignatures:
    def test_emoney_brand(self):
        assert detect_emoney_brand("T-Kash: you have received Ksh 5") == "T-Kash"
        assert detect_emoney_brand("Plain text") is None

    def test_provider_specific_before_generic_bank(self):
        assert detect_provider("KCB Bank: your account was debited") == "KCB"
        assert detect_provider("Withdrawn at ATM") == "Bank"
        assert detect_provider("Hello") == "Other"

    def test_payment_method(self):
        assert guess_payment_method("M-PESA: Ksh 5 sent") == "mobile_money"
        assert guess_payment_method("Card purchase of USD 5") == "card"
        assert guess_payment_method("Ksh 500 withdrawn at ATM") == "cash"
        assert guess_payment_method("Acct 1234 credited with Ksh 5") == "bank_transfer"

    def test_financial_signature(self):
        assert has_financial_signature("M-PESA: Ksh 5 sent")
        assert has_financial_signature("Your account was debited")
        assert not has_financial_signature("You spent KES 500 at Cafe Latte", "Cafe Latte")


class TestRejectionPredicates:
    def test_promotional_exempts_strong_signals(self):
        assert is_promotional("Big sale this weekend only")
        assert not is_promotional("Ksh 100 received from Ann. Sale ends soon")

    def test_mini_statement_needs_segments_and_trailing_cost(self):
        assert is_mini_statement("[A Ksh 1] [B Ksh 2] Transaction cost Ksh 0")
        assert not is_mini_statement("[A Ksh 1] Transaction cost Ksh 0")
        assert not is_mini_statement("[A Ksh 1] [B Ksh 2]")

    def test_due_date_mention_alone_is_not_a_reminder(self):
        assert first_rejection("Fuliza outstanding amount is Ksh 1,015.00 due on 12/10/2025.") is None


class TestMessageDate:
    def test_day_first_with_time(self):
        assert extract_message_date("sent on 5/10/25 at 3:45 PM") == datetime(
            2025, 10, 5, 15, 45, tzinfo=timezone.utc
        )

    def test_date_only(self):
        assert extract_message_date("received on 12/09/2025") == datetime(2025, 9, 12, tzinfo=timezone.utc)

    def test_invalid_date(self):
        assert extract_message_date("on 31/02/2025") is None


class TestTags:
    def test_mpesa_with_reference(self):
        assert transaction_tags("MPESA: Ksh 100 sent to Ann", "QK11AB") == ["sms-import", "mpesa", "has-reference"]

    def test_paybill_and_till(self):
        assert transaction_tags("Ksh 500 paid via Paybill 888880") == ["sms-import", "paybill"]
        assert transaction_tags("Ksh 350 paid at Till No. 552211") == ["sms-import", "till-number"]

    def test_airtime_and_withdrawal(self):
        assert transaction_tags("M-PESA airtime Ksh 50 bought") == ["sms-import", "mpesa", "airtime"]
        assert transaction_tags("Ksh 3,500 withdrawn at ATM") == ["sms-import", "withdrawal"]

    def test_till_is_a_whole_word(self):
        assert "till-number" not in transaction_tags("Ksh 20 paid, balance still positive")


class TestDescription:
    def test_credit_names_the_sender(self):
        assert describe_transaction("Ksh 10 received", Direction.CREDIT, "Ann") == "Received from Ann"

    def test_till_number_label_is_skipped(self):
        text = "Ksh 350 paid to Mama Mboga Till No. 552211"
        assert describe_transaction(text, Direction.DEBIT, "Mama Mboga") == "Payment at Till 552211"

    def test_paybill_applies_to_debits_only(self):
        text = "Ksh 500 received from Paybill 888880"
        assert describe_transaction(text, Direction.CREDIT, "Paybill") == "Received from Paybill"

    def test_falls_back_to_provider_and_hint(self):
        assert describe_transaction("Ksh 15 charged", Direction.DEBIT, None, "M-Pesa", "Fees") == "M-Pesa Fees"
