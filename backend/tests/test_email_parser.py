"""Tests for bank alert email classification and parsing."""
from datetime import date
from decimal import Decimal

import pytest

from tracker.email_parser import (
    AxisEmailParser,
    EmailCategory,
    EmailParserRegistry,
    GenericEmailParser,
    HdfcEmailParser,
    HdfcInstaAlertsParser,
    IciciEmailParser,
    SbiEmailParser,
    build_date,
    classify_email,
    default_registry,
    detect_bank,
    normalize_body,
    parse_amount,
)


@pytest.fixture
def registry():
    return default_registry()


class TestClassification:
    """Exclusion rules run before any parser sees an email."""

    def test_otp_email_excluded(self, otp_email):
        result = classify_email(otp_email)
        assert result.category == EmailCategory.OTP
        assert result.is_excluded
        assert result.bank_name == "ICICI"

    def test_promotional_email_excluded(self, email_factory):
        email = email_factory(
            "promo-1",
            "marketing@hdfcbank.com",
            "Exclusive Cashback Offer!",
            "Spend Rs 5,000 on your HDFC Credit Card and get cashback on every transaction.",
        )
        assert classify_email(email).category == EmailCategory.PROMOTION

    def test_statement_email_excluded(self, email_factory):
        email = email_factory(
            "stmt-1",
            "statements@sbicard.com",
            "Your Monthly Statement is Ready",
            "Your SBI Card statement total is Rs 12,000.00.",
        )
        assert classify_email(email).category == EmailCategory.STATEMENT

    def test_reward_points_email_excluded(self, email_factory):
        email = email_factory(
            "reward-1",
            "alerts@axisbank.com",
            "You earned reward points",
            "Your transaction of Rs 1,000.00 earned 20 reward points.",
        )
        assert classify_email(email).category == EmailCategory.REWARD_POINTS

    def test_transaction_email(self, sbi_email):
        result = classify_email(sbi_email)
        assert result.category == EmailCategory.TRANSACTION
        assert not result.is_excluded
        assert result.bank_name == "SBI"

    def test_unknown_email(self, email_factory):
        email = email_factory("n-1", "friend@example.com", "Lunch?", "See you at noon.")
        result = classify_email(email)
        assert result.category == EmailCategory.UNKNOWN
        assert result.bank_name is None

    def test_registry_skips_excluded_email(self, registry, otp_email):
        assert registry.parse(otp_email) is None

    def test_detect_bank(self):
        assert detect_bank("HDFC Bank InstaAlerts <alerts@hdfcbank.net>") == "HDFC"
        assert detect_bank("creditcard@axisbank.com") == "Axis"
        assert detect_bank("someone@gmail.com") is None


class TestSbiParser:
    def test_parses_sample_alert(self, sbi_email):
        parser = SbiEmailParser()
        assert parser.can_parse(sbi_email)

        parsed = parser.parse(sbi_email)
        assert parsed.amount == Decimal("110.00")
        assert parsed.card_last4 == "0468"
        assert parsed.merchant_name == "BalajiBartanBhandar"
        assert parsed.transaction_date == date(2026, 2, 1)
        assert parsed.transaction_type == "DEBIT"
        assert parsed.bank_name == "SBI"
        assert parsed.message_id == "msg-sbi-1"

    def test_html_body(self, email_factory):
        email = email_factory(
            "sbi-html",
            "onlinesbicard@sbicard.com",
            "Transaction Alert from SBI Card",
            "<html><body><p>Rs.110.00 spent on your SBI Credit Card ending with 0468 at "
            "<b>BalajiBartanBhandar</b> on 01-02-26</p></body></html>",
        )
        parsed = SbiEmailParser().parse(email)
        assert parsed.amount == Decimal("110.00")
        assert parsed.merchant_name == "BalajiBartanBhandar"

    def test_rejects_other_bank(self, hdfc_email):
        assert not SbiEmailParser().can_parse(hdfc_email)


class TestHdfcParser:
    def test_parses_sample_alert(self, hdfc_email):
        parser = HdfcEmailParser()
        assert parser.can_parse(hdfc_email)

        parsed = parser.parse(hdfc_email)
        assert parsed.amount == Decimal("380.00")
        assert parsed.card_last4 == "5712"
        assert parsed.merchant_name == "MANISH SHOES GARMENTS"
        assert parsed.transaction_date == date(2026, 1, 30)
        assert parsed.transaction_time == "21:25:59"

    def test_missing_amount_returns_none(self, email_factory):
        email = email_factory(
            "hdfc-no-amount",
            "alerts@hdfcbank.com",
            "Transaction Alert from HDFC Bank Credit Card",
            "Your HDFC Bank Credit Card ending 5712 was used towards SHOP on 30 Jan, 2026.",
        )
        assert HdfcEmailParser().parse(email) is None


class TestHdfcInstaAlertsParser:
    @pytest.fixture
    def upi_email(self, email_factory):
        return email_factory(
            "hdfc-upi-1",
            "HDFC Bank InstaAlerts <alerts@hdfcbank.net>",
            "You have done a UPI txn. Check details!",
            "Dear Customer, Rs 110.00 debited from HDFC Bank Credit Card **5241 "
            "to VPA balaji.stores@okaxis on 29-01-26.",
        )

    def test_parses_upi_alert(self, upi_email):
        parser = HdfcInstaAlertsParser()
        assert parser.can_parse(upi_email)

        parsed = parser.parse(upi_email)
        assert parsed.amount == Decimal("110.00")
        assert parsed.card_last4 == "5241"
        assert parsed.merchant_name == "Balaji Stores"
        assert parsed.transaction_date == date(2026, 1, 29)
        assert parsed.bank_name == "HDFC"

    def test_rejects_account_alerts(self, email_factory):
        email = email_factory(
            "hdfc-acct",
            "HDFC Bank InstaAlerts <alerts@hdfcbank.net>",
            "Account update",
            "Rs 500.00 debited from your a/c XX1234 linked to Credit Card.",
        )
        assert not HdfcInstaAlertsParser().can_parse(email)

    def test_registry_prefers_insta_alerts(self, registry, upi_email):
        assert isinstance(registry.find_parser(upi_email), HdfcInstaAlertsParser)


class TestIciciParser:
    def test_parses_card_alert(self, email_factory):
        email = email_factory(
            "icici-1",
            "alerts@icicibank.com",
            "Alert: Card transaction for Rs 5,432.00",
            "Your ICICI Bank Credit Card ending 1234 has been used for Rs 5,432.00 "
            "at AMAZON on 31-Jan-26 at 14:30.",
        )
        parsed = IciciEmailParser().parse(email)
        assert parsed.amount == Decimal("5432.00")
        assert parsed.card_last4 == "1234"
        assert parsed.merchant_name == "AMAZON"
        assert parsed.transaction_date == date(2026, 1, 31)
        assert parsed.transaction_time == "14:30"

    def test_parses_masked_card(self, email_factory):
        email = email_factory(
            "icici-2",
            "credit.cards@icicibank.com",
            "Transaction notification",
            "Your Credit Card XX4567 has been debited with INR 2,150.00 at SWIGGY on 31-Jan-2026.",
        )
        parsed = IciciEmailParser().parse(email)
        assert parsed.amount == Decimal("2150.00")
        assert parsed.card_last4 == "4567"
        assert parsed.merchant_name == "SWIGGY"
        assert parsed.transaction_date == date(2026, 1, 31)

    def test_credit_alert(self, email_factory):
        email = email_factory(
            "icici-refund",
            "alerts@icicibank.com",
            "Refund processed",
            "Your ICICI Bank Credit Card ending 1234 has been credited with Rs 500.00 "
            "for a transaction at AMAZON on 31-Jan-26.",
        )
        assert IciciEmailParser().parse(email).transaction_type == "CREDIT"


class TestAxisParser:
    def test_parses_debit_alert(self, email_factory):
        email = email_factory(
            "axis-1",
            "alerts@axisbank.com",
            "Axis Bank Credit Card - Transaction Alert",
            "Your Axis Bank Credit Card ending 2345 is debited with Rs.8,900.50 "
            "for a transaction at SWIGGY on 31-Jan-26",
        )
        parsed = AxisEmailParser().parse(email)
        assert parsed.amount == Decimal("8900.50")
        assert parsed.card_last4 == "2345"
        assert parsed.merchant_name == "SWIGGY"
        assert parsed.transaction_date == date(2026, 1, 31)

    def test_parses_dotted_date(self, email_factory):
        email = email_factory(
            "axis-2",
            "creditcard@axisbank.com",
            "Axis Card charged",
            "Dear Customer, INR 2,100.00 spent on Axis Credit Card 4321 at BOOKMYSHOW on 31.01.26",
        )
        parsed = AxisEmailParser().parse(email)
        assert parsed.amount == Decimal("2100.00")
        assert parsed.card_last4 == "4321"
        assert parsed.merchant_name == "BOOKMYSHOW"
        assert parsed.transaction_date == date(2026, 1, 31)


class TestGenericParser:
    def test_parses_unknown_bank(self, email_factory):
        email = email_factory(
            "kotak-1",
            "alerts@kotak.com",
            "Card alert",
            "Your Kotak Credit Card ending 9876 was used for a purchase of Rs. 1,250.00 "
            "at CROMA on 15-01-26.",
        )
        parser = GenericEmailParser()
        assert parser.can_parse(email)

        parsed = parser.parse(email)
        assert parsed.amount == Decimal("1250.00")
        assert parsed.card_last4 == "9876"
        assert parsed.merchant_name == "CROMA"
        assert parsed.bank_name == "KOTAK"

    def test_requires_card_wording(self, email_factory):
        email = email_factory(
            "n-2", "shop@example.com", "Receipt", "You paid Rs 100.00 at CAFE."
        )
        assert not GenericEmailParser().can_parse(email)

    def test_missing_merchant_defaults_to_unknown(self, email_factory):
        email = email_factory(
            "generic-2",
            "alerts@example.com",
            "Card alert",
            "Rs 99.00 was debited on your credit card.",
        )
        parsed = GenericEmailParser().parse(email)
        assert parsed.merchant_name == "Unknown"
        assert parsed.card_last4 is None
        assert parsed.transaction_date is None


class TestRegistry:
    def test_dispatches_to_first_matching_parser(self, registry, sbi_email, hdfc_email):
        assert registry.parse(sbi_email).bank_name == "SBI"
        assert registry.parse(hdfc_email).bank_name == "HDFC"

    def test_unsupported_email_skipped(self, registry, email_factory):
        email = email_factory("n-3", "news@example.com", "Weekly digest", "Nothing here.")
        assert registry.find_parser(email) is None
        assert registry.parse(email) is None

    def test_supported_banks(self, registry):
        assert registry.supported_banks() == ["ICICI", "HDFC", "SBI", "Axis", "Generic"]

    def test_register(self, sbi_email):
        registry = EmailParserRegistry()
        assert registry.parse(sbi_email) is None
        registry.register(SbiEmailParser())
        assert registry.parse(sbi_email).amount == Decimal("110.00")


class TestHelpers:
    def test_parse_amount(self):
        assert parse_amount("1,23,456.78") == Decimal("123456.78")
        assert parse_amount("0.00") is None

    def test_build_date(self):
        assert build_date("01", "02", "26") == date(2026, 2, 1)
        assert build_date("30", "January", "2026") == date(2026, 1, 30)
        assert build_date("31", "02", "26") is None
        assert build_date("10", "Foo", "2026") is None

    def test_normalize_body(self):
        assert normalize_body("<p>Hello\n  <b>world</b></p>") == "Hello world"
        assert normalize_body("a\n\tb") == "a b"


class TestMerchantAndDateFormats:
    def test_merchant_starting_with_digit(self, email_factory):
        email = email_factory(
            "hdfc-1mg",
            "alerts@hdfcbank.com",
            "Transaction Alert from HDFC Bank Credit Card",
            "Rs.499.00 is debited from your HDFC Bank Credit Card ending 5712 towards "
            "1MG TECHNOLOGIES on 30 Jan, 2026 at 10:02:11.",
        )
        parsed = HdfcEmailParser().parse(email)
        assert parsed.merchant_name == "1MG TECHNOLOGIES"
        assert parsed.transaction_date == date(2026, 1, 30)

    def test_time_is_not_a_merchant(self, email_factory):
        email = email_factory(
            "generic-time",
            "alerts@example.com",
            "Card alert",
            "Rs 250.00 was debited on your credit card at 10:15.",
        )
        assert GenericEmailParser().parse(email).merchant_name == "Unknown"

    def test_month_first_date(self, email_factory):
        email = email_factory(
            "icici-month-first",
            "alerts@icicibank.com",
            "Transaction alert",
            "Your ICICI Bank Credit Card XX1234 has been used for INR 750.00 at ZOMATO on Jan 31, 2026.",
        )
        parsed = IciciEmailParser().parse(email)
        assert parsed.merchant_name == "ZOMATO"
        assert parsed.transaction_date == date(2026, 1, 31)
        assert parsed.card_last4 == "1234"
