"""Tests for the email batch processing pipeline."""
import logging
from datetime import date
from decimal import Decimal

import pytest

import tracker.tracing as tracing_module
from tracker import storage
from tracker.config import Settings
from tracker.email_parser import ParsedEmail
from tracker.email_processing import (
    clear_history,
    generate_content_hash,
    process_emails,
    processing_stats,
)
from tracker.models import Budget, CreditCard, Transaction, UserSettings


def stored_transactions():
    return storage.load_documents(storage.TRANSACTIONS, Transaction)


def test_creates_expense_transaction(temp_data_dir, sbi_email):
    result = process_emails([sbi_email])

    assert result.emails_received == 1
    assert result.transactions_created == 1
    transactions = stored_transactions()
    assert len(transactions) == 1
    txn = transactions[0]
    assert txn.id == result.transaction_ids[0]
    assert txn.type == "expense"
    assert txn.amount == Decimal("110.00")
    assert txn.category == "Shopping"
    assert txn.date == date(2026, 2, 1)
    assert txn.description == "BalajiBartanBhandar - SBI card ending 0468"
    assert txn.source_email_id == "msg-sbi-1"


def test_category_comes_from_settings(temp_data_dir, sbi_email):
    storage.save_user_settings(UserSettings(email_default_category="Food"))
    process_emails([sbi_email])
    assert stored_transactions()[0].category == "Food"


def test_same_message_skipped_on_second_run(temp_data_dir, sbi_email):
    process_emails([sbi_email])
    result = process_emails([sbi_email])
    assert result.already_processed == 1
    assert result.transactions_created == 0
    assert len(stored_transactions()) == 1


def test_duplicate_content_skipped(temp_data_dir, sbi_email):
    resent = sbi_email.model_copy(update={"message_id": "msg-sbi-2"})
    result = process_emails([sbi_email, resent])
    assert result.transactions_created == 1
    assert result.duplicate_content == 1


def test_excluded_emails_never_create_transactions(temp_data_dir, otp_email, email_factory):
    promo = email_factory(
        "promo-1",
        "marketing@hdfcbank.com",
        "Exclusive Cashback Offer!",
        "Spend Rs 5,000 on your HDFC Credit Card this week.",
    )
    statement = email_factory(
        "stmt-1",
        "statements@sbicard.com",
        "Your Monthly Statement is Ready",
        "Total due Rs 12,000.00 on your SBI Card.",
    )
    result = process_emails([otp_email, promo, statement])
    assert result.excluded == 3
    assert result.transactions_created == 0
    assert stored_transactions() == []


def test_outcome_counts(temp_data_dir, email_factory, hdfc_email):
    unsupported = email_factory("n-1", "news@example.com", "Weekly digest", "Nothing here.")
    no_amount = email_factory(
        "hdfc-no-amount",
        "alerts@hdfcbank.com",
        "Transaction Alert from HDFC Bank Credit Card",
        "Your HDFC Bank Credit Card ending 5712 was used towards SHOP on 30 Jan, 2026.",
    )
    refund = email_factory(
        "icici-refund",
        "alerts@icicibank.com",
        "Refund processed",
        "Your ICICI Bank Credit Card ending 1234 has been credited with Rs 500.00 "
        "for a transaction at AMAZON on 31-Jan-26.",
    )
    result = process_emails([unsupported, no_amount, refund, hdfc_email])

    assert result.unsupported == 1
    assert result.parse_failures == 1
    assert result.non_debit == 1
    assert result.transactions_created == 1

    stats = processing_stats()
    assert stats.total_processed == 4
    assert stats.successful == 1
    assert stats.failed == 3
    assert stats.transaction_hashes == 1


def test_falls_back_to_received_date(temp_data_dir, email_factory):
    email = email_factory(
        "generic-1",
        "alerts@example.com",
        "Card alert",
        "Rs 99.00 was debited on your credit card.",
    )
    process_emails([email])
    assert stored_transactions()[0].date == date(2026, 2, 1)


def test_budget_breach_alert(temp_data_dir, sbi_email):
    storage.insert_document(
        storage.BUDGETS, Budget(category="Shopping", monthly_limit=Decimal("100"), month="2026-02")
    )
    result = process_emails([sbi_email])
    assert len(result.alerts) == 1
    alert = result.alerts[0]
    assert alert.category == "Shopping"
    assert alert.month == "2026-02"
    assert alert.amount_over == Decimal("10.00")


def test_no_alert_when_already_exceeded(temp_data_dir, sbi_email):
    storage.insert_document(
        storage.BUDGETS, Budget(category="Shopping", monthly_limit=Decimal("50"), month="2026-02")
    )
    storage.insert_document(
        storage.TRANSACTIONS,
        Transaction(type="expense", amount=Decimal("60"), category="Shopping", date=date(2026, 2, 1)),
    )
    assert process_emails([sbi_email]).alerts == []


def test_no_alert_when_budget_alerts_off(temp_data_dir, sbi_email):
    storage.insert_document(
        storage.BUDGETS, Budget(category="Shopping", monthly_limit=Decimal("100"), month="2026-02")
    )
    result = process_emails([sbi_email], settings=UserSettings(budget_alerts=False))
    assert result.alerts == []


def test_error_aborts_batch(temp_data_dir, sbi_email, hdfc_email, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(storage, "insert_document", broken)
    with pytest.raises(RuntimeError):
        process_emails([sbi_email, hdfc_email])


def test_clear_history(temp_data_dir, sbi_email):
    process_emails([sbi_email])
    assert clear_history() == 1
    assert processing_stats().total_processed == 0

    # the email can be processed again once history is cleared
    assert process_emails([sbi_email]).transactions_created == 1


def test_content_hash_ignores_merchant_case_and_spacing():
    first = ParsedEmail(
        amount=Decimal("110"),
        merchant_name="Balaji Bartan",
        bank_name="SBI",
        card_last4="0468",
        transaction_date=date(2026, 2, 1),
    )
    second = ParsedEmail(
        amount=Decimal("110.00"),
        merchant_name="BALAJIBARTAN",
        bank_name="HDFC",
        card_last4="0468",
        transaction_date=date(2026, 2, 1),
    )
    assert generate_content_hash(first) == generate_content_hash(second)
    other_card = ParsedEmail(
        amount=Decimal("110"), merchant_name="Balaji Bartan", bank_name="SBI"
    )
    assert generate_content_hash(first) != generate_content_hash(other_card)


def test_no_alert_just_under_limit(temp_data_dir, sbi_email):
    storage.insert_document(
        storage.BUDGETS, Budget(category="Shopping", monthly_limit=Decimal("100000"), month="2026-02")
    )
    storage.insert_document(
        storage.TRANSACTIONS,
        Transaction(type="expense", amount=Decimal("99885.00"), category="Shopping", date=date(2026, 2, 1)),
    )
    # 99995.00 spent rounds to 100.00% but is still under the limit
    assert process_emails([sbi_email]).alerts == []


class BrokenSpan:
    def update(self, **kwargs):
        raise ConnectionError("langfuse unreachable")

    def end(self):
        raise ConnectionError("langfuse unreachable")


class BrokenLangfuse:
    def __init__(self, fail_on_create=False):
        self.fail_on_create = fail_on_create

    def create_trace_id(self):
        if self.fail_on_create:
            raise ConnectionError("langfuse unreachable")
        return "trace-1"

    def start_span(self, **kwargs):
        return BrokenSpan()

    def flush(self):
        raise ConnectionError("langfuse unreachable")


@pytest.fixture
def broken_tracer(monkeypatch):
    def install(**kwargs):
        tracer = tracing_module.LangfuseTracer(Settings())
        tracer.enabled = True
        tracer.client = BrokenLangfuse(**kwargs)
        monkeypatch.setattr(tracing_module, "_tracer", tracer)
        return tracer

    return install


def test_tracing_failures_do_not_stop_processing(temp_data_dir, sbi_email, broken_tracer, caplog):
    broken_tracer()
    with caplog.at_level(logging.WARNING, logger="tracker.tracing"):
        result = process_emails([sbi_email])

    assert result.transactions_created == 1
    assert len(stored_transactions()) == 1
    assert "Failed to add span parse_email to trace" in caplog.text
    assert "Failed to end trace" in caplog.text


def test_trace_creation_failure_is_logged(temp_data_dir, sbi_email, broken_tracer, caplog):
    broken_tracer(fail_on_create=True)
    with caplog.at_level(logging.WARNING, logger="tracker.tracing"):
        result = process_emails([sbi_email])

    assert result.transactions_created == 1
    assert "Failed to create trace process_emails" in caplog.text


@pytest.fixture
def sbi_card(temp_data_dir):
    card = CreditCard(
        card_name="SimplyCLICK",
        bank_name="SBI Card",
        last4_digits="0468",
        credit_limit=Decimal("100000"),
        due_date_day=5,
    )
    storage.insert_document(storage.CREDIT_CARDS, card)
    return card


def test_alert_linked_to_registered_card(sbi_card, sbi_email):
    result = process_emails([sbi_email])

    assert result.transactions_created == 1
    assert result.without_card == 0
    txn = stored_transactions()[0]
    assert txn.payment_type == "credit"
    assert txn.credit_card_id == sbi_card.id
    assert txn.description == "BalajiBartanBhandar - SBI Card SimplyCLICK"


def test_alert_without_card_stored_as_debit(temp_data_dir, sbi_email, caplog):
    with caplog.at_level(logging.WARNING, logger="tracker.email_processing"):
        result = process_emails([sbi_email])

    assert result.without_card == 1
    txn = stored_transactions()[0]
    assert txn.payment_type == "debit"
    assert txn.credit_card_id is None
    assert "No registered card for SBI ending 0468" in caplog.text


def test_existing_card_transaction_not_duplicated(sbi_card, sbi_email):
    entered = Transaction(
        type="expense",
        amount=Decimal("110"),
        category="Shopping",
        description="Bowls from BalajiBartanBhandar",
        date=date(2026, 2, 1),
        payment_type="credit",
        credit_card_id=sbi_card.id,
    )
    storage.insert_document(storage.TRANSACTIONS, entered)

    result = process_emails([sbi_email])

    assert result.existing_transaction == 1
    assert result.transactions_created == 0
    assert [t.id for t in stored_transactions()] == [entered.id]
    stats = processing_stats()
    assert stats.successful == 1
    assert stats.transaction_hashes == 1
