"""
Batch processing of bank alert emails into expense transactions.

Each email goes through classification, parser lookup, parsing and two
rounds of deduplication (by message id, then by transaction content)
before a Transaction is stored. Alerts are linked to a registered credit
card by bank and last four digits; a purchase already entered against
that card is linked rather than stored twice. Outcomes are counted in an
EmailProcessingResult and every examined email is recorded in the
processed-email ledger so it is never parsed twice.
"""

import hashlib
import logging
from datetime import datetime
from typing import Iterable, Optional, Set

from . import storage
from .credit_cards import find_credit_card, find_existing_card_transaction
from .email_parser import EmailParserRegistry, ParsedEmail, classify_email, default_registry
from .finance import EXCEEDED, budget_status, category_spent, month_key
from .models import (
    Budget,
    BudgetAlert,
    CreditCard,
    EmailProcessingResult,
    EmailStats,
    ProcessedEmail,
    RawEmail,
    Transaction,
    UserSettings,
)
from .tracing import get_tracer

logger = logging.getLogger(__name__)


def generate_content_hash(parsed: ParsedEmail) -> str:
    """
    Hash the identifying fields of a parsed transaction.

    Two alerts for the same purchase (say, a card alert and a UPI alert)
    share amount, date, merchant and card, so they hash alike.
    """
    txn_date = parsed.transaction_date.isoformat() if parsed.transaction_date else ""
    merchant = "".join(parsed.merchant_name.lower().split())
    content = "|".join(
        [
            f"{parsed.amount:.2f}",
            txn_date,
            merchant,
            parsed.card_last4 or "unknown",
        ]
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def describe_transaction(parsed: ParsedEmail, card: Optional[CreditCard] = None) -> str:
    if card is not None:
        return f"{parsed.merchant_name} - {card.bank_name} {card.card_name}"
    return f"{parsed.merchant_name} - {parsed.bank_name} card ending {parsed.card_last4 or '****'}"


def _record(email: RawEmail, parsed_successfully: bool, **fields) -> ProcessedEmail:
    record = ProcessedEmail(
        message_id=email.message_id,
        subject=email.subject,
        sender=email.sender,
        received_date=email.received_date,
        parsed_successfully=parsed_successfully,
        **fields,
    )
    storage.insert_document(storage.PROCESSED_EMAILS, record)
    return record


def _known_message_ids() -> Set[str]:
    return {doc.get("message_id") for doc in storage.load_collection(storage.PROCESSED_EMAILS)}


def _known_hashes() -> Set[str]:
    return {doc.get("hash") for doc in storage.load_collection(storage.TRANSACTION_HASHES)}


def _remember_hash(content_hash: str, transaction_id: str):
    hashes = storage.load_collection(storage.TRANSACTION_HASHES)
    hashes.append(
        {
            "hash": content_hash,
            "transaction_id": transaction_id,
            "created_at": datetime.now().isoformat(),
        }
    )
    storage.save_collection(storage.TRANSACTION_HASHES, hashes)


def check_budget_breach(transaction: Transaction) -> Optional[BudgetAlert]:
    """
    Return an alert if ``transaction`` pushed its category over budget.

    Only the insert that moves the status to Exceeded raises an alert;
    later spending in an already exceeded month does not.
    """
    month = month_key(transaction.date)
    budget = next(
        (
            b
            for b in storage.load_documents(storage.BUDGETS, Budget)
            if b.category == transaction.category and b.month == month
        ),
        None,
    )
    if budget is None:
        return None

    transactions = storage.load_documents(storage.TRANSACTIONS, Transaction)
    spent = category_spent(transactions, budget.category, month)
    before = budget_status(budget, spent - transaction.amount)
    after = budget_status(budget, spent)
    if after.status != EXCEEDED or before.status == EXCEEDED:
        return None

    return BudgetAlert(
        category=budget.category,
        month=month,
        spent=spent,
        monthly_limit=budget.monthly_limit,
        amount_over=spent - budget.monthly_limit,
    )


def process_emails(
    emails: Iterable[RawEmail],
    registry: Optional[EmailParserRegistry] = None,
    settings: Optional[UserSettings] = None,
) -> EmailProcessingResult:
    """
    Turn a batch of raw emails into expense transactions.

    Emails are handled one at a time in the order given. Any unexpected
    error stops the batch and propagates; emails handled before it stay
    recorded.

    Args:
        emails: Emails to process
        registry: Parser registry; defaults to every bundled bank parser
        settings: User settings; defaults to the stored settings

    Returns:
        EmailProcessingResult with a count for every outcome
    """
    emails = list(emails)
    registry = registry or default_registry()
    settings = settings or storage.load_user_settings()
    result = EmailProcessingResult(emails_received=len(emails))

    tracer = get_tracer()
    trace = tracer.create_trace("process_emails", metadata={"emails": len(emails)})

    try:
        seen_ids = _known_message_ids()
        seen_hashes = _known_hashes()
        cards = storage.load_documents(storage.CREDIT_CARDS, CreditCard)

        for email in emails:
            if email.message_id in seen_ids:
                logger.info("Skipping already processed email %s", email.message_id)
                result.already_processed += 1
                continue
            seen_ids.add(email.message_id)

            classification = classify_email(email)
            if classification.is_excluded:
                logger.info(
                    "Excluding %s email %s: %s",
                    classification.category.value,
                    email.message_id,
                    email.subject,
                )
                _record(
                    email,
                    False,
                    bank_name=classification.bank_name,
                    error_message=f"Excluded: {classification.category.value}",
                )
                result.excluded += 1
                continue

            parser = registry.find_parser(email)
            if parser is None:
                logger.info("No parser for email %s from %s", email.message_id, email.sender)
                _record(email, False, error_message="Unsupported sender or format")
                result.unsupported += 1
                continue

            parsed = parser.parse(email)
            tracer.add_span(
                trace,
                "parse_email",
                input_text=email.subject,
                output_text=f"{parsed.amount} at {parsed.merchant_name}" if parsed else None,
                metadata={"bank": parser.get_bank_name(), "parsed": parsed is not None},
            )
            if parsed is None:
                logger.info("[%s parser] Could not parse email %s", parser.get_bank_name(), email.message_id)
                _record(
                    email,
                    False,
                    bank_name=parser.get_bank_name(),
                    error_message="Failed to extract transaction details",
                )
                result.parse_failures += 1
                continue

            if parsed.transaction_type != "DEBIT":
                logger.info("Skipping %s alert %s", parsed.transaction_type, email.message_id)
                _record(
                    email,
                    False,
                    bank_name=parsed.bank_name,
                    error_message=f"Not a debit: {parsed.transaction_type}",
                )
                result.non_debit += 1
                continue

            content_hash = generate_content_hash(parsed)
            if content_hash in seen_hashes:
                logger.info("Duplicate transaction content in email %s", email.message_id)
                _record(
                    email,
                    False,
                    bank_name=parsed.bank_name,
                    content_hash=content_hash,
                    error_message="Duplicate transaction",
                )
                result.duplicate_content += 1
                continue

            txn_date = parsed.transaction_date or email.received_date.date()
            card = find_credit_card(cards, parsed.bank_name, parsed.card_last4)
            if card is None:
                logger.warning(
                    "No registered card for %s ending %s, storing email %s as a debit",
                    parsed.bank_name,
                    parsed.card_last4 or "****",
                    email.message_id,
                )
                result.without_card += 1
            else:
                existing = find_existing_card_transaction(
                    storage.load_documents(storage.TRANSACTIONS, Transaction),
                    card,
                    parsed.amount,
                    txn_date,
                    parsed.merchant_name,
                )
                if existing:
                    logger.info(
                        "Email %s matches existing transaction %s", email.message_id, existing.id
                    )
                    _remember_hash(content_hash, existing.id)
                    seen_hashes.add(content_hash)
                    _record(
                        email,
                        True,
                        bank_name=parsed.bank_name,
                        transaction_id=existing.id,
                        content_hash=content_hash,
                        error_message="Transaction already exists",
                    )
                    result.existing_transaction += 1
                    continue

            transaction = Transaction(
                type="expense",
                amount=parsed.amount,
                category=settings.email_default_category,
                description=describe_transaction(parsed, card),
                date=txn_date,
                source_email_id=email.message_id,
                payment_type="credit" if card else "debit",
                credit_card_id=card.id if card else None,
            )
            storage.insert_document(storage.TRANSACTIONS, transaction)
            _remember_hash(content_hash, transaction.id)
            seen_hashes.add(content_hash)
            _record(
                email,
                True,
                bank_name=parsed.bank_name,
                transaction_id=transaction.id,
                content_hash=content_hash,
            )
            logger.info(
                "Created transaction %s: %s %s",
                transaction.id,
                parsed.amount,
                transaction.description,
            )
            result.transactions_created += 1
            result.transaction_ids.append(transaction.id)

            if settings.budget_alerts:
                alert = check_budget_breach(transaction)
                if alert:
                    logger.warning(
                        "Budget exceeded for %s in %s: spent %s of %s",
                        alert.category,
                        alert.month,
                        alert.spent,
                        alert.monthly_limit,
                    )
                    result.alerts.append(alert)
    except Exception:
        logger.exception("Email processing aborted")
        raise
    finally:
        tracer.end_trace(trace, output=result.model_dump(mode="json", exclude={"transaction_ids", "alerts"}))

    return result


def processing_stats() -> EmailStats:
    records = storage.load_documents(storage.PROCESSED_EMAILS, ProcessedEmail)
    successful = sum(1 for record in records if record.parsed_successfully)
    return EmailStats(
        total_processed=len(records),
        successful=successful,
        failed=len(records) - successful,
        transaction_hashes=len(storage.load_collection(storage.TRANSACTION_HASHES)),
    )


def clear_history() -> int:
    """Forget every processed email and content hash; returns the number of emails forgotten."""
    removed = len(storage.load_collection(storage.PROCESSED_EMAILS))
    storage.save_collection(storage.PROCESSED_EMAILS, [])
    storage.save_collection(storage.TRANSACTION_HASHES, [])
    return removed
