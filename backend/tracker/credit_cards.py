"""
Credit card registry lookups.

Parsed alert emails carry only a bank name and the last four card digits;
these helpers resolve them to a registered card and spot transactions
already entered against that card.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from .email_parser import UNKNOWN_MERCHANT
from .models import CreditCard, Transaction

MIN_MERCHANT_MATCH = 3


def find_credit_card(
    cards: Iterable[CreditCard], bank_name: str, last4: Optional[str] = None
) -> Optional[CreditCard]:
    """
    Find the active card for a parsed alert.

    The bank name matches case-insensitively as a substring of the card's
    bank name ("HDFC" finds "HDFC Bank"). When last4 is given it must match
    too.
    """
    wanted = bank_name.lower()
    for card in cards:
        if not card.is_active or wanted not in card.bank_name.lower():
            continue
        if last4 and card.last4_digits != last4:
            continue
        return card
    return None


def find_existing_card_transaction(
    transactions: Iterable[Transaction],
    card: CreditCard,
    amount: Decimal,
    on: date,
    merchant_name: str,
) -> Optional[Transaction]:
    """Find a credit expense on ``card`` with the same amount and day, naming the merchant if known."""
    check_merchant = merchant_name != UNKNOWN_MERCHANT and len(merchant_name) >= MIN_MERCHANT_MATCH
    for txn in transactions:
        if (
            txn.type != "expense"
            or txn.payment_type != "credit"
            or txn.credit_card_id != card.id
            or txn.amount != amount
            or txn.date != on
        ):
            continue
        if check_merchant and merchant_name.lower() not in txn.description.lower():
            continue
        return txn
    return None
