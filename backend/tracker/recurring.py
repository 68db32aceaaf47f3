"""
Recurring transactions.

A recurring item is due at most once per period. Daily items fire once a
day, weekly items on their weekday, monthly items on their day of the
month, and yearly items on that day in the start date's month. Days of the
month past the end of a short month fall on its last day.
"""

import calendar
import logging
from datetime import date
from typing import Optional

from . import storage
from .models import RecurringRunResult, RecurringTransaction, Transaction

logger = logging.getLogger(__name__)


def weekday_number(day: date) -> int:
    """Day of the week with Sunday as 0."""
    return (day.weekday() + 1) % 7


def _day_of_month(item: RecurringTransaction, year: int, month: int) -> int:
    wanted = item.day_of_month or item.start_date.day
    return min(wanted, calendar.monthrange(year, month)[1])


def is_due(item: RecurringTransaction, today: date) -> bool:
    if not item.is_active or today < item.start_date:
        return False
    if item.end_date and today > item.end_date:
        return False

    last = item.last_processed
    if last is None:
        return True
    if last >= today:
        return False

    if item.frequency == "daily":
        return True
    if item.frequency == "weekly":
        weekday = item.day_of_week if item.day_of_week is not None else weekday_number(item.start_date)
        return (today - last).days >= 7 and weekday_number(today) == weekday
    if item.frequency == "monthly":
        return (today.year, today.month) != (last.year, last.month) and today.day == _day_of_month(
            item, today.year, today.month
        )
    # yearly
    return (
        today.year > last.year
        and today.month == item.start_date.month
        and today.day == _day_of_month(item, today.year, today.month)
    )


def make_transaction(item: RecurringTransaction, today: date) -> Transaction:
    return Transaction(
        type=item.type,
        amount=item.amount,
        category=item.category,
        description=f"{item.description or item.category} (Recurring)",
        date=today,
        is_recurring=True,
        recurring_id=item.id,
    )


def process_recurring(today: Optional[date] = None) -> RecurringRunResult:
    """Create a transaction for every due recurring item and mark it processed."""
    today = today or date.today()
    items = storage.load_documents(storage.RECURRING, RecurringTransaction)
    created = []

    for idx, item in enumerate(items):
        if not is_due(item, today):
            continue
        transaction = make_transaction(item, today)
        storage.insert_document(storage.TRANSACTIONS, transaction)
        items[idx] = item.model_copy(update={"last_processed": today})
        created.append(transaction.id)
        logger.info("Created recurring transaction %s from %s", transaction.id, item.id)

    if created:
        storage.save_documents(storage.RECURRING, items)
    return RecurringRunResult(transactions_created=len(created), transaction_ids=created)
