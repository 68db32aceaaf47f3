"""
Finance aggregation: monthly summaries, budget status and expense predictions.

All money is handled as Decimal. Percentages are rounded to two places.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .models import (
    Budget,
    BudgetStatus,
    CategoryAmount,
    ExpensePrediction,
    FinanceSummary,
    MonthComparison,
    MonthlySummary,
    Transaction,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

EXCEEDED = "Exceeded"
NEAR_LIMIT = "Near Limit"
ON_TRACK = "On Track"
NEAR_LIMIT_THRESHOLD = Decimal("80")

DEFAULT_CATEGORIES = {
    "expense": ["Food", "Travel", "Rent", "Utilities", "Shopping", "Entertainment", "Health", "Education", "Other"],
    "income": ["Salary", "Freelance", "Investment", "Gift", "Other"],
}


def month_key(day: date) -> str:
    return day.strftime("%Y-%m")


def shift_month(month: str, delta: int) -> str:
    """Move a ``YYYY-MM`` key by ``delta`` months."""
    year, month_number = (int(part) for part in month.split("-"))
    index = year * 12 + (month_number - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO
    return (part / whole * HUNDRED).quantize(TWO_PLACES)


def in_month(transactions: Iterable[Transaction], month: str) -> List[Transaction]:
    return [t for t in transactions if month_key(t.date) == month]


def category_breakdown(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in transactions:
        if t.type == "expense":
            totals[t.category] += t.amount
    return dict(totals)


def summarize(transactions: Iterable[Transaction]) -> FinanceSummary:
    """
    Sum a set of transactions into income, expenses and savings.

    The savings rate is 0 when there is no income.
    """
    transactions = list(transactions)
    income = sum((t.amount for t in transactions if t.type == "income"), ZERO)
    expenses = sum((t.amount for t in transactions if t.type == "expense"), ZERO)
    savings = income - expenses
    breakdown = category_breakdown(transactions)

    highest: Optional[CategoryAmount] = None
    if breakdown:
        category = max(breakdown, key=lambda name: breakdown[name])
        highest = CategoryAmount(category=category, amount=breakdown[category])

    return FinanceSummary(
        income=income,
        expenses=expenses,
        savings=savings,
        savings_rate=percent(savings, income) if income > 0 else ZERO,
        category_breakdown=breakdown,
        highest_category=highest,
    )


def monthly_summary(transactions: Iterable[Transaction], month: str) -> MonthlySummary:
    transactions = list(transactions)
    summary = summarize(in_month(transactions, month))

    last_month_expenses = sum(
        (t.amount for t in in_month(transactions, shift_month(month, -1)) if t.type == "expense"),
        ZERO,
    )
    change = percent(summary.expenses - last_month_expenses, last_month_expenses)

    return MonthlySummary(
        **summary.model_dump(),
        month=month,
        comparison=MonthComparison(
            last_month_expenses=last_month_expenses,
            expense_change=change,
        ),
    )


def status_label(spent: Decimal, limit: Decimal) -> str:
    """Label spending against a limit. Compares exact amounts, not rounded percentages."""
    if spent >= limit:
        return EXCEEDED
    if spent * HUNDRED >= limit * NEAR_LIMIT_THRESHOLD:
        return NEAR_LIMIT
    return ON_TRACK


def budget_status(budget: Budget, spent: Decimal) -> BudgetStatus:
    used = percent(spent, budget.monthly_limit)
    return BudgetStatus(
        budget=budget,
        spent=spent,
        percentage=min(used, HUNDRED),
        percentage_used=used,
        status=status_label(spent, budget.monthly_limit),
    )


def category_spent(transactions: Iterable[Transaction], category: str, month: str) -> Decimal:
    return sum(
        (
            t.amount
            for t in transactions
            if t.type == "expense" and t.category == category and month_key(t.date) == month
        ),
        ZERO,
    )


def budget_report(budgets: Iterable[Budget], transactions: Iterable[Transaction],
                  month: str) -> List[BudgetStatus]:
    transactions = list(transactions)
    return [
        budget_status(budget, category_spent(transactions, budget.category, month))
        for budget in budgets
        if budget.month == month
    ]


def predict_next_month(transactions: Iterable[Transaction], today: date,
                       window: int = 3) -> ExpensePrediction:
    """
    Predict next month's expenses per category.

    Each category's prediction is the mean of its monthly totals over the
    current month and the ``window - 1`` months before it, counting only
    months in which the category had spending.
    """
    transactions = list(transactions)
    current = month_key(today)
    months = [shift_month(current, -offset) for offset in range(window)]

    history: Dict[str, List[Decimal]] = defaultdict(list)
    for month in months:
        for category, amount in category_breakdown(in_month(transactions, month)).items():
            history[category].append(amount)

    predictions = {
        category: (sum(amounts, ZERO) / len(amounts)).quantize(TWO_PLACES)
        for category, amounts in history.items()
    }
    return ExpensePrediction(
        months=months,
        predictions=predictions,
        total=sum(predictions.values(), ZERO),
    )
