# Data models for the productivity tracker application
import uuid
import datetime as dt
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

HabitFrequency = Literal["daily", "weekly", "custom"]
TransactionType = Literal["income", "expense"]
PaymentType = Literal["cash", "debit", "credit"]
RecurringFrequency = Literal["daily", "weekly", "monthly", "yearly"]
EmailProvider = Literal["gmail", "outlook"]


def new_id() -> str:
    return uuid.uuid4().hex


# Habits

class HabitLogEntry(BaseModel):
    date: dt.date
    completed: bool = True
    notes: str = ""


class HabitCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    frequency: HabitFrequency = "daily"
    times_per_week: Optional[int] = Field(default=None, ge=1, le=7)
    grace_days: Optional[int] = Field(default=None, ge=0)


class Habit(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    frequency: HabitFrequency = "daily"
    times_per_week: Optional[int] = None
    grace_days: int = 1
    completions: List[HabitLogEntry] = Field(default_factory=list)
    is_active: bool = True
    created_on: dt.date = Field(default_factory=dt.date.today)


class CompletionRequest(BaseModel):
    date: Optional[dt.date] = None
    notes: str = ""


class UncompleteRequest(BaseModel):
    date: dt.date


class StreakStats(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    total_completions: int = 0
    success_rate: float = 0.0


class HabitStatsResponse(StreakStats):
    habit: Habit
    last_7_days: int
    last_30_days: int
    history: List[HabitLogEntry]


class HabitCalendar(BaseModel):
    year: int
    month: int
    calendar: Dict[str, bool]
    streak: int
    total_days: int


# Finance

class TransactionCreate(BaseModel):
    type: TransactionType
    amount: Decimal = Field(gt=0)
    category: str = Field(min_length=1)
    description: str = ""
    date: Optional[dt.date] = None
    payment_type: PaymentType = "cash"
    credit_card_id: Optional[str] = None


class Transaction(BaseModel):
    id: str = Field(default_factory=new_id)
    type: TransactionType
    amount: Decimal = Field(gt=0)
    category: str
    description: str = ""
    date: dt.date
    source_email_id: Optional[str] = None
    payment_type: PaymentType = "cash"
    credit_card_id: Optional[str] = None
    is_recurring: bool = False
    recurring_id: Optional[str] = None


class BudgetCreate(BaseModel):
    category: str = Field(min_length=1)
    monthly_limit: Decimal = Field(gt=0)
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")


class Budget(BaseModel):
    id: str = Field(default_factory=new_id)
    category: str
    monthly_limit: Decimal
    month: str


class BudgetStatus(BaseModel):
    budget: Budget
    spent: Decimal
    # capped at 100 for display; percentage_used carries the raw value
    percentage: Decimal
    percentage_used: Decimal
    status: str


class CategoryAmount(BaseModel):
    category: str
    amount: Decimal


class FinanceSummary(BaseModel):
    income: Decimal
    expenses: Decimal
    savings: Decimal
    savings_rate: Decimal
    category_breakdown: Dict[str, Decimal]
    highest_category: Optional[CategoryAmount] = None


class MonthComparison(BaseModel):
    last_month_expenses: Decimal
    expense_change: Decimal


class MonthlySummary(FinanceSummary):
    month: str
    comparison: MonthComparison


class ExpensePrediction(BaseModel):
    months: List[str]
    predictions: Dict[str, Decimal]
    total: Decimal


# Credit cards

class CreditCardCreate(BaseModel):
    card_name: str = Field(min_length=1)
    bank_name: str = Field(min_length=1)
    last4_digits: str = Field(pattern=r"^\d{4}$")
    credit_limit: Decimal = Field(ge=0)
    outstanding_amount: Decimal = Field(default=Decimal("0"), ge=0)
    monthly_limit: Optional[Decimal] = Field(default=None, ge=0)
    billing_cycle_start_day: int = Field(default=1, ge=1, le=31)
    due_date_day: int = Field(ge=1, le=31)
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class CreditCard(CreditCardCreate):
    id: str = Field(default_factory=new_id)
    is_active: bool = True
    created_at: dt.datetime = Field(default_factory=dt.datetime.now)


class CreditCardUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    card_name: Optional[str] = Field(default=None, min_length=1)
    bank_name: Optional[str] = Field(default=None, min_length=1)
    last4_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)
    outstanding_amount: Optional[Decimal] = Field(default=None, ge=0)
    monthly_limit: Optional[Decimal] = Field(default=None, ge=0)
    billing_cycle_start_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_date_day: Optional[int] = Field(default=None, ge=1, le=31)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)


# Recurring transactions

class RecurringTransactionCreate(BaseModel):
    type: TransactionType
    amount: Decimal = Field(gt=0)
    category: str = Field(min_length=1)
    description: str = ""
    frequency: RecurringFrequency
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    # 0 is Sunday
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class RecurringTransaction(BaseModel):
    id: str = Field(default_factory=new_id)
    type: TransactionType
    amount: Decimal = Field(gt=0)
    category: str
    description: str = ""
    frequency: RecurringFrequency
    day_of_month: Optional[int] = None
    day_of_week: Optional[int] = None
    start_date: dt.date
    end_date: Optional[dt.date] = None
    is_active: bool = True
    last_processed: Optional[dt.date] = None


class RecurringTransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    frequency: Optional[RecurringFrequency] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    end_date: Optional[dt.date] = None
    is_active: Optional[bool] = None


class RecurringRunResult(BaseModel):
    transactions_created: int
    transaction_ids: List[str]


# Email import

class RawEmail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str
    subject: str = ""
    sender: str = Field(alias="from")
    body: str = ""
    received_date: dt.datetime
    snippet: str = ""


class EmailBatch(BaseModel):
    emails: List[RawEmail]


class ProcessedEmail(BaseModel):
    message_id: str
    subject: str = ""
    sender: str = ""
    received_date: dt.datetime
    parsed_successfully: bool
    bank_name: Optional[str] = None
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    content_hash: Optional[str] = None
    processed_at: dt.datetime = Field(default_factory=dt.datetime.now)


class BudgetAlert(BaseModel):
    category: str
    month: str
    spent: Decimal
    monthly_limit: Decimal
    amount_over: Decimal


class EmailProcessingResult(BaseModel):
    emails_received: int = 0
    transactions_created: int = 0
    already_processed: int = 0
    excluded: int = 0
    unsupported: int = 0
    parse_failures: int = 0
    non_debit: int = 0
    duplicate_content: int = 0
    existing_transaction: int = 0
    without_card: int = 0
    transaction_ids: List[str] = Field(default_factory=list)
    alerts: List[BudgetAlert] = Field(default_factory=list)


class EmailStats(BaseModel):
    total_processed: int
    successful: int
    failed: int
    transaction_hashes: int


class EmailConnectionRequest(BaseModel):
    provider: EmailProvider
    access_token: str = Field(min_length=1)


class EmailConnection(BaseModel):
    provider: EmailProvider
    encrypted_token: str
    connected_at: dt.datetime = Field(default_factory=dt.datetime.now)


class EmailConnectionStatus(BaseModel):
    provider: EmailProvider
    connected_at: dt.datetime
    token_valid: bool = True


# Settings

class UserSettings(BaseModel):
    """Per-user preferences. Never mutated; updates build a new record."""

    model_config = ConfigDict(frozen=True)

    currency: str = "INR"
    default_grace_days: int = Field(default=1, ge=0)
    email_default_category: str = "Shopping"
    budget_alerts: bool = True
    habit_reminders: bool = True
    theme: Literal["light", "dark", "system"] = "system"


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    currency: Optional[str] = None
    default_grace_days: Optional[int] = Field(default=None, ge=0)
    email_default_category: Optional[str] = None
    budget_alerts: Optional[bool] = None
    habit_reminders: Optional[bool] = None
    theme: Optional[Literal["light", "dark", "system"]] = None
