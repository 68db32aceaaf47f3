import logging
from datetime import date
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import storage
from .config import configure_logging, get_settings
from .crypto_utils import EncryptionError, decrypt_token, encrypt_token
from .email_parser import default_registry
from .email_processing import clear_history, process_emails, processing_stats
from .finance import (
    DEFAULT_CATEGORIES,
    budget_report,
    month_key,
    monthly_summary,
    predict_next_month,
)
from .habits import HabitError, complete_habit, habit_calendar, habit_stats, uncomplete_habit
from .models import (
    Budget,
    BudgetCreate,
    BudgetStatus,
    CompletionRequest,
    CreditCard,
    CreditCardCreate,
    CreditCardUpdate,
    EmailBatch,
    EmailConnection,
    EmailConnectionRequest,
    EmailConnectionStatus,
    EmailProcessingResult,
    EmailStats,
    ExpensePrediction,
    Habit,
    HabitCalendar,
    HabitCreate,
    HabitStatsResponse,
    MonthlySummary,
    RecurringRunResult,
    RecurringTransaction,
    RecurringTransactionCreate,
    RecurringTransactionUpdate,
    SettingsUpdate,
    Transaction,
    TransactionCreate,
    UncompleteRequest,
    UserSettings,
)
from .recurring import process_recurring
from .tracing import initialize_tracing

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Productivity Tracker API")

# CORS middleware for the React frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

initialize_tracing()

MONTH_PATTERN = r"^\d{4}-\d{2}$"


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/")
def read_root():
    return {"message": "Productivity Tracker API"}


@app.get("/health")
def health():
    return {"status": "ok"}


# Habits

def get_habit_or_404(habit_id: str) -> Habit:
    habit = storage.find_document(storage.HABITS, Habit, habit_id)
    if habit is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    return habit


@app.post("/habits", response_model=Habit, status_code=201)
def create_habit(request: HabitCreate):
    """Create a habit; grace days default to the user's setting"""
    grace_days = request.grace_days
    if grace_days is None:
        grace_days = storage.load_user_settings().default_grace_days

    habit = Habit(
        name=request.name,
        description=request.description,
        frequency=request.frequency,
        times_per_week=request.times_per_week,
        grace_days=grace_days,
    )
    storage.insert_document(storage.HABITS, habit)
    logger.info("Created habit %s (%s)", habit.name, habit.id)
    return habit


@app.get("/habits", response_model=List[Habit])
def list_habits(include_inactive: bool = False):
    habits = storage.load_documents(storage.HABITS, Habit)
    if include_inactive:
        return habits
    return [habit for habit in habits if habit.is_active]


@app.get("/habits/{habit_id}", response_model=Habit)
def get_habit(habit_id: str):
    return get_habit_or_404(habit_id)


@app.delete("/habits/{habit_id}")
def delete_habit(habit_id: str):
    """Deactivate a habit; its log is kept"""
    habit = get_habit_or_404(habit_id)
    storage.replace_document(storage.HABITS, habit.model_copy(update={"is_active": False}))
    return {"message": "Habit deactivated", "id": habit_id}


@app.post("/habits/{habit_id}/complete", response_model=Habit)
def complete(habit_id: str, request: Optional[CompletionRequest] = None):
    request = request or CompletionRequest()
    habit = get_habit_or_404(habit_id)
    try:
        updated = complete_habit(habit, on=request.date, notes=request.notes)
    except HabitError as e:
        raise HTTPException(status_code=400, detail=str(e))
    storage.replace_document(storage.HABITS, updated)
    return updated


@app.post("/habits/{habit_id}/uncomplete", response_model=Habit)
def uncomplete(habit_id: str, request: UncompleteRequest):
    habit = get_habit_or_404(habit_id)
    try:
        updated = uncomplete_habit(habit, on=request.date)
    except HabitError as e:
        raise HTTPException(status_code=400, detail=str(e))
    storage.replace_document(storage.HABITS, updated)
    return updated


@app.get("/habits/{habit_id}/stats", response_model=HabitStatsResponse)
def get_habit_stats(habit_id: str):
    return habit_stats(get_habit_or_404(habit_id))


@app.get("/habits/{habit_id}/calendar", response_model=HabitCalendar)
def get_habit_calendar(
    habit_id: str,
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
):
    habit = get_habit_or_404(habit_id)
    today = date.today()
    return habit_calendar(habit, year or today.year, month or today.month)


# Finance

@app.post("/finance/transactions", response_model=Transaction, status_code=201)
def create_transaction(request: TransactionCreate):
    if request.credit_card_id and storage.find_document(
        storage.CREDIT_CARDS, CreditCard, request.credit_card_id
    ) is None:
        raise HTTPException(status_code=404, detail="Credit card not found")
    transaction = Transaction(
        type=request.type,
        amount=request.amount,
        category=request.category,
        description=request.description,
        date=request.date or date.today(),
        payment_type=request.payment_type,
        credit_card_id=request.credit_card_id,
    )
    storage.insert_document(storage.TRANSACTIONS, transaction)
    return transaction


@app.get("/finance/transactions", response_model=List[Transaction])
def list_transactions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    transaction_type: Optional[str] = Query(default=None, alias="type"),
    category: Optional[str] = None,
):
    """List transactions, newest first"""
    transactions = storage.load_documents(storage.TRANSACTIONS, Transaction)
    if start_date:
        transactions = [t for t in transactions if t.date >= start_date]
    if end_date:
        transactions = [t for t in transactions if t.date <= end_date]
    if transaction_type:
        transactions = [t for t in transactions if t.type == transaction_type]
    if category:
        transactions = [t for t in transactions if t.category == category]
    return sorted(transactions, key=lambda t: t.date, reverse=True)


@app.delete("/finance/transactions/{transaction_id}")
def delete_transaction(transaction_id: str):
    if not storage.delete_documents(storage.TRANSACTIONS, "id", transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"message": "Transaction deleted", "id": transaction_id}


@app.post("/finance/budgets", response_model=Budget)
def upsert_budget(request: BudgetCreate):
    """Create a budget, or replace the limit of the category's budget for that month"""
    month = request.month or month_key(date.today())
    budgets = storage.load_documents(storage.BUDGETS, Budget)
    existing = next(
        (b for b in budgets if b.category == request.category and b.month == month), None
    )
    if existing:
        budget = existing.model_copy(update={"monthly_limit": request.monthly_limit})
        storage.replace_document(storage.BUDGETS, budget)
    else:
        budget = Budget(category=request.category, monthly_limit=request.monthly_limit, month=month)
        storage.insert_document(storage.BUDGETS, budget)
    return budget


@app.get("/finance/budgets", response_model=List[BudgetStatus])
def list_budgets(month: Optional[str] = Query(default=None, pattern=MONTH_PATTERN)):
    month = month or month_key(date.today())
    return budget_report(
        storage.load_documents(storage.BUDGETS, Budget),
        storage.load_documents(storage.TRANSACTIONS, Transaction),
        month,
    )


@app.delete("/finance/budgets/{budget_id}")
def delete_budget(budget_id: str):
    if not storage.delete_documents(storage.BUDGETS, "id", budget_id):
        raise HTTPException(status_code=404, detail="Budget not found")
    return {"message": "Budget deleted", "id": budget_id}


@app.get("/finance/summary", response_model=MonthlySummary)
def get_summary(month: Optional[str] = Query(default=None, pattern=MONTH_PATTERN)):
    month = month or month_key(date.today())
    return monthly_summary(storage.load_documents(storage.TRANSACTIONS, Transaction), month)


@app.get("/finance/predictions", response_model=ExpensePrediction)
def get_predictions():
    return predict_next_month(storage.load_documents(storage.TRANSACTIONS, Transaction), date.today())


@app.get("/finance/categories")
def get_categories():
    """Get the default income and expense categories"""
    return DEFAULT_CATEGORIES


# Credit cards

def get_card_or_404(card_id: str) -> CreditCard:
    card = storage.find_document(storage.CREDIT_CARDS, CreditCard, card_id)
    if card is None or not card.is_active:
        raise HTTPException(status_code=404, detail="Credit card not found")
    return card


@app.post("/finance/credit-cards", response_model=CreditCard, status_code=201)
def create_credit_card(request: CreditCardCreate):
    card = CreditCard(**request.model_dump())
    storage.insert_document(storage.CREDIT_CARDS, card)
    logger.info("Registered %s %s ending %s", card.bank_name, card.card_name, card.last4_digits)
    return card


@app.get("/finance/credit-cards", response_model=List[CreditCard])
def list_credit_cards():
    return [c for c in storage.load_documents(storage.CREDIT_CARDS, CreditCard) if c.is_active]


@app.get("/finance/credit-cards/{card_id}", response_model=CreditCard)
def get_credit_card(card_id: str):
    return get_card_or_404(card_id)


@app.patch("/finance/credit-cards/{card_id}", response_model=CreditCard)
def update_credit_card(card_id: str, request: CreditCardUpdate):
    card = get_card_or_404(card_id)
    updated = CreditCard.model_validate(
        {**card.model_dump(), **request.model_dump(exclude_unset=True, exclude_none=True)}
    )
    storage.replace_document(storage.CREDIT_CARDS, updated)
    return updated


@app.delete("/finance/credit-cards/{card_id}")
def delete_credit_card(card_id: str):
    """Deactivate a card; transactions linked to it keep their card id"""
    card = get_card_or_404(card_id)
    storage.replace_document(storage.CREDIT_CARDS, card.model_copy(update={"is_active": False}))
    return {"message": "Credit card deleted", "id": card_id}


# Recurring transactions

def get_recurring_or_404(recurring_id: str) -> RecurringTransaction:
    item = storage.find_document(storage.RECURRING, RecurringTransaction, recurring_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return item


@app.post("/finance/recurring", response_model=RecurringTransaction, status_code=201)
def create_recurring(request: RecurringTransactionCreate):
    fields = request.model_dump()
    fields["start_date"] = request.start_date or date.today()
    if request.end_date and request.end_date < fields["start_date"]:
        raise HTTPException(status_code=400, detail="end_date is before start_date")
    item = RecurringTransaction(**fields)
    storage.insert_document(storage.RECURRING, item)
    return item


@app.get("/finance/recurring", response_model=List[RecurringTransaction])
def list_recurring():
    return [r for r in storage.load_documents(storage.RECURRING, RecurringTransaction) if r.is_active]


@app.post("/finance/recurring/process", response_model=RecurringRunResult)
def run_recurring():
    """Create today's transactions for every due recurring item"""
    return process_recurring()


@app.patch("/finance/recurring/{recurring_id}", response_model=RecurringTransaction)
def update_recurring(recurring_id: str, request: RecurringTransactionUpdate):
    item = get_recurring_or_404(recurring_id)
    updated = RecurringTransaction.model_validate(
        {**item.model_dump(), **request.model_dump(exclude_unset=True, exclude_none=True)}
    )
    storage.replace_document(storage.RECURRING, updated)
    return updated


@app.delete("/finance/recurring/{recurring_id}")
def delete_recurring(recurring_id: str):
    item = get_recurring_or_404(recurring_id)
    storage.replace_document(storage.RECURRING, item.model_copy(update={"is_active": False}))
    return {"message": "Recurring transaction deactivated", "id": recurring_id}


# Email import

@app.post("/email/process", response_model=EmailProcessingResult)
def process(batch: EmailBatch):
    """Parse posted bank alert emails into expense transactions"""
    return process_emails(batch.emails)


@app.get("/email/supported-banks")
def supported_banks():
    return {"banks": default_registry().supported_banks()}


@app.get("/email/stats", response_model=EmailStats)
def email_stats():
    return processing_stats()


@app.delete("/email/history")
def delete_email_history():
    removed = clear_history()
    return {"message": "Email processing history cleared", "removed": removed}


def connection_status(connection: EmailConnection) -> EmailConnectionStatus:
    try:
        decrypt_token(connection.encrypted_token)
        token_valid = True
    except EncryptionError as e:
        logger.warning("Stored %s token is unusable: %s", connection.provider, e)
        token_valid = False
    return EmailConnectionStatus(
        provider=connection.provider, connected_at=connection.connected_at, token_valid=token_valid
    )


@app.post("/email/connections", response_model=EmailConnectionStatus, status_code=201)
def connect_email(request: EmailConnectionRequest):
    """Store an encrypted provider token, replacing any earlier one"""
    connection = EmailConnection(
        provider=request.provider,
        encrypted_token=encrypt_token(request.access_token),
    )
    if not storage.replace_document(storage.EMAIL_CONNECTIONS, connection, key="provider"):
        storage.insert_document(storage.EMAIL_CONNECTIONS, connection)
    return EmailConnectionStatus(provider=connection.provider, connected_at=connection.connected_at)


@app.get("/email/connections", response_model=List[EmailConnectionStatus])
def list_email_connections():
    """List connected providers; a token that no longer decrypts is reported as invalid"""
    return [
        connection_status(c) for c in storage.load_documents(storage.EMAIL_CONNECTIONS, EmailConnection)
    ]


@app.delete("/email/connections/{provider}")
def disconnect_email(provider: str):
    if not storage.delete_documents(storage.EMAIL_CONNECTIONS, "provider", provider):
        raise HTTPException(status_code=404, detail="Email connection not found")
    return {"message": "Email disconnected", "provider": provider}


# Settings

@app.get("/settings", response_model=UserSettings)
def get_user_settings():
    return storage.load_user_settings()


@app.patch("/settings", response_model=UserSettings)
def update_user_settings(request: SettingsUpdate):
    """Replace the settings record with one carrying the changed keys"""
    current = storage.load_user_settings()
    updated = UserSettings.model_validate(
        {**current.model_dump(), **request.model_dump(exclude_unset=True, exclude_none=True)}
    )
    storage.save_user_settings(updated)
    return updated
