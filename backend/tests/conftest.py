"""Pytest configuration and fixtures for testing the Productivity Tracker API."""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

import tracker.crypto_utils as crypto_module
import tracker.storage as storage_module
import tracker.tracing as tracing_module
from tracker.config import Settings
from tracker.main import app
from tracker.models import RawEmail

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


@pytest.fixture(autouse=True)
def disabled_tracer(monkeypatch):
    """Never talk to Langfuse from tests."""
    monkeypatch.setattr(tracing_module, "_tracer", tracing_module.LangfuseTracer(Settings()))


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the document store at a temporary directory during testing."""
    data_dir = tmp_path / "data"
    monkeypatch.setattr(storage_module, "DATA_DIR", data_dir)
    return data_dir


@pytest.fixture
def encryption_key(monkeypatch):
    monkeypatch.setattr(
        crypto_module, "get_settings", lambda: Settings(encryption_key=TEST_ENCRYPTION_KEY)
    )
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def client(temp_data_dir, encryption_key):
    """Create a test client for the FastAPI application."""
    return TestClient(app)


def make_email(message_id, sender, subject, body, received=None):
    return RawEmail(
        message_id=message_id,
        sender=sender,
        subject=subject,
        body=body,
        received_date=received or datetime(2026, 2, 1, 10, 0),
    )


@pytest.fixture
def sbi_email():
    return make_email(
        "msg-sbi-1",
        "onlinesbicard@sbicard.com",
        "Transaction Alert from Reliance SBI Credit Card Premium",
        "Dear Cardholder, This is to inform you that, Rs.110.00 spent on your SBI Credit Card "
        "ending with 0468 at BalajiBartanBhandar on 01-02-26 via UPI (Ref No. 698462288282). "
        "Trxn. not done by you? Report at https://sbicard.com/Dispute.",
    )


@pytest.fixture
def hdfc_email():
    return make_email(
        "msg-hdfc-1",
        "alerts@hdfcbank.com",
        "Transaction Alert from HDFC Bank Credit Card",
        "Rs.380.00 is debited from your HDFC Bank Credit Card ending 5712 towards "
        "MANISH SHOES GARMENTS on 30 Jan, 2026 at 21:25:59. Available balance: Rs 89,620.00",
    )


@pytest.fixture
def otp_email():
    return make_email(
        "msg-otp-1",
        "alerts@icicibank.com",
        "OTP for ICICI Credit Card",
        "Your One Time Password is 123456 for a transaction of Rs 2,000.00 on your ICICI Bank Credit Card.",
    )


@pytest.fixture
def email_factory():
    return make_email
