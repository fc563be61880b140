"""
Pytest configuration and shared fixtures.

Environment defaults are set before any app import so the settings object
and the engine are built against the test database.
"""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_pharmacy_sms.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from pharmacy_sms.config import get_settings
get_settings.cache_clear()

from pharmacy_sms.errors import ProviderError
from pharmacy_sms.main import app
from pharmacy_sms.models import Message, OutboundNumber, Patient
from pharmacy_sms.provider import SendResult, get_sms_provider
from pharmacy_sms.storage import Base, SessionLocal, engine


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeSmsProvider:
    """Records sends instead of calling the carrier."""

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, number, to, body, status_callback=None):
        self.sent.append({
            "from": number.phone_number,
            "number_id": number.id,
            "to": to,
            "body": body,
            "status_callback": status_callback,
        })
        if self.error is not None:
            raise self.error
        return SendResult(sid=f"SM{len(self.sent):032d}", status="queued", raw={"status": "queued"})

    def reject(self, message="The 'To' number is not a valid phone number.", code=21211):
        self.error = ProviderError(message, details={"code": code, "message": message, "status": 400})


@pytest.fixture(scope="function")
def setup_db():
    """Fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(setup_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider():
    return FakeSmsProvider()


@pytest.fixture(scope="function")
def client(setup_db, provider):
    """Test client with the fake carrier wired in."""
    app.dependency_overrides[get_sms_provider] = lambda: provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def add_number(db):
    """Factory for outbound number configurations."""
    counter = {"n": 0}

    def _add(**overrides):
        counter["n"] += 1
        values = {
            "phone_number": f"+1914222{1900 + counter['n']:04d}",
            "display_name": f"Location {counter['n']}",
            "account_sid": "ACtest",
            "auth_token": "token",
            "is_active": True,
            "is_primary": False,
            "created_at": BASE_TIME + timedelta(minutes=counter["n"]),
        }
        values.update(overrides)
        number = OutboundNumber(**values)
        db.add(number)
        db.commit()
        db.refresh(number)
        return number

    return _add


@pytest.fixture
def add_patient(db):
    def _add(name="Jane Doe", phone="+13472074064", **overrides):
        patient = Patient(name=name, phone=phone, **overrides)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _add


@pytest.fixture
def add_message(db):
    def _add(**overrides):
        values = {
            "direction": "outbound",
            "content": "Your prescription is ready",
            "status": "queued",
            "meta": {},
        }
        values.update(overrides)
        message = Message(**values)
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    return _add
