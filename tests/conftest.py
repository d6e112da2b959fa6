"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all reminder engine tests.
Fixtures include an in-memory store, data factories, fake channels and a
fake message generator.
"""

import os
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base
import models
from models import AdherenceRecord, EmergencyContact, Schedule, User
from exceptions import DeliveryError
from services.store import Store
from tools.delivery_channels import ChannelKind, DeliveryChannel, OutboundMessage, Recipient


# 08:05 in New York (EST) on 2026-01-15
FIXED_NOW = datetime(2026, 1, 15, 13, 5, tzinfo=timezone.utc)
FIXED_LOCAL_DATE = "2026-01-15"


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=test_engine
    )


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session used by tests to arrange data"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def test_store(session_factory) -> Store:
    """Store bound to the in-memory database"""
    return Store(session_factory)


# ==================== DATA FACTORIES ====================

@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(**overrides) -> User:
        counter["n"] += 1
        data = {
            "email": f"patient{counter['n']}@example.com",
            "name": f"Patient {counter['n']}",
            "timezone": "America/New_York",
            "email_notifications": True,
            "sms_notifications": False,
        }
        data.update(overrides)
        user = User(**data)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_schedule(db_session: Session) -> Callable[..., Schedule]:
    def _make(user: User, **overrides) -> Schedule:
        data = {
            "user_id": user.id,
            "medication_name": "Metformin",
            "dosage": "500mg",
            "time": "08:00",
            "frequency": "daily",
        }
        data.update(overrides)
        schedule = Schedule(**data)
        db_session.add(schedule)
        db_session.commit()
        db_session.refresh(schedule)
        return schedule

    return _make


@pytest.fixture
def make_record(db_session: Session) -> Callable[..., AdherenceRecord]:
    def _make(schedule: Schedule, day: str, taken: bool = True, notes: Optional[str] = None) -> AdherenceRecord:
        record = AdherenceRecord(schedule_id=schedule.id, date=day, taken=taken, notes=notes)
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _make


@pytest.fixture
def make_contact(db_session: Session) -> Callable[..., EmergencyContact]:
    def _make(user: User, **overrides) -> EmergencyContact:
        data = {
            "user_id": user.id,
            "name": "Sam Carer",
            "email": "sam@example.com",
            "phone": None,
            "priority": 1,
            "notify_missed_doses": True,
        }
        data.update(overrides)
        contact = EmergencyContact(**data)
        db_session.add(contact)
        db_session.commit()
        db_session.refresh(contact)
        return contact

    return _make


@pytest.fixture
def test_user(make_user) -> User:
    return make_user()


@pytest.fixture
def test_schedule(make_schedule, test_user) -> Schedule:
    return make_schedule(test_user)


# ==================== FAKES ====================

class FakeChannel(DeliveryChannel):
    """Records every delivery instead of sending it"""

    def __init__(self, kind: ChannelKind = ChannelKind.CONSOLE, fail: bool = False):
        self.kind = kind
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def accepts(self, recipient: Recipient) -> bool:
        if self.kind == ChannelKind.EMAIL:
            return bool(recipient.email) and recipient.email_enabled
        if self.kind == ChannelKind.SMS:
            return bool(recipient.phone) and recipient.sms_enabled
        return True

    async def deliver(self, recipient: Recipient, message: OutboundMessage) -> None:
        if self.fail:
            raise DeliveryError(self.kind.value, "simulated outage")
        self.sent.append({"recipient": recipient, "message": message})


@pytest.fixture
def console_channel() -> FakeChannel:
    return FakeChannel(ChannelKind.CONSOLE)


@pytest.fixture
def email_channel() -> FakeChannel:
    return FakeChannel(ChannelKind.EMAIL)


@pytest.fixture
def sms_channel() -> FakeChannel:
    return FakeChannel(ChannelKind.SMS)


@pytest.fixture
def fake_channels(console_channel, email_channel, sms_channel) -> List[FakeChannel]:
    return [console_channel, email_channel, sms_channel]


@pytest.fixture
def fake_generator() -> MagicMock:
    """Generator double with canned reminder and coaching text"""
    generator = MagicMock()
    generator.generate_reminder = AsyncMock(return_value="💊 Generated reminder text")
    generator.generate_coaching = AsyncMock(return_value="🌟 Generated coaching text")
    generator.get_usage_stats.return_value = {"request_count": 0, "total_tokens_used": 0}
    return generator


# ==================== ENGINE FIXTURES ====================

@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def dispatcher(test_store, fake_generator, fake_channels):
    from actions.notification_dispatcher import NotificationDispatcher
    return NotificationDispatcher(store=test_store, generator=fake_generator, channels=fake_channels)


@pytest.fixture
def detector(test_store):
    from actions.dose_detector import DoseDetector
    return DoseDetector(store=test_store, reminder_threshold_minutes=30, escalation_threshold_hours=4)


@pytest.fixture
def escalation(test_store, fake_channels):
    from actions.escalation_engine import EscalationEngine, EscalationThresholds
    return EscalationEngine(store=test_store, channels=fake_channels, thresholds=EscalationThresholds())


@pytest.fixture
def coaching(test_store, fake_generator):
    from actions.coaching_engine import CoachingEngine
    return CoachingEngine(store=test_store, generator=fake_generator, coaching_hour=9, lookback_days=3)


@pytest.fixture
def scheduler(test_store, detector, dispatcher, coaching, escalation):
    from actions.reminder_scheduler import ReminderScheduler
    return ReminderScheduler(
        detector=detector,
        dispatcher=dispatcher,
        coaching=coaching,
        escalation=escalation,
        store=test_store,
    )


@pytest.fixture(scope="function")
def client(test_engine, test_store, scheduler, monkeypatch) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to the in-memory engine components"""
    import app as app_module
    from api import deps

    monkeypatch.setattr(app_module.settings, "SCHEDULER_ENABLED", False)
    monkeypatch.setattr(app_module, "init_db", lambda: None)

    app = app_module.app
    app.dependency_overrides[deps.get_store] = lambda: test_store
    app.dependency_overrides[deps.get_scheduler] = lambda: scheduler
    app.dependency_overrides[deps.get_dispatcher] = lambda: scheduler.dispatcher
    app.dependency_overrides[deps.get_detector] = lambda: scheduler.detector
    app.dependency_overrides[deps.get_escalation_engine] = lambda: scheduler.escalation

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
