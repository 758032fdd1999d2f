"""Pytest fixtures for testing"""

import pytest
from copy import deepcopy
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from esnad_servicing.domain.configuration import ConfigurationStore, PaymentLimitsConfig, config_value_adapter
from esnad_servicing.domain.exceptions import ConcurrencyConflict, NotFoundError
from esnad_servicing.domain.models import (
    FinanceStatus,
    HistorySource,
    Installment,
    NoticeStatus,
    ReminderChannel,
    StatusHistoryEntry,
)
from esnad_servicing.infrastructure.database.models import Base
from esnad_servicing.infrastructure.database.seed import DEFAULT_SETTINGS
from esnad_servicing.services.notices import NoticeDispatcher
from esnad_servicing.services.servicing import ServicingEngine


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2025, 1, 14, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def other_db(db) -> Generator[Session, None, None]:
    """Second session on the test database, closed before the tables are dropped"""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


class InMemorySettings:
    """Settings source backed by a dict of raw rows"""

    def __init__(self, rows=None):
        self.rows = {}
        for attribute, type_name, value, data_in in rows or []:
            self.set(attribute, type_name, value, data_in)

    def set(self, attribute, type_name, value=None, data_in=None):
        if type_name == "json":
            raw = {"type": "json", "data": data_in}
        else:
            raw = {"type": type_name, "value": value}
        self.rows[attribute] = config_value_adapter.validate_python(raw)

    def load_configuration(self, key):
        return self.rows.get(key)


class InMemoryFinances:
    """Installment store with version compare-and-swap"""

    def __init__(self):
        self.rows = {}
        self.forced_conflicts = {}

    def get_installment(self, faid):
        row = self.rows.get(faid)
        return deepcopy(row) if row else None

    def load_installments(self, deal_aid):
        rows = [r for r in self.rows.values() if r.deal_aid == deal_aid]
        return [deepcopy(r) for r in sorted(rows, key=lambda r: r.payment_number)]

    def list_open_installments(self):
        rows = [r for r in self.rows.values() if r.status in (FinanceStatus.PENDING, FinanceStatus.OVERDUE)]
        return [deepcopy(r) for r in sorted(rows, key=lambda r: (r.deal_aid, r.payment_number))]

    def create_installments(self, items):
        created = []
        for item in items:
            stored = replace(item, version=1)
            self.rows[stored.faid] = deepcopy(stored)
            created.append(stored)
        return created

    def save_installment(self, installment):
        stored = self.rows.get(installment.faid)
        if stored is None:
            raise NotFoundError(installment.faid)
        if self.forced_conflicts.get(installment.faid, 0) > 0:
            self.forced_conflicts[installment.faid] -= 1
            raise ConcurrencyConflict("finance", installment.faid, installment.version)
        if stored.version != installment.version:
            raise ConcurrencyConflict("finance", installment.faid, installment.version)
        saved = replace(installment, version=installment.version + 1)
        self.rows[saved.faid] = deepcopy(saved)
        return saved


class InMemoryGoals:
    def __init__(self):
        self.rows = {}
        self.forced_conflicts = 0

    def load_open_collection_goal(self, deal_aid, finance_faid):
        for goal in self.rows.values():
            if goal.is_open and goal.deal_aid == deal_aid and goal.finance_faid == finance_faid:
                return deepcopy(goal)
        return None

    def save_collection_goal(self, goal):
        if self.forced_conflicts > 0:
            self.forced_conflicts -= 1
            raise ConcurrencyConflict("collection_goal", goal.goal_id, goal.version)
        if goal.version == 0:
            if self.load_open_collection_goal(goal.deal_aid, goal.finance_faid) is not None:
                raise ConcurrencyConflict("collection_goal", goal.goal_id, goal.version)
        elif self.rows[goal.goal_id].version != goal.version:
            raise ConcurrencyConflict("collection_goal", goal.goal_id, goal.version)
        saved = replace(goal, version=goal.version + 1)
        self.rows[saved.goal_id] = deepcopy(saved)
        return saved


class InMemoryNotices:
    def __init__(self):
        self.rows = {}

    def find_notice(self, finance_faid, trigger_reason, template_key, queued_on):
        for notice in self.rows.values():
            if notice.idempotency_key == (finance_faid, trigger_reason, template_key, queued_on):
                return deepcopy(notice)
        return None

    def find_latest_notice(self, finance_faid, trigger_reason):
        matches = [
            n for n in self.rows.values()
            if n.related_finance_faid == finance_faid and n.trigger_reason == trigger_reason
        ]
        if not matches:
            return None
        # max() keeps the first of equal keys, so scan newest first
        return deepcopy(max(reversed(matches), key=lambda n: n.queued_on))

    def get_notice(self, notice_id):
        notice = self.rows.get(notice_id)
        return deepcopy(notice) if notice else None

    def enqueue_notice(self, notice):
        existing = self.find_notice(*notice.idempotency_key)
        if existing is not None:
            return existing
        self.rows[notice.notice_id] = deepcopy(notice)
        return notice

    def save_notice(self, notice):
        if notice.notice_id not in self.rows:
            raise NotFoundError(notice.notice_id)
        self.rows[notice.notice_id] = deepcopy(notice)
        return notice

    def list_deliverable_notices(self, now, limit):
        due = [
            n for n in self.rows.values()
            if n.status == NoticeStatus.QUEUED and (n.send_after is None or n.send_after <= now)
        ]
        return [deepcopy(n) for n in due[:limit]]


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def settings_source() -> InMemorySettings:
    return InMemorySettings(DEFAULT_SETTINGS)


@pytest.fixture
def config(settings_source) -> ConfigurationStore:
    return ConfigurationStore(settings_source)


@pytest.fixture
def finances() -> InMemoryFinances:
    return InMemoryFinances()


@pytest.fixture
def goals() -> InMemoryGoals:
    return InMemoryGoals()


@pytest.fixture
def notices() -> InMemoryNotices:
    return InMemoryNotices()


@pytest.fixture
def dispatcher(notices, clock) -> NoticeDispatcher:
    return NoticeDispatcher(notices, max_retries=3, cadence_days=7, clock=clock)


@pytest.fixture
def servicing(config, finances, goals, dispatcher, clock) -> ServicingEngine:
    """Engine over in-memory stores with the seeded business settings"""
    return ServicingEngine(config, finances, goals, dispatcher, conflict_retries=1, clock=clock)


@pytest.fixture
def limits() -> PaymentLimitsConfig:
    return PaymentLimitsConfig(
        min_amount=3000,
        max_amount=300000,
        default_term_months=12,
        grace_period_days=3,
        penalty_daily_rate_percent=Decimal("0.1"),
        reminder_enabled=True,
        reminder_days_before=[3],
        reminder_channels=[ReminderChannel.EMAIL, ReminderChannel.SMS],
    )


@pytest.fixture
def pending_installment() -> Installment:
    """10000 due 2025-01-10, never paid"""
    return Installment(
        faid="f-1",
        deal_aid="d-1",
        client_aid="c-1",
        payment_number=1,
        payment_date=date(2025, 1, 10),
        total_amount=10000,
        principal_amount=7000,
        profit_share_amount=2500,
        service_fee_amount=500,
        status_history=[
            StatusHistoryEntry(
                status=FinanceStatus.PENDING,
                changed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
                source=HistorySource.SYSTEM,
            )
        ],
        reminder_schedule_days=[3],
        version=1,
    )
