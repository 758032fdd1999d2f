"""Integration tests for the servicing engine over in-memory stores"""

import pytest
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from esnad_servicing.domain.configuration import REMINDER_ENABLED_KEY
from esnad_servicing.domain.exceptions import NotFoundError, ValidationError
from esnad_servicing.domain.models import (
    CollectionStage,
    FinanceStatus,
    NoticeStatus,
    NoticeTriggerReason,
    ReminderChannel,
    RiskTier,
    ScoringInput,
)


@pytest.fixture
def schedule(servicing):
    """120000 over 12 months, first payment 2025-01-10"""
    schedule_input = servicing.prepare_schedule_input("d-1", 120000, date(2025, 1, 10), client_aid="c-1")
    return servicing.generate_schedule(schedule_input, today=date(2025, 1, 1))


@pytest.fixture
def first(schedule):
    return schedule.items[0]


def test_score_applicant(servicing):
    result = servicing.score_applicant(
        ScoringInput(marital_status="married", declared_income=120000, guarantor_count=2)
    )

    assert result.score == 590
    assert result.tier == RiskTier.MEDIUM


def test_generate_schedule_persists_items(servicing, finances, schedule):
    assert schedule.summary.total_amount == 120000
    assert len(finances.rows) == 12
    assert all(item.version == 1 for item in schedule.items)
    assert schedule.items[-1].payment_date == date(2025, 12, 10)


def test_generate_schedule_once_per_deal(servicing, schedule):
    schedule_input = servicing.prepare_schedule_input("d-1", 60000, date(2025, 2, 1))

    with pytest.raises(ValidationError):
        servicing.generate_schedule(schedule_input, today=date(2025, 1, 1))


def test_preview_does_not_persist(servicing, finances):
    schedule_input = servicing.prepare_schedule_input("d-2", 30000, date(2025, 2, 1), term_months=3)

    result = servicing.preview_schedule(schedule_input, today=date(2025, 1, 1))

    assert [item.total_amount for item in result.items] == [10000, 10000, 10000]
    assert finances.rows == {}


def test_overdue_sweep_transitions_escalates_and_notifies(servicing, finances, goals, notices, first):
    result = servicing.evaluate_overdue(date(2025, 1, 14))

    assert [i.faid for i in result.transitioned] == [first.faid]
    assert len(result.goals_updated) == 1
    assert len(result.notices) == 1
    assert result.skipped == []

    stored = finances.get_installment(first.faid)
    assert stored.status == FinanceStatus.OVERDUE
    assert stored.overdue_days == 4
    assert stored.penalty.total_penalty_amount == Decimal("10.00")
    assert stored.collection_stage == CollectionStage.REMINDER_DAY_1

    goal = goals.load_open_collection_goal("d-1", first.faid)
    assert goal.stage == CollectionStage.REMINDER_DAY_1
    assert goal.auto_created is True

    notice = result.notices[0]
    assert notice.trigger_reason == NoticeTriggerReason.DEBT_COLLECTION
    assert notice.template_key == "payment_overdue"
    assert notice.channel == ReminderChannel.EMAIL
    assert notice.queued_on == date(2025, 1, 14)


def test_overdue_sweep_is_idempotent(servicing, finances, goals, notices, first):
    servicing.evaluate_overdue(date(2025, 1, 14))
    version = finances.get_installment(first.faid).version

    again = servicing.evaluate_overdue(date(2025, 1, 14))

    assert again.transitioned == []
    assert again.goals_updated == []
    assert again.notices == []
    stored = finances.get_installment(first.faid)
    assert stored.version == version
    assert len(stored.status_history) == 2
    assert len(goals.rows) == 1
    assert len(notices.rows) == 1


def test_later_sweep_advances_goal_without_new_goal(servicing, goals, first):
    servicing.evaluate_overdue(date(2025, 1, 14))

    result = servicing.evaluate_overdue(date(2025, 1, 16))

    assert result.transitioned == []
    assert [g.stage for g in result.goals_updated] == [CollectionStage.CLIENT_CALL]
    assert result.notices == []
    assert len(goals.rows) == 1


def test_daily_sweeps_walk_every_collection_stage(servicing, goals, first):
    """Seeded stages count days past the 3-day grace period"""
    stages = []
    day = date(2025, 1, 11)
    while day <= date(2025, 1, 29):
        result = servicing.evaluate_overdue(day)
        stages.extend(g.stage for g in result.goals_updated)
        day += timedelta(days=1)

    assert stages == [
        CollectionStage.REMINDER_DAY_1,
        CollectionStage.REMINDER_DAY_2,
        CollectionStage.CLIENT_CALL,
        CollectionStage.GUARANTOR_CALL,
        CollectionStage.FIELD_VISIT,
        CollectionStage.SECURITY_ESCALATION,
    ]
    assert len(goals.rows) == 1


def test_overdue_follow_up_requeues_latest_notice(servicing, notices, first):
    servicing.evaluate_overdue(date(2025, 1, 14))

    result = servicing.evaluate_overdue(date(2025, 1, 20))

    assert len(result.notices) == 1
    follow_up = result.notices[0]
    assert follow_up.retry_count == 1
    assert follow_up.queued_on == date(2025, 1, 20)
    assert follow_up.status == NoticeStatus.QUEUED
    assert {v.key: v.value for v in follow_up.variables}["overdueDays"] == 10
    assert len(notices.rows) == 1


def test_conflicting_update_retried_once(servicing, finances, first):
    finances.forced_conflicts[first.faid] = 1

    result = servicing.evaluate_overdue(date(2025, 1, 14))

    assert [i.faid for i in result.transitioned] == [first.faid]
    assert result.skipped == []


def test_repeated_conflict_skips_installment(servicing, finances, goals, notices, first):
    finances.forced_conflicts[first.faid] = 2

    result = servicing.evaluate_overdue(date(2025, 1, 14))

    assert result.skipped == [first.faid]
    assert result.transitioned == []
    assert finances.get_installment(first.faid).status == FinanceStatus.PENDING
    assert goals.rows == {}
    assert notices.rows == {}


def test_goal_conflict_completes_on_retry(servicing, goals, notices, first):
    """The installment save sticks; the retry still opens the goal and queues the notice"""
    goals.forced_conflicts = 1

    result = servicing.evaluate_overdue(date(2025, 1, 14))

    assert len(result.transitioned) == 1
    assert len(result.goals_updated) == 1
    assert len(result.notices) == 1
    assert len(goals.rows) == 1
    assert len(notices.rows) == 1


def test_record_payment_closes_goal_and_notifies(servicing, finances, goals, notices, first):
    servicing.evaluate_overdue(date(2025, 1, 14))

    paid = servicing.record_payment(first.faid, 10000, changed_by="operator-1")

    assert paid.status == FinanceStatus.PAID
    assert paid.collection_stage == CollectionStage.CLOSED
    assert paid.penalty.frozen_at is not None
    assert goals.load_open_collection_goal("d-1", first.faid) is None
    closed = next(iter(goals.rows.values()))
    assert closed.close_reason == "PAID"
    received = [n for n in notices.rows.values() if n.trigger_reason == NoticeTriggerReason.PAYMENT_RECEIVED]
    assert len(received) == 1


def test_record_payment_twice_is_noop(servicing, finances, notices, first):
    paid = servicing.record_payment(first.faid, 10000)

    again = servicing.record_payment(first.faid, 10000)

    assert again.version == paid.version
    assert len(again.status_history) == 2
    assert len(notices.rows) == 1


def test_record_payment_on_paid_installment_closes_leftover_goal(servicing, finances, goals, notices, first):
    """Installment saved PAID but the goal close never happened"""
    servicing.evaluate_overdue(date(2025, 1, 14))
    goal = goals.load_open_collection_goal("d-1", first.faid)
    stored = finances.get_installment(first.faid)
    finances.rows[first.faid] = replace(stored, status=FinanceStatus.PAID)

    again = servicing.record_payment(first.faid, 10000)

    assert again.version == stored.version
    assert goals.load_open_collection_goal("d-1", first.faid) is None
    assert goals.rows[goal.goal_id].close_reason == "PAID"
    assert not [n for n in notices.rows.values() if n.trigger_reason == NoticeTriggerReason.PAYMENT_RECEIVED]


def test_record_payment_unknown_finance(servicing):
    with pytest.raises(NotFoundError):
        servicing.record_payment("f-missing", 10000)


def test_paid_installment_skipped_by_sweep(servicing, finances, first):
    servicing.record_payment(first.faid, 10000)

    result = servicing.evaluate_overdue(date(2025, 1, 14))

    assert result.transitioned == []
    assert finances.get_installment(first.faid).status == FinanceStatus.PAID


def test_waive_penalty(servicing, finances, first):
    servicing.evaluate_overdue(date(2025, 1, 14))

    waived = servicing.waive_penalty(first.faid, "goodwill")

    assert waived.penalty.total_penalty_amount == Decimal("0.00")
    assert finances.get_installment(first.faid).penalty.waived_amount == Decimal("10.00")


def test_close_collection_goal(servicing, goals, first):
    with pytest.raises(NotFoundError):
        servicing.close_collection_goal("d-1", first.faid, "manual")

    servicing.evaluate_overdue(date(2025, 1, 14))
    closed = servicing.close_collection_goal("d-1", first.faid, "promised to pay")

    assert closed.stage == CollectionStage.CLOSED
    assert closed.close_reason == "promised to pay"


def test_manually_closed_goal_reopened_while_overdue(servicing, goals, first):
    servicing.evaluate_overdue(date(2025, 1, 14))
    servicing.close_collection_goal("d-1", first.faid, "promised to pay")

    result = servicing.evaluate_overdue(date(2025, 1, 15))

    assert len(result.goals_updated) == 1
    assert len(goals.rows) == 2


def test_send_reminders_once_per_day(servicing, first):
    queued = servicing.send_reminders(date(2025, 1, 7))

    assert len(queued) == 1
    assert queued[0].template_key == "payment_reminder_3_days"
    assert queued[0].related_finance_faid == first.faid
    assert queued[0].channel == ReminderChannel.EMAIL
    assert servicing.send_reminders(date(2025, 1, 7)) == []


def test_send_reminders_disabled(servicing, settings_source, first):
    settings_source.set(REMINDER_ENABLED_KEY, "boolean", "false")

    assert servicing.send_reminders(date(2025, 1, 7)) == []


def test_deal_balance(servicing, first):
    servicing.evaluate_overdue(date(2025, 1, 14))

    balance = servicing.deal_balance("d-1")

    assert balance.total_debt == 120000
    assert balance.overdue_amount == 10000
    assert balance.penalty_amount == Decimal("10.00")
    assert balance.next_payment_date == date(2025, 1, 10)
    assert balance.next_payment_amount == 10000

    servicing.record_payment(first.faid, 10000)
    balance = servicing.deal_balance("d-1")

    assert balance.total_debt == 110000
    assert balance.overdue_amount == 0
    assert balance.penalty_amount == Decimal("0.00")
    assert balance.next_payment_date == date(2025, 2, 10)


def test_deal_balance_without_schedule(servicing):
    with pytest.raises(NotFoundError):
        servicing.deal_balance("d-unknown")
