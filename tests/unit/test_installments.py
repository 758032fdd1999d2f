"""Unit tests for payment schedule generation"""

import pytest
from datetime import date, datetime, timezone
from esnad_servicing.domain.configuration import ScheduleSplit
from esnad_servicing.domain.exceptions import ValidationError
from esnad_servicing.domain.installments import PaymentScheduleInput, generate_schedule, split_amount
from esnad_servicing.domain.models import FinanceStatus, HistorySource, PaymentChannel

TODAY = date(2025, 1, 1)
NOW = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


def _input(limits, **overrides) -> PaymentScheduleInput:
    values = dict(
        deal_aid="d-1",
        client_aid="c-1",
        total_amount=120000,
        term_months=12,
        first_payment_date=date(2025, 1, 31),
        limits=limits,
    )
    values.update(overrides)
    return PaymentScheduleInput(**values)


def test_twelve_month_schedule_from_month_end(limits):
    """120000 over 12 months from 2025-01-31: equal installments, clamped dates"""
    result = generate_schedule(_input(limits), today=TODAY, now=NOW)

    assert len(result.items) == 12
    assert all(item.total_amount == 10000 for item in result.items)
    assert [item.payment_number for item in result.items] == list(range(1, 13))
    assert result.items[0].payment_date == date(2025, 1, 31)
    assert result.items[1].payment_date == date(2025, 2, 28)
    assert result.items[2].payment_date == date(2025, 3, 31)
    assert result.items[-1].payment_date == date(2025, 12, 31)

    first = result.items[0]
    assert (first.principal_amount, first.profit_share_amount, first.service_fee_amount) == (7000, 2500, 500)

    assert result.summary.total_installments == 12
    assert result.summary.total_amount == 120000
    assert result.summary.total_principal == 84000
    assert result.summary.total_profit_share == 30000
    assert result.summary.total_service_fees == 6000
    assert result.summary.next_payment_date == date(2025, 1, 31)


def test_last_installment_absorbs_remainder(limits):
    result = generate_schedule(_input(limits, total_amount=100003, term_months=4), today=TODAY, now=NOW)

    assert [item.total_amount for item in result.items] == [25000, 25000, 25000, 25003]
    assert sum(item.total_amount for item in result.items) == 100003


def test_components_always_add_up(limits):
    """total == principal + profit share + service fee on every installment"""
    result = generate_schedule(_input(limits, total_amount=99999, term_months=7), today=TODAY, now=NOW)

    for item in result.items:
        assert item.components_total == item.total_amount
    assert result.items[-1].total_amount == 99999 - 6 * (99999 // 7)


def test_upfront_amount_reduces_financed_amount(limits):
    result = generate_schedule(
        _input(limits, upfront_amount=20000, term_months=10), today=TODAY, now=NOW
    )

    assert [item.total_amount for item in result.items] == [10000] * 10
    assert result.summary.total_amount == 100000


def test_new_installments_start_pending(limits):
    result = generate_schedule(
        _input(limits, payment_method=PaymentChannel.INTERNAL_WALLET), today=TODAY, now=NOW
    )

    item = result.items[0]
    assert item.status == FinanceStatus.PENDING
    assert len(item.status_history) == 1
    assert item.status_history[0].source == HistorySource.SYSTEM
    assert item.status_history[0].changed_at == NOW
    assert item.auto_debit_enabled is True
    assert item.reminder_schedule_days == [3]
    assert item.penalty is None
    assert len({i.faid for i in result.items}) == 12


def test_split_amount_floors_profit_and_fee():
    assert split_amount(25003, ScheduleSplit()) == (17503, 6250, 1250)
    assert split_amount(1, ScheduleSplit()) == (1, 0, 0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"total_amount": 2999},
        {"total_amount": 300001},
        {"term_months": 0},
        {"first_payment_date": date(2024, 12, 31)},
        {"first_payment_date": "2025-01-31"},
        {"upfront_amount": 120000},
        {"upfront_amount": -1},
    ],
)
def test_invalid_input_rejected(limits, overrides):
    with pytest.raises(ValidationError):
        generate_schedule(_input(limits, **overrides), today=TODAY, now=NOW)
