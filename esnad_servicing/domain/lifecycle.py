"""Installment status lifecycle: PENDING -> PAID | OVERDUE, OVERDUE -> PAID.

Transitions never mutate their input; they return an updated copy so the
caller can persist it conditioned on the version it read.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from esnad_servicing.domain.exceptions import ValidationError
from esnad_servicing.domain.models import (
    FinanceStatus,
    HistorySource,
    Installment,
    PenaltyInfo,
    StatusHistoryEntry,
)
from esnad_servicing.utils.date_utils import days_between

PENALTY_QUANTUM = Decimal("0.01")


@dataclass
class OverdueEvaluation:
    installment: Installment
    transitioned: bool
    changed: bool


def is_past_grace(installment: Installment, as_of: date, grace_period_days: int) -> bool:
    return as_of > installment.payment_date + timedelta(days=grace_period_days)


def calculate_penalty(total_amount: int, daily_rate_percent: Decimal, days_beyond_grace: int) -> Decimal:
    """Linear penalty: rate% of the installment total for each day beyond grace"""
    if days_beyond_grace <= 0:
        return Decimal("0.00")
    amount = Decimal(daily_rate_percent) / Decimal(100) * total_amount * days_beyond_grace
    return amount.quantize(PENALTY_QUANTUM, rounding=ROUND_HALF_UP)


def _append_history(installment: Installment, entry: StatusHistoryEntry) -> list:
    return [*installment.status_history, entry]


def mark_paid(
    installment: Installment,
    amount: int,
    source: HistorySource,
    at: datetime,
    changed_by: Optional[str] = None,
    comment: Optional[str] = None,
) -> Installment:
    """
    Record a successful payment.

    Already-PAID installments are returned unchanged so retried payment events
    are harmless. Any accrued penalty is frozen at its last computed value.
    """
    if installment.status == FinanceStatus.PAID:
        return installment

    if amount <= 0:
        raise ValidationError(f"Payment amount must be positive, got {amount}")
    if amount < installment.total_amount:
        raise ValidationError(
            f"Payment {amount} does not cover installment {installment.faid} total {installment.total_amount}"
        )

    penalty = installment.penalty
    if penalty is not None and penalty.frozen_at is None:
        penalty = replace(penalty, frozen_at=at)

    entry = StatusHistoryEntry(
        status=FinanceStatus.PAID,
        changed_at=at,
        source=source,
        comment=comment,
        changed_by=changed_by,
    )
    return replace(
        installment,
        status=FinanceStatus.PAID,
        status_history=_append_history(installment, entry),
        penalty=penalty,
        paid_at=at,
        paid_amount=amount,
    )


def evaluate_overdue(
    installment: Installment,
    as_of: date,
    grace_period_days: int,
    daily_rate_percent: Decimal,
    now: datetime,
) -> OverdueEvaluation:
    """
    Classify an unpaid installment against the grace window.

    - PENDING past grace -> OVERDUE, one AUTO_RULE history entry, penalty created
    - OVERDUE -> penalty and overdue_days recomputed, no history entry
    - nothing changes for PAID installments, installments inside the grace
      window, or a re-run for a date already evaluated
    """
    unchanged = OverdueEvaluation(installment=installment, transitioned=False, changed=False)

    if installment.status == FinanceStatus.PAID:
        return unchanged
    if not is_past_grace(installment, as_of, grace_period_days):
        return unchanged

    overdue_days = days_between(installment.payment_date, as_of)
    days_beyond_grace = overdue_days - grace_period_days
    penalty_amount = calculate_penalty(installment.total_amount, daily_rate_percent, days_beyond_grace)

    if installment.status == FinanceStatus.PENDING:
        penalty = PenaltyInfo(
            grace_days_used=grace_period_days,
            daily_rate_percent=Decimal(daily_rate_percent),
            total_penalty_amount=penalty_amount,
            calculated_at=now,
        )
        entry = StatusHistoryEntry(
            status=FinanceStatus.OVERDUE,
            changed_at=now,
            source=HistorySource.AUTO_RULE,
            comment=f"Automatically marked as overdue. Payment date: {installment.payment_date.isoformat()}",
        )
        updated = replace(
            installment,
            status=FinanceStatus.OVERDUE,
            status_history=_append_history(installment, entry),
            penalty=penalty,
            overdue_days=overdue_days,
        )
        return OverdueEvaluation(installment=updated, transitioned=True, changed=True)

    # Already OVERDUE: only move forward in time
    if installment.overdue_days is not None and overdue_days <= installment.overdue_days:
        return unchanged

    penalty = installment.penalty
    if penalty is None:
        penalty = PenaltyInfo(
            grace_days_used=grace_period_days,
            daily_rate_percent=Decimal(daily_rate_percent),
            total_penalty_amount=penalty_amount,
            calculated_at=now,
        )
    elif penalty.waived_at is None:
        penalty = replace(
            penalty,
            grace_days_used=grace_period_days,
            daily_rate_percent=Decimal(daily_rate_percent),
            total_penalty_amount=penalty_amount,
            calculated_at=now,
        )

    updated = replace(installment, penalty=penalty, overdue_days=overdue_days)
    return OverdueEvaluation(installment=updated, transitioned=False, changed=True)


def waive_penalty(installment: Installment, reason: str, at: datetime) -> Installment:
    """Zero the accrued penalty; the waived amount and reason stay on record"""
    if not reason or not reason.strip():
        raise ValidationError("Penalty waiver requires a reason")
    if installment.penalty is None:
        raise ValidationError(f"Installment {installment.faid} has no penalty to waive")
    if installment.penalty.waived_at is not None:
        return installment

    penalty = replace(
        installment.penalty,
        waived_amount=installment.penalty.total_penalty_amount,
        total_penalty_amount=Decimal("0.00"),
        reason=reason.strip(),
        waived_at=at,
    )
    return replace(installment, penalty=penalty)
