"""Installment schedule generation for approved deals"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from esnad_servicing.domain.configuration import PaymentLimitsConfig, ScheduleSplit
from esnad_servicing.domain.exceptions import ValidationError
from esnad_servicing.domain.models import (
    FinanceStatus,
    HistorySource,
    Installment,
    PaymentChannel,
    PaymentScheduleResult,
    PaymentScheduleSummary,
    ScheduleOrigin,
    StatusHistoryEntry,
)
from esnad_servicing.utils.date_utils import add_months, utcnow
from esnad_servicing.utils.ids import generate_aid


@dataclass
class PaymentScheduleInput:
    deal_aid: str
    total_amount: int
    term_months: int
    first_payment_date: date
    limits: PaymentLimitsConfig
    payment_method: PaymentChannel = PaymentChannel.CARD
    upfront_amount: Optional[int] = None
    client_aid: Optional[str] = None
    split: ScheduleSplit = field(default_factory=ScheduleSplit)
    generated_by: ScheduleOrigin = ScheduleOrigin.SYSTEM


def validate_schedule_input(schedule_input: PaymentScheduleInput, today: date) -> None:
    limits = schedule_input.limits
    if not limits.min_amount <= schedule_input.total_amount <= limits.max_amount:
        raise ValidationError(
            f"Amount {schedule_input.total_amount} outside allowed range "
            f"[{limits.min_amount}, {limits.max_amount}]"
        )
    if schedule_input.term_months <= 0:
        raise ValidationError(f"Term must be positive, got {schedule_input.term_months} months")
    if not isinstance(schedule_input.first_payment_date, date):
        raise ValidationError("First payment date is not a date")
    if schedule_input.first_payment_date < today:
        raise ValidationError(f"First payment date {schedule_input.first_payment_date} is in the past")

    upfront = schedule_input.upfront_amount or 0
    if upfront < 0 or upfront >= schedule_input.total_amount:
        raise ValidationError(f"Upfront amount {upfront} must be within [0, total amount)")


def split_amount(amount: int, split: ScheduleSplit) -> tuple[int, int, int]:
    """
    Split one installment into (principal, profit_share, service_fee).

    Profit share and fee are floored; principal takes the remainder so the
    three parts always add up to the installment total.
    """
    profit_share = amount * split.profit_share_percent // 100
    service_fee = amount * split.service_fee_percent // 100
    principal = amount - profit_share - service_fee
    return principal, profit_share, service_fee


def generate_schedule(
    schedule_input: PaymentScheduleInput,
    today: date | None = None,
    now: datetime | None = None,
) -> PaymentScheduleResult:
    """
    Generate monthly installments for a deal.

    Requirements:
    - financed amount = total - upfront, split evenly over term_months
    - last installment absorbs the integer-division remainder (no drift)
    - components recomputed per installment, each satisfying
      total == principal + profit_share + service_fee
    - monthly dates from the first payment date, clamped to month end

    Example:
        120000 over 12 months -> 12 x 10000
        100003 over 4 months -> [25000, 25000, 25000, 25003]
    """
    today = today or date.today()
    now = now or utcnow()
    validate_schedule_input(schedule_input, today)

    financed = schedule_input.total_amount - (schedule_input.upfront_amount or 0)
    term = schedule_input.term_months
    base_amount = financed // term
    remainder = financed % term

    items: List[Installment] = []
    for i in range(term):
        amount = base_amount + (remainder if i == term - 1 else 0)
        principal, profit_share, service_fee = split_amount(amount, schedule_input.split)

        items.append(
            Installment(
                faid=generate_aid("f"),
                deal_aid=schedule_input.deal_aid,
                client_aid=schedule_input.client_aid,
                payment_number=i + 1,
                payment_date=add_months(schedule_input.first_payment_date, i),
                total_amount=amount,
                principal_amount=principal,
                profit_share_amount=profit_share,
                service_fee_amount=service_fee,
                status=FinanceStatus.PENDING,
                status_history=[
                    StatusHistoryEntry(status=FinanceStatus.PENDING, changed_at=now, source=HistorySource.SYSTEM)
                ],
                preferred_payment_channel=schedule_input.payment_method,
                auto_debit_enabled=schedule_input.payment_method == PaymentChannel.INTERNAL_WALLET,
                reminder_schedule_days=list(schedule_input.limits.reminder_days_before),
                generated_by=schedule_input.generated_by,
            )
        )

    summary = PaymentScheduleSummary(
        total_installments=len(items),
        total_amount=sum(item.total_amount for item in items),
        total_principal=sum(item.principal_amount for item in items),
        total_profit_share=sum(item.profit_share_amount for item in items),
        total_service_fees=sum(item.service_fee_amount or 0 for item in items),
        next_payment_date=items[0].payment_date,
    )
    return PaymentScheduleResult(items=items, summary=summary)
