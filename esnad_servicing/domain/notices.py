"""Notice payload building for reminder, overdue and payment-received triggers"""

from datetime import date, timedelta
from typing import List, Optional

from esnad_servicing.domain.exceptions import ConfigurationError
from esnad_servicing.domain.models import (
    Installment,
    Notice,
    NoticeTrigger,
    NoticeTriggerReason,
    NoticeVariable,
    ReminderChannel,
)
from esnad_servicing.utils.ids import generate_aid

OVERDUE_TEMPLATE = "payment_overdue"
PAYMENT_RECEIVED_TEMPLATE = "payment_received"


def reminder_template(days_before: int) -> str:
    return f"payment_reminder_{days_before}_days"


def _variable(variables: List[NoticeVariable], key: str) -> Optional[NoticeVariable]:
    return next((v for v in variables if v.key == key), None)


def notice_title(reason: NoticeTriggerReason, variables: List[NoticeVariable]) -> str:
    amount = _variable(variables, "amount")
    if reason == NoticeTriggerReason.PAYMENT_REMINDER:
        payment_date = _variable(variables, "paymentDate")
        if amount and payment_date:
            return f"Reminder: payment of {amount.value} due by {payment_date.value}"
        return "Upcoming payment reminder"
    if reason == NoticeTriggerReason.DEBT_COLLECTION:
        overdue_days = _variable(variables, "overdueDays")
        if amount and overdue_days:
            return f"Overdue payment: {amount.value} ({overdue_days.value} days)"
        return "Overdue payment notice"
    if reason == NoticeTriggerReason.PAYMENT_RECEIVED:
        return "Payment received"
    if reason == NoticeTriggerReason.DEAL_STATUS:
        return "Deal status changed"
    return "Notification"


def resolve_channel(trigger: NoticeTrigger, reminder_channels: List[ReminderChannel]) -> ReminderChannel:
    if trigger.channel is not None:
        return trigger.channel
    if not reminder_channels:
        raise ConfigurationError("No reminder channels configured")
    return reminder_channels[0]


def build_notice(trigger: NoticeTrigger, channel: ReminderChannel, queued_on: date) -> Notice:
    return Notice(
        notice_id=generate_aid("n"),
        channel=channel,
        template_key=trigger.template_key,
        title=notice_title(trigger.trigger_reason, trigger.variables),
        variables=list(trigger.variables),
        trigger_reason=trigger.trigger_reason,
        triggered_by=trigger.triggered_by,
        queued_on=queued_on,
        related_deal_aid=trigger.related_deal_aid,
        related_finance_faid=trigger.related_finance_faid,
        send_after=trigger.send_after,
        retry_count=0,
    )


def _base_variables(installment: Installment) -> List[NoticeVariable]:
    variables = [
        NoticeVariable(key="dealAid", value=installment.deal_aid),
        NoticeVariable(key="financeFaid", value=installment.faid),
        NoticeVariable(key="amount", value=installment.total_amount),
    ]
    if installment.client_aid:
        variables.insert(0, NoticeVariable(key="clientAid", value=installment.client_aid))
    return variables


def reminder_triggers(installment: Installment, as_of: date, days_before: List[int]) -> List[NoticeTrigger]:
    """One reminder per configured offset that lands exactly on as_of"""
    triggers = []
    for offset in sorted(set(days_before), reverse=True):
        if installment.payment_date - timedelta(days=offset) != as_of:
            continue
        variables = _base_variables(installment) + [
            NoticeVariable(key="paymentDate", value=installment.payment_date.isoformat()),
            NoticeVariable(key="daysBefore", value=offset),
        ]
        triggers.append(
            NoticeTrigger(
                template_key=reminder_template(offset),
                trigger_reason=NoticeTriggerReason.PAYMENT_REMINDER,
                variables=variables,
                related_deal_aid=installment.deal_aid,
                related_finance_faid=installment.faid,
            )
        )
    return triggers


def overdue_trigger(installment: Installment) -> NoticeTrigger:
    variables = _base_variables(installment) + [
        NoticeVariable(key="overdueDays", value=installment.overdue_days or 0),
    ]
    return NoticeTrigger(
        template_key=OVERDUE_TEMPLATE,
        trigger_reason=NoticeTriggerReason.DEBT_COLLECTION,
        variables=variables,
        related_deal_aid=installment.deal_aid,
        related_finance_faid=installment.faid,
    )


def payment_received_trigger(installment: Installment) -> NoticeTrigger:
    variables = _base_variables(installment) + [
        NoticeVariable(key="paidAmount", value=installment.paid_amount or installment.total_amount),
    ]
    return NoticeTrigger(
        template_key=PAYMENT_RECEIVED_TEMPLATE,
        trigger_reason=NoticeTriggerReason.PAYMENT_RECEIVED,
        variables=variables,
        related_deal_aid=installment.deal_aid,
        related_finance_faid=installment.faid,
    )


def follow_up_due(days_beyond_grace: int, cadence_days: int) -> bool:
    """Overdue follow-ups fire every cadence_days days past grace; 0 disables them"""
    if cadence_days <= 0 or days_beyond_grace <= 0:
        return False
    return days_beyond_grace % cadence_days == 0
