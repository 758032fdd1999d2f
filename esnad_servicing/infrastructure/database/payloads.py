"""Schemas for the JSON payload columns, in the camelCase layout stored on disk"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import model_validator

from esnad_servicing.domain.configuration import CamelModel
from esnad_servicing.domain.models import (
    CollectionGoalPriority,
    CollectionGoalType,
    CollectionStage,
    FinanceStatus,
    HistorySource,
    NoticeTriggeredBy,
    NoticeTriggerReason,
    PaymentChannel,
    ReminderChannel,
    ScheduleOrigin,
)


class FinanceDataIn(CamelModel):
    payment_number: int
    payment_date: date
    total_amount: int
    principal_amount: int
    profit_share_amount: int
    service_fee_amount: Optional[int] = None
    auto_debit_enabled: bool = False
    preferred_payment_channel: PaymentChannel
    reminder_schedule_days: List[int] = []
    deal_aid: str
    client_aid: Optional[str] = None
    generated_by: ScheduleOrigin = ScheduleOrigin.SYSTEM

    @model_validator(mode="after")
    def check_components(self) -> "FinanceDataIn":
        components = self.principal_amount + self.profit_share_amount + (self.service_fee_amount or 0)
        if components != self.total_amount:
            raise ValueError(f"components add up to {components}, total is {self.total_amount}")
        return self


class StatusHistoryPayload(CamelModel):
    status: FinanceStatus
    changed_at: datetime
    source: HistorySource
    comment: Optional[str] = None
    changed_by: Optional[str] = None


class PenaltyPayload(CamelModel):
    grace_days_used: int
    daily_rate_percent: Decimal
    total_penalty_amount: Decimal
    calculated_at: datetime
    reason: Optional[str] = None
    frozen_at: Optional[datetime] = None
    waived_at: Optional[datetime] = None
    waived_amount: Optional[Decimal] = None


class FinanceDataOut(CamelModel):
    paid_at: Optional[datetime] = None
    paid_amount: Optional[int] = None
    penalty: Optional[PenaltyPayload] = None
    status_history: List[StatusHistoryPayload]
    overdue_days: Optional[int] = None
    collection_stage: Optional[CollectionStage] = None

    @model_validator(mode="after")
    def check_history(self) -> "FinanceDataOut":
        if not self.status_history:
            raise ValueError("status history is empty")
        return self


class CollectionGoalDataIn(CamelModel):
    type: CollectionGoalType
    stage: CollectionStage
    priority: CollectionGoalPriority
    deal_aid: str
    finance_faid: str
    client_aid: Optional[str] = None
    overdue_days: int
    assignee_group: str
    deadline: datetime
    auto_created: bool
    instructions: str
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None


class NoticeVariablePayload(CamelModel):
    key: str
    value: Union[int, str]


class NoticeDataIn(CamelModel):
    channel: ReminderChannel
    template_key: str
    variables: List[NoticeVariablePayload] = []
    related_deal_aid: Optional[str] = None
    related_finance_faid: Optional[str] = None
    triggered_by: NoticeTriggeredBy
    trigger_reason: NoticeTriggerReason
    send_after: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
