"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union


class FinanceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class HistorySource(str, Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"
    AUTO_RULE = "AUTO_RULE"


class PaymentChannel(str, Enum):
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    INTERNAL_WALLET = "INTERNAL_WALLET"


class ReminderChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    TELEGRAM = "TELEGRAM"


class ScheduleOrigin(str, Enum):
    SYSTEM = "SYSTEM"
    MIGRATION = "MIGRATION"
    MANUAL = "MANUAL"


class RiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CollectionStage(str, Enum):
    """Collections workflow position, declared in escalation order"""

    REMINDER_DAY_1 = "REMINDER_DAY_1"
    REMINDER_DAY_2 = "REMINDER_DAY_2"
    CLIENT_CALL = "CLIENT_CALL"
    GUARANTOR_CALL = "GUARANTOR_CALL"
    FIELD_VISIT = "FIELD_VISIT"
    SECURITY_ESCALATION = "SECURITY_ESCALATION"
    CLOSED = "CLOSED"

    @property
    def rank(self) -> int:
        return list(CollectionStage).index(self)

    def is_later_than(self, other: "CollectionStage") -> bool:
        return self.rank > other.rank


class CollectionGoalType(str, Enum):
    CLIENT_CALL = "CLIENT_CALL"
    GUARANTOR_CALL = "GUARANTOR_CALL"
    FIELD_VISIT = "FIELD_VISIT"
    LEGAL_NOTICE = "LEGAL_NOTICE"


class CollectionGoalPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NoticeTriggerReason(str, Enum):
    PAYMENT_REMINDER = "PAYMENT_REMINDER"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    DEAL_STATUS = "DEAL_STATUS"
    DEBT_COLLECTION = "DEBT_COLLECTION"
    CUSTOM = "CUSTOM"


class NoticeTriggeredBy(str, Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"


class NoticeStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"


@dataclass
class ScoringInput:
    """Applicant attributes declared on a loan application"""

    marital_status: Optional[str] = None
    declared_income: Optional[int] = None
    credit_history_notes: Optional[str] = None
    guarantor_count: int = 0


@dataclass(frozen=True)
class ScoreResult:
    """Output of applicant scoring"""

    score: int
    tier: RiskTier
    needs_review: bool = False


@dataclass
class StatusHistoryEntry:
    status: FinanceStatus
    changed_at: datetime
    source: HistorySource
    comment: Optional[str] = None
    changed_by: Optional[str] = None


@dataclass
class PenaltyInfo:
    """Late-payment penalty accrued on an overdue installment"""

    grace_days_used: int
    daily_rate_percent: Decimal
    total_penalty_amount: Decimal
    calculated_at: datetime
    reason: Optional[str] = None
    frozen_at: Optional[datetime] = None
    waived_at: Optional[datetime] = None
    waived_amount: Optional[Decimal] = None


@dataclass
class Installment:
    """Single payment obligation within a deal's payment schedule (a "finance")"""

    faid: str
    deal_aid: str
    client_aid: Optional[str]
    payment_number: int
    payment_date: date
    total_amount: int
    principal_amount: int
    profit_share_amount: int
    service_fee_amount: Optional[int] = None
    status: FinanceStatus = FinanceStatus.PENDING
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    penalty: Optional[PenaltyInfo] = None
    preferred_payment_channel: PaymentChannel = PaymentChannel.CARD
    auto_debit_enabled: bool = False
    reminder_schedule_days: List[int] = field(default_factory=list)
    generated_by: ScheduleOrigin = ScheduleOrigin.SYSTEM
    paid_at: Optional[datetime] = None
    paid_amount: Optional[int] = None
    overdue_days: Optional[int] = None
    collection_stage: Optional[CollectionStage] = None
    version: int = 0

    @property
    def components_total(self) -> int:
        return self.principal_amount + self.profit_share_amount + (self.service_fee_amount or 0)


@dataclass
class PaymentScheduleSummary:
    total_installments: int
    total_amount: int
    total_principal: int
    total_profit_share: int
    total_service_fees: int
    next_payment_date: date


@dataclass
class PaymentScheduleResult:
    items: List[Installment]
    summary: PaymentScheduleSummary


@dataclass
class OverdueEvent:
    """Notification from the lifecycle to the escalation engine"""

    deal_aid: str
    finance_faid: str
    overdue_days: int
    client_aid: Optional[str] = None
    grace_period_days: int = 0

    @property
    def days_beyond_grace(self) -> int:
        return max(self.overdue_days - self.grace_period_days, 0)


@dataclass
class CollectionGoal:
    """Active step in the overdue-recovery workflow for one installment"""

    goal_id: str
    type: CollectionGoalType
    stage: CollectionStage
    priority: CollectionGoalPriority
    deal_aid: str
    finance_faid: str
    client_aid: Optional[str]
    overdue_days: int
    assignee_group: str
    deadline: datetime
    auto_created: bool
    title: str
    instructions: str
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.stage != CollectionStage.CLOSED


@dataclass
class NoticeVariable:
    key: str
    value: Union[str, int]


@dataclass
class NoticeTrigger:
    """Request to queue a notice; channel falls back to configured reminder channels"""

    template_key: str
    trigger_reason: NoticeTriggerReason
    variables: List[NoticeVariable] = field(default_factory=list)
    channel: Optional[ReminderChannel] = None
    related_deal_aid: Optional[str] = None
    related_finance_faid: Optional[str] = None
    triggered_by: NoticeTriggeredBy = NoticeTriggeredBy.SYSTEM
    send_after: Optional[datetime] = None


@dataclass
class Notice:
    """Queued reminder/overdue communication"""

    notice_id: str
    channel: ReminderChannel
    template_key: str
    title: str
    variables: List[NoticeVariable]
    trigger_reason: NoticeTriggerReason
    triggered_by: NoticeTriggeredBy
    queued_on: date
    related_deal_aid: Optional[str] = None
    related_finance_faid: Optional[str] = None
    send_after: Optional[datetime] = None
    retry_count: int = 0
    status: NoticeStatus = NoticeStatus.QUEUED
    last_error: Optional[str] = None

    @property
    def idempotency_key(self) -> tuple:
        return (self.related_finance_faid, self.trigger_reason, self.template_key, self.queued_on)


@dataclass
class OverdueSweepResult:
    """Outcome of one evaluate_overdue run"""

    transitioned: List[Installment] = field(default_factory=list)
    goals_updated: List[CollectionGoal] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class DealBalance:
    deal_aid: str
    total_debt: int
    overdue_amount: int
    penalty_amount: Decimal
    next_payment_date: Optional[date]
    next_payment_amount: Optional[int]
