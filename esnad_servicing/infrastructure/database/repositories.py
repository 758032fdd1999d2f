"""Data access layer for finances, collection goals, notices and settings"""

from dataclasses import asdict, replace
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esnad_servicing.domain.configuration import ConfigValue, config_value_adapter
from esnad_servicing.domain.exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    MalformedRecordError,
    NotFoundError,
)
from esnad_servicing.domain.models import (
    CollectionGoal,
    CollectionStage,
    FinanceStatus,
    Installment,
    Notice,
    NoticeStatus,
    NoticeTriggerReason,
    NoticeVariable,
    PenaltyInfo,
    StatusHistoryEntry,
)
from esnad_servicing.infrastructure.database.models import (
    FinanceRecord,
    GoalRecord,
    NoticeRecord,
    SettingRecord,
)
from esnad_servicing.infrastructure.database.payloads import (
    CollectionGoalDataIn,
    FinanceDataIn,
    FinanceDataOut,
    NoticeDataIn,
)

COLLECTION_GOAL_TYPE = "COLLECTION"
OPEN_STATUSES = [FinanceStatus.PENDING.value, FinanceStatus.OVERDUE.value]


def _validate(model, payload: Any, entity: str, entity_id: str):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedRecordError(f"{entity} {entity_id} has a malformed payload: {e}") from e


def _finance_payloads(installment: Installment):
    fields = asdict(installment)
    data_in = _validate(FinanceDataIn, fields, "finance", installment.faid)
    data_out = _validate(FinanceDataOut, fields, "finance", installment.faid)
    return data_in.model_dump(mode="json", by_alias=True), data_out.model_dump(mode="json", by_alias=True)


def _to_installment(record: FinanceRecord) -> Installment:
    data_in = _validate(FinanceDataIn, record.data_in, "finance", record.faid)
    data_out = _validate(FinanceDataOut, record.data_out or {}, "finance", record.faid)

    latest = data_out.status_history[-1].status
    if latest.value != record.status_name:
        raise MalformedRecordError(
            f"finance {record.faid} status {record.status_name} disagrees with its history ({latest.value})"
        )

    return Installment(
        faid=record.faid,
        deal_aid=data_in.deal_aid,
        client_aid=data_in.client_aid,
        payment_number=data_in.payment_number,
        payment_date=data_in.payment_date,
        total_amount=data_in.total_amount,
        principal_amount=data_in.principal_amount,
        profit_share_amount=data_in.profit_share_amount,
        service_fee_amount=data_in.service_fee_amount,
        status=latest,
        status_history=[StatusHistoryEntry(**entry.model_dump()) for entry in data_out.status_history],
        penalty=PenaltyInfo(**data_out.penalty.model_dump()) if data_out.penalty else None,
        preferred_payment_channel=data_in.preferred_payment_channel,
        auto_debit_enabled=data_in.auto_debit_enabled,
        reminder_schedule_days=list(data_in.reminder_schedule_days),
        generated_by=data_in.generated_by,
        paid_at=data_out.paid_at,
        paid_amount=data_out.paid_amount,
        overdue_days=data_out.overdue_days,
        collection_stage=data_out.collection_stage,
        version=record.version,
    )


def _to_goal(record: GoalRecord) -> CollectionGoal:
    data = _validate(CollectionGoalDataIn, record.data_in, "collection goal", record.gaid)
    return CollectionGoal(
        goal_id=record.gaid,
        type=data.type,
        stage=data.stage,
        priority=data.priority,
        deal_aid=data.deal_aid,
        finance_faid=data.finance_faid,
        client_aid=data.client_aid,
        overdue_days=data.overdue_days,
        assignee_group=data.assignee_group,
        deadline=data.deadline,
        auto_created=data.auto_created,
        title=record.title,
        instructions=data.instructions,
        created_at=data.created_at,
        updated_at=data.updated_at,
        closed_at=data.closed_at,
        close_reason=data.close_reason,
        version=record.version,
    )


def _to_notice(record: NoticeRecord) -> Notice:
    data = _validate(NoticeDataIn, record.data_in, "notice", record.naid)
    try:
        status = NoticeStatus(record.status)
    except ValueError as e:
        raise MalformedRecordError(f"notice {record.naid} has unknown status {record.status}") from e
    return Notice(
        notice_id=record.naid,
        channel=data.channel,
        template_key=data.template_key,
        title=record.title,
        variables=[NoticeVariable(key=v.key, value=v.value) for v in data.variables],
        trigger_reason=data.trigger_reason,
        triggered_by=data.triggered_by,
        queued_on=record.queued_on,
        related_deal_aid=data.related_deal_aid,
        related_finance_faid=data.related_finance_faid,
        send_after=data.send_after,
        retry_count=data.retry_count,
        status=status,
        last_error=data.last_error,
    )


def _notice_payload(notice: Notice) -> dict:
    data = _validate(NoticeDataIn, asdict(notice), "notice", notice.notice_id)
    return data.model_dump(mode="json", by_alias=True)


class SettingsRepository:
    """Repository for typed business settings"""

    def __init__(self, db: Session):
        self.db = db

    def load_configuration(self, key: str) -> Optional[ConfigValue]:
        """Fetch one setting parsed into its typed variant, None when absent"""
        record = self.db.query(SettingRecord).filter(SettingRecord.attribute == key).first()
        if record is None:
            return None

        if record.type == "json":
            raw = {"type": "json", "data": record.data_in}
        else:
            raw = {"type": record.type, "value": record.value}
        try:
            return config_value_adapter.validate_python(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Setting {key} of type {record.type} is malformed: {e}") from e

    def upsert_setting(
        self,
        attribute: str,
        type_name: str,
        value: Optional[str] = None,
        data_in: Any = None,
        order: int = 0,
    ) -> None:
        record = self.db.query(SettingRecord).filter(SettingRecord.attribute == attribute).first()
        if record is None:
            record = SettingRecord(attribute=attribute)
            self.db.add(record)
        record.type = type_name
        record.value = value
        record.data_in = data_in
        record.order = order
        self.db.flush()


class FinanceRepository:
    """Repository for schedule installments"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(FinanceRecord).populate_existing().filter(FinanceRecord.deleted_at.is_(None))

    def get_installment(self, faid: str) -> Optional[Installment]:
        record = self._query().filter(FinanceRecord.faid == faid).first()
        return _to_installment(record) if record else None

    def load_installments(self, deal_aid: str) -> List[Installment]:
        records = (
            self._query()
            .filter(FinanceRecord.deal_aid == deal_aid)
            .order_by(FinanceRecord.payment_number)
            .all()
        )
        return [_to_installment(r) for r in records]

    def list_open_installments(self) -> List[Installment]:
        """PENDING and OVERDUE installments in deal and payment order"""
        records = (
            self._query()
            .filter(FinanceRecord.status_name.in_(OPEN_STATUSES))
            .order_by(FinanceRecord.deal_aid, FinanceRecord.payment_number)
            .all()
        )
        return [_to_installment(r) for r in records]

    def create_installments(self, items: List[Installment]) -> List[Installment]:
        """Persist a freshly generated schedule; stored rows start at version 1"""
        created = []
        for item in items:
            stored = replace(item, version=1)
            data_in, data_out = _finance_payloads(stored)
            self.db.add(
                FinanceRecord(
                    faid=stored.faid,
                    deal_aid=stored.deal_aid,
                    client_aid=stored.client_aid,
                    payment_number=stored.payment_number,
                    payment_date=stored.payment_date,
                    total_amount=stored.total_amount,
                    status_name=stored.status.value,
                    version=1,
                    data_in=data_in,
                    data_out=data_out,
                )
            )
            created.append(stored)
        self.db.flush()
        return created

    def save_installment(self, installment: Installment) -> Installment:
        """Compare-and-swap on version"""
        data_in, data_out = _finance_payloads(installment)
        updated = (
            self.db.query(FinanceRecord)
            .filter(FinanceRecord.faid == installment.faid, FinanceRecord.version == installment.version)
            .update(
                {
                    FinanceRecord.status_name: installment.status.value,
                    FinanceRecord.data_in: data_in,
                    FinanceRecord.data_out: data_out,
                    FinanceRecord.version: FinanceRecord.version + 1,
                },
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            if self.get_installment(installment.faid) is None:
                raise NotFoundError(f"Finance {installment.faid} not found")
            raise ConcurrencyConflict("finance", installment.faid, installment.version)
        return replace(installment, version=installment.version + 1)


class GoalRepository:
    """Repository for collection goals"""

    def __init__(self, db: Session):
        self.db = db

    def _open_record(self, deal_aid: str, finance_faid: str) -> Optional[GoalRecord]:
        return (
            self.db.query(GoalRecord)
            .populate_existing()
            .filter(
                GoalRecord.type == COLLECTION_GOAL_TYPE,
                GoalRecord.deal_aid == deal_aid,
                GoalRecord.finance_faid == finance_faid,
                GoalRecord.is_open.is_(True),
            )
            .first()
        )

    def load_open_collection_goal(self, deal_aid: str, finance_faid: str) -> Optional[CollectionGoal]:
        record = self._open_record(deal_aid, finance_faid)
        return _to_goal(record) if record else None

    def save_collection_goal(self, goal: CollectionGoal) -> CollectionGoal:
        """Insert a new goal (version 0) or compare-and-swap an existing one"""
        data = _validate(CollectionGoalDataIn, asdict(goal), "collection goal", goal.goal_id)
        data_in = data.model_dump(mode="json", by_alias=True)

        if goal.version == 0:
            # uq_open_collection_goal rejects a second open goal for the installment
            try:
                with self.db.begin_nested():
                    self.db.add(
                        GoalRecord(
                            gaid=goal.goal_id,
                            type=COLLECTION_GOAL_TYPE,
                            title=goal.title,
                            deal_aid=goal.deal_aid,
                            finance_faid=goal.finance_faid,
                            stage=goal.stage.value,
                            is_open=goal.is_open,
                            version=1,
                            data_in=data_in,
                            created_at=goal.created_at,
                            updated_at=goal.updated_at,
                        )
                    )
                    self.db.flush()
            except IntegrityError as e:
                raise ConcurrencyConflict("collection_goal", goal.goal_id, goal.version) from e
            return replace(goal, version=1)

        updated = (
            self.db.query(GoalRecord)
            .filter(GoalRecord.gaid == goal.goal_id, GoalRecord.version == goal.version)
            .update(
                {
                    GoalRecord.title: goal.title,
                    GoalRecord.stage: goal.stage.value,
                    GoalRecord.is_open: goal.stage != CollectionStage.CLOSED,
                    GoalRecord.data_in: data_in,
                    GoalRecord.version: GoalRecord.version + 1,
                    GoalRecord.updated_at: goal.updated_at,
                },
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            raise ConcurrencyConflict("collection_goal", goal.goal_id, goal.version)
        return replace(goal, version=goal.version + 1)


class NoticeRepository:
    """Repository for queued notices"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(NoticeRecord).populate_existing()

    def find_notice(
        self,
        finance_faid: Optional[str],
        trigger_reason: NoticeTriggerReason,
        template_key: str,
        queued_on: date,
    ) -> Optional[Notice]:
        faid_filter = (
            NoticeRecord.related_finance_faid.is_(None)
            if finance_faid is None
            else NoticeRecord.related_finance_faid == finance_faid
        )
        record = (
            self._query()
            .filter(
                faid_filter,
                NoticeRecord.type_name == trigger_reason.value,
                NoticeRecord.template_key == template_key,
                NoticeRecord.queued_on == queued_on,
            )
            .first()
        )
        return _to_notice(record) if record else None

    def find_latest_notice(self, finance_faid: str, trigger_reason: NoticeTriggerReason) -> Optional[Notice]:
        record = (
            self._query()
            .filter(
                NoticeRecord.related_finance_faid == finance_faid,
                NoticeRecord.type_name == trigger_reason.value,
            )
            .order_by(NoticeRecord.queued_on.desc(), NoticeRecord.created_at.desc())
            .first()
        )
        return _to_notice(record) if record else None

    def get_notice(self, notice_id: str) -> Optional[Notice]:
        record = self._query().filter(NoticeRecord.naid == notice_id).first()
        return _to_notice(record) if record else None

    def enqueue_notice(self, notice: Notice) -> Notice:
        """Insert a notice, or return the stored one if a concurrent writer queued the same key first"""
        try:
            with self.db.begin_nested():
                self.db.add(
                    NoticeRecord(
                        naid=notice.notice_id,
                        title=notice.title,
                        type_name=notice.trigger_reason.value,
                        template_key=notice.template_key,
                        related_finance_faid=notice.related_finance_faid,
                        queued_on=notice.queued_on,
                        status=notice.status.value,
                        send_after=notice.send_after,
                        data_in=_notice_payload(notice),
                    )
                )
                self.db.flush()
        except IntegrityError as e:
            existing = self.find_notice(*notice.idempotency_key)
            if existing is None:
                raise ConcurrencyConflict("notice", notice.notice_id, 0) from e
            return existing
        return notice

    def save_notice(self, notice: Notice) -> Notice:
        record = self.db.query(NoticeRecord).filter(NoticeRecord.naid == notice.notice_id).first()
        if record is None:
            raise NotFoundError(f"Notice {notice.notice_id} not found")
        record.title = notice.title
        record.queued_on = notice.queued_on
        record.status = notice.status.value
        record.send_after = notice.send_after
        record.data_in = _notice_payload(notice)
        self.db.flush()
        return notice

    def list_deliverable_notices(self, now: datetime, limit: int) -> List[Notice]:
        """QUEUED notices whose send_after has passed, oldest first"""
        records = (
            self._query()
            .filter(
                NoticeRecord.status == NoticeStatus.QUEUED.value,
                (NoticeRecord.send_after.is_(None)) | (NoticeRecord.send_after <= now),
            )
            .order_by(NoticeRecord.created_at)
            .limit(limit)
            .all()
        )
        return [_to_notice(r) for r in records]
