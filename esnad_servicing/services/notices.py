"""Idempotent notice queueing, overdue follow-ups and delivery bookkeeping"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional

from esnad_servicing.domain.exceptions import NoticeDeliveryError, NotFoundError
from esnad_servicing.domain.models import (
    Installment,
    Notice,
    NoticeStatus,
    NoticeTrigger,
    NoticeTriggerReason,
    NoticeVariable,
    ReminderChannel,
)
from esnad_servicing.domain.notices import (
    build_notice,
    follow_up_due,
    notice_title,
    overdue_trigger,
    resolve_channel,
)
from esnad_servicing.domain.ports import NoticeStore
from esnad_servicing.infrastructure.observability.metrics import record_notice
from esnad_servicing.utils.date_utils import utcnow


@dataclass
class DispatchOutcome:
    notice: Notice
    outcome: str  # queued | duplicate | requeued


class NoticeDispatcher:
    """Queues each logical notice once per (finance, reason, template, day)"""

    def __init__(self, notices: NoticeStore, max_retries: int, cadence_days: int, clock=utcnow):
        self.notices = notices
        self.max_retries = max_retries
        self.cadence_days = cadence_days
        self.clock = clock

    def dispatch(
        self,
        trigger: NoticeTrigger,
        reminder_channels: List[ReminderChannel],
        today: date,
    ) -> DispatchOutcome:
        """
        Queue a notice unless the same one was already queued today.

        A same-day notice that failed delivery (and still has retries left) is
        re-queued instead of duplicated.
        """
        reason = trigger.trigger_reason.value
        existing = self.notices.find_notice(
            trigger.related_finance_faid,
            trigger.trigger_reason,
            trigger.template_key,
            today,
        )
        if existing is not None:
            if existing.status == NoticeStatus.FAILED:
                requeued = self.notices.save_notice(
                    replace(existing, status=NoticeStatus.QUEUED, send_after=self.clock())
                )
                record_notice(reason, "requeued")
                return DispatchOutcome(notice=requeued, outcome="requeued")
            record_notice(reason, "duplicate")
            return DispatchOutcome(notice=existing, outcome="duplicate")

        channel = resolve_channel(trigger, reminder_channels)
        candidate = build_notice(trigger, channel, today)
        notice = self.notices.enqueue_notice(candidate)
        if notice.notice_id != candidate.notice_id:
            # Lost the insert race; the store handed back the winner
            record_notice(reason, "duplicate")
            return DispatchOutcome(notice=notice, outcome="duplicate")

        record_notice(reason, "queued")
        logging.info(
            "Notice queued",
            extra={
                "notice_id": notice.notice_id,
                "faid": notice.related_finance_faid,
                "trigger_reason": reason,
                "template_key": notice.template_key,
                "channel": notice.channel.value,
            },
        )
        return DispatchOutcome(notice=notice, outcome="queued")

    def notify_overdue(
        self,
        installment: Installment,
        transitioned: bool,
        grace_period_days: int,
        reminder_channels: List[ReminderChannel],
        today: date,
    ) -> Optional[Notice]:
        """
        Overdue notice for an installment in OVERDUE status.

        The first notice is queued on the transition (or on the first sweep
        that finds none). Afterwards the latest notice is re-queued with
        retry_count + 1 every cadence_days days past grace instead of
        creating a new one, until retry_count reaches max_retries.
        """
        latest = self.notices.find_latest_notice(installment.faid, NoticeTriggerReason.DEBT_COLLECTION)
        if transitioned or latest is None:
            outcome = self.dispatch(overdue_trigger(installment), reminder_channels, today)
            return outcome.notice if outcome.outcome != "duplicate" else None

        if latest.queued_on >= today or latest.status == NoticeStatus.PERMANENTLY_FAILED:
            return None
        # Follow-ups stop at max_retries; the notice keeps its delivery status
        if latest.retry_count >= self.max_retries:
            return None

        days_beyond_grace = (installment.overdue_days or 0) - grace_period_days
        if not follow_up_due(days_beyond_grace, self.cadence_days):
            return None

        variables = [v for v in latest.variables if v.key != "overdueDays"]
        variables.append(NoticeVariable(key="overdueDays", value=installment.overdue_days or 0))
        followed_up = self.notices.save_notice(
            replace(
                latest,
                variables=variables,
                title=notice_title(latest.trigger_reason, variables),
                retry_count=latest.retry_count + 1,
                status=NoticeStatus.QUEUED,
                queued_on=today,
                send_after=self.clock(),
            )
        )
        record_notice(followed_up.trigger_reason.value, "requeued")
        return followed_up

    def record_delivery(self, notice_id: str, delivered: bool, error: Optional[str] = None) -> Notice:
        """Record the channel sender's outcome; failures count toward max_retries"""
        notice = self.notices.get_notice(notice_id)
        if notice is None:
            raise NotFoundError(f"Notice {notice_id} not found")

        if delivered:
            updated = self.notices.save_notice(replace(notice, status=NoticeStatus.SENT, last_error=None))
            record_notice(notice.trigger_reason.value, "sent")
            return updated

        retry_count = notice.retry_count + 1
        status = NoticeStatus.PERMANENTLY_FAILED if retry_count >= self.max_retries else NoticeStatus.FAILED
        updated = self.notices.save_notice(
            replace(notice, status=status, retry_count=retry_count, last_error=error)
        )
        self._report(updated, "failed")
        return updated

    def _report(self, notice: Notice, outcome: str) -> None:
        if notice.status != NoticeStatus.PERMANENTLY_FAILED:
            record_notice(notice.trigger_reason.value, outcome)
            return

        record_notice(notice.trigger_reason.value, "permanently_failed")
        logging.warning(
            "Notice permanently failed",
            extra={
                "notice_id": notice.notice_id,
                "faid": notice.related_finance_faid,
                "trigger_reason": notice.trigger_reason.value,
                "retry_count": notice.retry_count,
                "last_error": notice.last_error,
            },
        )


class NoticeRelay:
    """Hands queued notices to the external channel sender"""

    def __init__(self, notices: NoticeStore, dispatcher: NoticeDispatcher, sender, batch_size: int = 100, clock=utcnow):
        self.notices = notices
        self.dispatcher = dispatcher
        self.sender = sender
        self.batch_size = batch_size
        self.clock = clock

    def deliver_pending(self) -> Dict[str, int]:
        stats = {"sent": 0, "failed": 0}
        for notice in self.notices.list_deliverable_notices(self.clock(), self.batch_size):
            try:
                self.sender.send(notice)
            except NoticeDeliveryError as e:
                self.dispatcher.record_delivery(notice.notice_id, delivered=False, error=str(e))
                stats["failed"] += 1
                continue
            self.dispatcher.record_delivery(notice.notice_id, delivered=True)
            stats["sent"] += 1
        return stats
