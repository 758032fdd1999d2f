"""Servicing engine - the operations exposed to request handlers and cron jobs.

All collaborators are passed in; nothing here opens sessions or reads
process settings, so tests can drive it with in-memory fakes.
"""

import logging
import time
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional

from esnad_servicing.domain.collections import close_goal, escalate
from esnad_servicing.domain.configuration import CollectionPolicy, ConfigurationStore, PaymentLimitsConfig
from esnad_servicing.domain.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from esnad_servicing.domain.installments import PaymentScheduleInput, generate_schedule
from esnad_servicing.domain.lifecycle import evaluate_overdue, mark_paid, waive_penalty
from esnad_servicing.domain.models import (
    CollectionGoal,
    CollectionStage,
    DealBalance,
    FinanceStatus,
    HistorySource,
    Installment,
    Notice,
    OverdueEvent,
    OverdueSweepResult,
    PaymentChannel,
    PaymentScheduleResult,
    ScheduleOrigin,
    ScoreResult,
    ScoringInput,
)
from esnad_servicing.domain.notices import payment_received_trigger, reminder_triggers
from esnad_servicing.domain.ports import CollectionGoalStore, InstallmentStore
from esnad_servicing.domain.scoring import score_applicant
from esnad_servicing.infrastructure.observability.logging import log_sweep, log_transition
from esnad_servicing.infrastructure.observability.metrics import (
    concurrency_conflict_counter,
    installment_transition_counter,
    penalty_waiver_counter,
    record_goal_change,
    score_tier_counter,
    sweep_duration_histogram,
)
from esnad_servicing.services.notices import NoticeDispatcher
from esnad_servicing.utils.date_utils import utcnow

OPEN_STATUSES = (FinanceStatus.PENDING, FinanceStatus.OVERDUE)


@dataclass
class _SweepProgress:
    """Steps of one installment's evaluation that already reached storage"""

    transitioned: Optional[Installment] = None
    goal: Optional[CollectionGoal] = None
    notice: Optional[Notice] = None


class ServicingEngine:
    def __init__(
        self,
        config: ConfigurationStore,
        finances: InstallmentStore,
        goals: CollectionGoalStore,
        dispatcher: NoticeDispatcher,
        conflict_retries: int = 1,
        clock=utcnow,
    ):
        self.config = config
        self.finances = finances
        self.goals = goals
        self.dispatcher = dispatcher
        self.conflict_retries = conflict_retries
        self.clock = clock

    # Scoring

    def score_applicant(self, applicant: ScoringInput) -> ScoreResult:
        result = score_applicant(applicant, self.config.scoring_weights(), self.config.scoring_thresholds())
        score_tier_counter.labels(tier=result.tier.value).inc()
        return result

    # Schedules

    def prepare_schedule_input(
        self,
        deal_aid: str,
        total_amount: int,
        first_payment_date: date,
        term_months: Optional[int] = None,
        upfront_amount: Optional[int] = None,
        payment_method: PaymentChannel = PaymentChannel.CARD,
        client_aid: Optional[str] = None,
        generated_by: ScheduleOrigin = ScheduleOrigin.SYSTEM,
    ) -> PaymentScheduleInput:
        """Fill limits, split and default term from configuration"""
        limits = self.config.payment_limits()
        return PaymentScheduleInput(
            deal_aid=deal_aid,
            client_aid=client_aid,
            total_amount=total_amount,
            upfront_amount=upfront_amount,
            term_months=term_months if term_months is not None else limits.default_term_months,
            first_payment_date=first_payment_date,
            payment_method=payment_method,
            limits=limits,
            split=self.config.schedule_split(),
            generated_by=generated_by,
        )

    def preview_schedule(self, schedule_input: PaymentScheduleInput, today: Optional[date] = None) -> PaymentScheduleResult:
        return generate_schedule(schedule_input, today=today, now=self.clock())

    def generate_schedule(self, schedule_input: PaymentScheduleInput, today: Optional[date] = None) -> PaymentScheduleResult:
        """Generate and persist the schedule; a deal gets one schedule only"""
        if self.finances.load_installments(schedule_input.deal_aid):
            raise ValidationError(f"Deal {schedule_input.deal_aid} already has a payment schedule")

        result = self.preview_schedule(schedule_input, today=today)
        items = self.finances.create_installments(result.items)
        logging.info(
            "Payment schedule generated",
            extra={
                "deal_aid": schedule_input.deal_aid,
                "step": "schedule_generated",
                "installments": len(items),
                "total_amount": result.summary.total_amount,
            },
        )
        return replace(result, items=items)

    # Payments

    def _get_installment(self, faid: str) -> Installment:
        installment = self.finances.get_installment(faid)
        if installment is None:
            raise NotFoundError(f"Finance {faid} not found")
        return installment

    def record_payment(
        self,
        faid: str,
        amount: int,
        source: HistorySource = HistorySource.USER,
        changed_by: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Installment:
        """
        Mark an installment PAID.

        Closes the open collection goal and queues a payment-received notice.
        Re-recording a payment on a PAID installment returns it unchanged and
        only closes a collection goal that is still open.
        """
        limits = self.config.payment_limits()

        for attempt in range(self.conflict_retries + 1):
            installment = self._get_installment(faid)
            if installment.status == FinanceStatus.PAID:
                # An earlier attempt may have stopped before closing the goal
                self._close_open_goal(installment.deal_aid, faid, "PAID")
                return installment

            open_goal = self.goals.load_open_collection_goal(installment.deal_aid, faid)
            paid = mark_paid(installment, amount, source, self.clock(), changed_by=changed_by, comment=comment)
            if open_goal is not None:
                paid = replace(paid, collection_stage=CollectionStage.CLOSED)

            try:
                saved = self.finances.save_installment(paid)
            except ConcurrencyConflict:
                concurrency_conflict_counter.labels(entity="finance").inc()
                if attempt == self.conflict_retries:
                    raise
                continue
            break

        installment_transition_counter.labels(status=FinanceStatus.PAID.value).inc()
        log_transition(saved.faid, saved.deal_aid, installment.status.value, saved.status.value, source.value)

        self._close_open_goal(saved.deal_aid, saved.faid, "PAID")
        self.dispatcher.dispatch(payment_received_trigger(saved), limits.reminder_channels, self.clock().date())
        return saved

    def waive_penalty(self, faid: str, reason: str) -> Installment:
        for attempt in range(self.conflict_retries + 1):
            installment = self._get_installment(faid)
            waived = waive_penalty(installment, reason, self.clock())
            if waived is installment:
                return installment
            try:
                saved = self.finances.save_installment(waived)
            except ConcurrencyConflict:
                concurrency_conflict_counter.labels(entity="finance").inc()
                if attempt == self.conflict_retries:
                    raise
                continue
            penalty_waiver_counter.inc()
            logging.info(
                "Penalty waived",
                extra={"faid": faid, "reason": reason, "waived_amount": str(saved.penalty.waived_amount)},
            )
            return saved

    # Collections

    def _close_open_goal(self, deal_aid: str, faid: str, reason: str) -> Optional[CollectionGoal]:
        for attempt in range(self.conflict_retries + 1):
            goal = self.goals.load_open_collection_goal(deal_aid, faid)
            if goal is None:
                return None
            try:
                closed = self.goals.save_collection_goal(close_goal(goal, reason, self.clock()))
            except ConcurrencyConflict:
                concurrency_conflict_counter.labels(entity="collection_goal").inc()
                if attempt == self.conflict_retries:
                    raise
                continue
            record_goal_change("closed", goal.stage.value)
            logging.info(
                "Collection goal closed",
                extra={"goal_id": closed.goal_id, "deal_aid": deal_aid, "faid": faid, "reason": reason},
            )
            return closed

    def close_collection_goal(self, deal_aid: str, faid: str, reason: str) -> CollectionGoal:
        closed = self._close_open_goal(deal_aid, faid, reason)
        if closed is None:
            raise NotFoundError(f"No open collection goal for deal {deal_aid}, finance {faid}")
        return closed

    # Daily sweep

    def evaluate_overdue(self, as_of: Optional[date] = None) -> OverdueSweepResult:
        """
        Daily sweep: classify unpaid installments, escalate collections and
        queue overdue notices.

        Safe to re-run for the same as_of: nothing is appended, created or
        queued twice. An installment whose update loses an optimistic race is
        re-read and retried once, then skipped until the next sweep.
        """
        as_of = as_of or date.today()
        limits = self.config.payment_limits()
        policy = self.config.collection_policy()
        result = OverdueSweepResult()
        start_time = time.time()

        with sweep_duration_histogram.time():
            for candidate in self.finances.list_open_installments():
                progress = _SweepProgress()
                for attempt in range(self.conflict_retries + 1):
                    try:
                        self._evaluate_one(candidate.faid, as_of, limits, policy, progress)
                        break
                    except ConcurrencyConflict as e:
                        concurrency_conflict_counter.labels(entity=e.entity).inc()
                        if attempt == self.conflict_retries:
                            result.skipped.append(candidate.faid)
                            logging.warning(
                                f"Skipping installment after repeated conflicts: {e}",
                                extra={"faid": candidate.faid, "as_of": as_of.isoformat()},
                            )

                if progress.transitioned is not None:
                    result.transitioned.append(progress.transitioned)
                if progress.goal is not None:
                    result.goals_updated.append(progress.goal)
                if progress.notice is not None:
                    result.notices.append(progress.notice)

        duration_ms = (time.time() - start_time) * 1000
        log_sweep(
            as_of.isoformat(),
            len(result.transitioned),
            len(result.goals_updated),
            len(result.notices),
            len(result.skipped),
            duration_ms,
        )
        return result

    def _evaluate_one(
        self,
        faid: str,
        as_of: date,
        limits: PaymentLimitsConfig,
        policy: CollectionPolicy,
        progress: _SweepProgress,
    ) -> None:
        now = self.clock()
        installment = self._get_installment(faid)
        evaluation = evaluate_overdue(
            installment, as_of, limits.grace_period_days, limits.penalty_daily_rate_percent, now
        )
        current = evaluation.installment
        if current.status != FinanceStatus.OVERDUE:
            return

        goal = self.goals.load_open_collection_goal(current.deal_aid, faid)
        event = OverdueEvent(
            deal_aid=current.deal_aid,
            finance_faid=faid,
            overdue_days=current.overdue_days or 0,
            client_aid=current.client_aid,
            grace_period_days=limits.grace_period_days,
        )
        outcome = escalate(goal, event, policy, now)
        if outcome.changed:
            current = replace(current, collection_stage=outcome.goal.stage)

        if current != installment:
            current = self.finances.save_installment(current)
            if evaluation.transitioned:
                progress.transitioned = current
                installment_transition_counter.labels(status=FinanceStatus.OVERDUE.value).inc()
                log_transition(
                    faid, current.deal_aid, installment.status.value, current.status.value, "AUTO_RULE"
                )

        if outcome.changed:
            progress.goal = self.goals.save_collection_goal(outcome.goal)
            record_goal_change(outcome.action, outcome.goal.stage.value)

        notice = self.dispatcher.notify_overdue(
            current,
            transitioned=progress.transitioned is not None,
            grace_period_days=limits.grace_period_days,
            reminder_channels=limits.reminder_channels,
            today=as_of,
        )
        if notice is not None:
            progress.notice = notice

    # Reminders

    def send_reminders(self, as_of: Optional[date] = None) -> List[Notice]:
        """Queue reminders for PENDING installments due reminder_days_before days from as_of"""
        as_of = as_of or date.today()
        limits = self.config.payment_limits()
        if not limits.reminder_enabled:
            return []

        queued = []
        for installment in self.finances.list_open_installments():
            if installment.status != FinanceStatus.PENDING:
                continue
            for trigger in reminder_triggers(installment, as_of, limits.reminder_days_before):
                outcome = self.dispatcher.dispatch(trigger, limits.reminder_channels, as_of)
                if outcome.outcome != "duplicate":
                    queued.append(outcome.notice)
        return queued

    # Balances

    def deal_balance(self, deal_aid: str) -> DealBalance:
        """Outstanding debt computed from the schedule; a deal without one has no balance"""
        installments = sorted(self.finances.load_installments(deal_aid), key=lambda i: i.payment_number)
        if not installments:
            raise NotFoundError(f"Deal {deal_aid} has no payment schedule")

        unpaid = [i for i in installments if i.status in OPEN_STATUSES]
        overdue = [i for i in unpaid if i.status == FinanceStatus.OVERDUE]
        penalty = sum(
            (i.penalty.total_penalty_amount for i in unpaid if i.penalty is not None),
            Decimal("0.00"),
        )
        next_installment = unpaid[0] if unpaid else None

        return DealBalance(
            deal_aid=deal_aid,
            total_debt=sum(i.total_amount for i in unpaid),
            overdue_amount=sum(i.total_amount for i in overdue),
            penalty_amount=penalty,
            next_payment_date=next_installment.payment_date if next_installment else None,
            next_payment_amount=next_installment.total_amount if next_installment else None,
        )
