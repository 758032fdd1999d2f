"""Collection escalation - stage resolution and goal create/advance/close"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from esnad_servicing.domain.configuration import CollectionPolicy
from esnad_servicing.domain.models import (
    CollectionGoal,
    CollectionGoalPriority,
    CollectionGoalType,
    CollectionStage,
    OverdueEvent,
)
from esnad_servicing.utils.ids import generate_aid

STAGE_PRIORITY = {
    CollectionStage.REMINDER_DAY_1: CollectionGoalPriority.LOW,
    CollectionStage.REMINDER_DAY_2: CollectionGoalPriority.LOW,
    CollectionStage.CLIENT_CALL: CollectionGoalPriority.MEDIUM,
    CollectionStage.GUARANTOR_CALL: CollectionGoalPriority.HIGH,
    CollectionStage.FIELD_VISIT: CollectionGoalPriority.HIGH,
    CollectionStage.SECURITY_ESCALATION: CollectionGoalPriority.CRITICAL,
}

STAGE_GOAL_TYPE = {
    CollectionStage.REMINDER_DAY_1: CollectionGoalType.CLIENT_CALL,
    CollectionStage.REMINDER_DAY_2: CollectionGoalType.CLIENT_CALL,
    CollectionStage.CLIENT_CALL: CollectionGoalType.CLIENT_CALL,
    CollectionStage.GUARANTOR_CALL: CollectionGoalType.GUARANTOR_CALL,
    CollectionStage.FIELD_VISIT: CollectionGoalType.FIELD_VISIT,
    CollectionStage.SECURITY_ESCALATION: CollectionGoalType.LEGAL_NOTICE,
}

GOAL_TITLES = {
    CollectionGoalType.CLIENT_CALL: "Call client",
    CollectionGoalType.GUARANTOR_CALL: "Call guarantor",
    CollectionGoalType.FIELD_VISIT: "Security field visit",
    CollectionGoalType.LEGAL_NOTICE: "Legal notice",
}

STAGE_INSTRUCTIONS = {
    CollectionStage.REMINDER_DAY_1: "Remind the client about the missed payment.",
    CollectionStage.REMINDER_DAY_2: "Send a second reminder about the missed payment.",
    CollectionStage.CLIENT_CALL: "Contact the client about the overdue payment.",
    CollectionStage.GUARANTOR_CALL: "Contact the guarantor about the overdue payment.",
    CollectionStage.FIELD_VISIT: "Arrange a security service field visit.",
    CollectionStage.SECURITY_ESCALATION: "Critical delinquency. Escalate and prepare legal documents.",
}


@dataclass
class EscalationOutcome:
    goal: Optional[CollectionGoal]
    action: str  # created | advanced | unchanged

    @property
    def changed(self) -> bool:
        return self.action != "unchanged"


def priority_for(stage: CollectionStage) -> CollectionGoalPriority:
    return STAGE_PRIORITY[stage]


def goal_type_for(stage: CollectionStage) -> CollectionGoalType:
    return STAGE_GOAL_TYPE[stage]


def _describe(stage: CollectionStage, deal_aid: str, overdue_days: int) -> tuple[str, str]:
    title = f"[Collection] {GOAL_TITLES[goal_type_for(stage)]} for deal {deal_aid}. Overdue: {overdue_days} days"
    instructions = f"{STAGE_INSTRUCTIONS[stage]} Overdue: {overdue_days} days."
    return title, instructions


def escalate(
    goal: Optional[CollectionGoal],
    event: OverdueEvent,
    policy: CollectionPolicy,
    now: datetime,
) -> EscalationOutcome:
    """
    Create or advance the collection goal for an overdue installment.

    - no open goal -> new auto-created goal at the target stage
    - target strictly later -> goal advanced in place (stage, priority, deadline)
    - target equal or earlier -> unchanged; goals never regress

    Stage thresholds count days beyond the grace period, so the first
    stage applies on the day the installment turns OVERDUE.
    """
    threshold = policy.threshold_for(event.days_beyond_grace)
    target = threshold.stage
    deadline = now + timedelta(hours=threshold.sla_hours)
    title, instructions = _describe(target, event.deal_aid, event.overdue_days)

    if goal is None or not goal.is_open:
        created = CollectionGoal(
            goal_id=generate_aid("g"),
            type=goal_type_for(target),
            stage=target,
            priority=priority_for(target),
            deal_aid=event.deal_aid,
            finance_faid=event.finance_faid,
            client_aid=event.client_aid,
            overdue_days=event.overdue_days,
            assignee_group=threshold.assignee_group,
            deadline=deadline,
            auto_created=True,
            title=title,
            instructions=instructions,
            created_at=now,
            updated_at=now,
        )
        return EscalationOutcome(goal=created, action="created")

    if not target.is_later_than(goal.stage):
        return EscalationOutcome(goal=goal, action="unchanged")

    advanced = replace(
        goal,
        type=goal_type_for(target),
        stage=target,
        priority=priority_for(target),
        overdue_days=event.overdue_days,
        assignee_group=threshold.assignee_group,
        deadline=deadline,
        title=title,
        instructions=instructions,
        updated_at=now,
    )
    return EscalationOutcome(goal=advanced, action="advanced")


def close_goal(goal: CollectionGoal, reason: str, now: datetime) -> CollectionGoal:
    if not goal.is_open:
        return goal
    return replace(
        goal,
        stage=CollectionStage.CLOSED,
        closed_at=now,
        close_reason=reason,
        updated_at=now,
    )
