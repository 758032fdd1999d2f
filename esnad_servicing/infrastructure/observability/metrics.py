"""Prometheus metrics for installment transitions, collections and notices"""

from prometheus_client import Counter, Histogram

# Lifecycle metrics
installment_transition_counter = Counter(
    "esnad_installment_transitions_total",
    "Installment status transitions",
    ["status"],  # PAID | OVERDUE
)

penalty_waiver_counter = Counter(
    "esnad_penalty_waivers_total",
    "Penalties waived with an explicit reason",
)

# Collections metrics
collection_goal_counter = Counter(
    "esnad_collection_goals_total",
    "Collection goal changes",
    ["action", "stage"],  # created | advanced | closed
)

# Notice metrics
notice_counter = Counter(
    "esnad_notices_total",
    "Notice dispatch outcomes",
    ["trigger_reason", "outcome"],  # queued | duplicate | requeued | sent | failed | permanently_failed
)

notice_delivery_histogram = Histogram(
    "esnad_notice_delivery_duration_seconds",
    "Channel sender handoff latency",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Scoring metrics
score_tier_counter = Counter(
    "esnad_score_tier_total",
    "Applicants scored by risk tier",
    ["tier"],
)

# Sweep health
concurrency_conflict_counter = Counter(
    "esnad_concurrency_conflicts_total",
    "Optimistic updates that lost the race",
    ["entity"],
)

sweep_duration_histogram = Histogram(
    "esnad_sweep_duration_seconds",
    "Overdue sweep duration",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)


def record_goal_change(action: str, stage: str) -> None:
    collection_goal_counter.labels(action=action, stage=stage).inc()


def record_notice(trigger_reason: str, outcome: str) -> None:
    notice_counter.labels(trigger_reason=trigger_reason, outcome=outcome).inc()
