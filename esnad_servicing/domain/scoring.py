"""Applicant scoring engine - creditworthiness score and risk tier"""

import logging
from typing import Optional

from esnad_servicing.domain.configuration import ScoringThresholds, ScoringWeights
from esnad_servicing.domain.models import RiskTier, ScoreResult, ScoringInput


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def _marital_modifier(marital_status: Optional[str], weights: ScoringWeights) -> int:
    status = _normalize(marital_status)
    if not status:
        return 0

    modifiers = weights.modifiers
    buckets = {_normalize(bucket): value for bucket, value in modifiers.marital_status.items()}
    aliases = {_normalize(alias): _normalize(bucket) for alias, bucket in modifiers.marital_aliases.items()}

    bucket = aliases.get(status, status)
    return buckets.get(bucket, 0)


def _income_modifier(income: Optional[int], weights: ScoringWeights) -> int:
    if income is None:
        return 0

    income_modifiers = weights.modifiers.income
    modifier = 0
    if income_modifiers.high and income >= income_modifiers.high.threshold:
        modifier += income_modifiers.high.value
    if income_modifiers.low and income < income_modifiers.low.threshold:
        modifier += income_modifiers.low.value
    return modifier


def _credit_history_modifier(notes: Optional[str], weights: ScoringWeights) -> int:
    history = _normalize(notes)
    if not history:
        return 0

    credit_history = weights.modifiers.credit_history
    # One penalty no matter how many keywords match
    if any(_normalize(keyword) and _normalize(keyword) in history for keyword in credit_history.negative_keywords):
        return credit_history.value
    return 0


def _guarantor_modifier(guarantor_count: int, weights: ScoringWeights) -> int:
    slots = list(weights.modifiers.guarantors.values())
    return sum(slots[: max(guarantor_count, 0)])


def calculate_score(applicant: ScoringInput, weights: ScoringWeights) -> int:
    """
    Calculate the applicant's score from configured weights.

    Each modifier applies at most once:
    - marital status bucket (exact match or configured alias)
    - high income (income >= threshold) / low income (income < threshold)
    - credit history penalty if any negative keyword appears in the notes
    - one bonus per guarantor, in slot order, up to the configured slots

    Missing applicant fields are neutral. Result is never negative.
    """
    score = weights.initial_score
    score += _marital_modifier(applicant.marital_status, weights)
    score += _income_modifier(applicant.declared_income, weights)
    score += _credit_history_modifier(applicant.credit_history_notes, weights)
    score += _guarantor_modifier(applicant.guarantor_count, weights)
    return max(0, score)


def determine_tier(score: int, thresholds: ScoringThresholds) -> tuple[RiskTier, bool]:
    """
    Map score to risk tier.

    Returns: (tier, needs_review). A score outside every band points at a gap in
    the configured thresholds; it is classified HIGH and flagged for review.
    """
    if score >= thresholds.low.min:
        return RiskTier.LOW, False
    elif thresholds.medium.min <= score <= thresholds.medium.max:
        return RiskTier.MEDIUM, False
    elif score <= thresholds.high.max:
        return RiskTier.HIGH, False

    logging.warning(
        "Score outside configured risk bands",
        extra={"score": score, "step": "scoring_tier", "tier": RiskTier.HIGH.value},
    )
    return RiskTier.HIGH, True


def score_applicant(
    applicant: ScoringInput,
    weights: ScoringWeights,
    thresholds: ScoringThresholds,
) -> ScoreResult:
    """Main entry point: score the applicant and resolve the risk tier."""
    score = calculate_score(applicant, weights)
    tier, needs_review = determine_tier(score, thresholds)
    return ScoreResult(score=score, tier=tier, needs_review=needs_review)
