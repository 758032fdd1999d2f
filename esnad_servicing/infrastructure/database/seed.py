"""Default business settings for a fresh database"""

from sqlalchemy.orm import Session

from esnad_servicing.domain.configuration import (
    DEFAULT_TERM_KEY,
    GRACE_DAYS_KEY,
    MAX_AMOUNT_KEY,
    MIN_AMOUNT_KEY,
    PENALTY_RATE_KEY,
    REMINDER_CHANNELS_KEY,
    REMINDER_DAYS_KEY,
    REMINDER_ENABLED_KEY,
    SCHEDULE_SPLIT_KEY,
    SCORING_THRESHOLDS_KEY,
    SCORING_WEIGHTS_KEY,
    STAGE_THRESHOLDS_KEY,
)
from esnad_servicing.infrastructure.database.repositories import SettingsRepository

SCORING_WEIGHTS = {
    "initialScore": 500,
    "modifiers": {
        "maritalStatus": {"married": 20, "divorced": -10},
        "maritalAliases": {
            "женат": "married",
            "замужем": "married",
            "разведен": "divorced",
            "разведена": "divorced",
        },
        "income": {
            "high": {"threshold": 100000, "value": 30},
            "low": {"threshold": 40000, "value": -20},
        },
        "creditHistory": {
            "negativeKeywords": ["просрочка", "долг", "не платил"],
            "value": -50,
        },
        "guarantors": {"guarantor1": 25, "guarantor2": 15},
    },
}

SCORING_THRESHOLDS = {
    "low": {"min": 600, "label": "Low risk"},
    "medium": {"min": 450, "max": 599, "label": "Medium risk"},
    "high": {"max": 449, "label": "High risk"},
}

STAGE_THRESHOLDS = [
    {"minOverdueDays": 0, "stage": "REMINDER_DAY_1", "slaHours": 24},
    {"minOverdueDays": 2, "stage": "REMINDER_DAY_2", "slaHours": 24},
    {"minOverdueDays": 3, "stage": "CLIENT_CALL", "slaHours": 24},
    {"minOverdueDays": 4, "stage": "GUARANTOR_CALL", "slaHours": 48},
    {"minOverdueDays": 6, "stage": "FIELD_VISIT", "slaHours": 72},
    {"minOverdueDays": 11, "stage": "SECURITY_ESCALATION", "slaHours": 72},
]

# (attribute, type, value, data_in)
DEFAULT_SETTINGS = [
    (MIN_AMOUNT_KEY, "number", "3000", None),
    (MAX_AMOUNT_KEY, "number", "300000", None),
    (DEFAULT_TERM_KEY, "number", "12", None),
    (SCHEDULE_SPLIT_KEY, "json", None, {"principalPercent": 70, "profitSharePercent": 25, "serviceFeePercent": 5}),
    (GRACE_DAYS_KEY, "number", "3", None),
    (PENALTY_RATE_KEY, "number", "0.1", None),
    (REMINDER_ENABLED_KEY, "boolean", "true", None),
    (REMINDER_DAYS_KEY, "number", "3", None),
    (REMINDER_CHANNELS_KEY, "string", "EMAIL,SMS", None),
    (SCORING_WEIGHTS_KEY, "json", None, SCORING_WEIGHTS),
    (SCORING_THRESHOLDS_KEY, "json", None, SCORING_THRESHOLDS),
    (STAGE_THRESHOLDS_KEY, "json", None, STAGE_THRESHOLDS),
]


def seed_settings(db: Session) -> None:
    """Insert or overwrite the default settings rows"""
    repo = SettingsRepository(db)
    for order, (attribute, type_name, value, data_in) in enumerate(DEFAULT_SETTINGS):
        repo.upsert_setting(attribute, type_name, value=value, data_in=data_in, order=order)
