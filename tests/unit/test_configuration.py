"""Unit tests for typed business settings"""

import pytest
from decimal import Decimal
from esnad_servicing.domain.configuration import (
    REMINDER_CHANNELS_KEY,
    REMINDER_DAYS_KEY,
    SCHEDULE_SPLIT_KEY,
    STAGE_THRESHOLDS_KEY,
    CollectionPolicy,
    config_value_adapter,
)
from esnad_servicing.domain.exceptions import ConfigurationError
from esnad_servicing.domain.models import CollectionStage, ReminderChannel


def test_payment_limits_from_seed(config):
    limits = config.payment_limits()

    assert limits.min_amount == 3000
    assert limits.max_amount == 300000
    assert limits.default_term_months == 12
    assert limits.grace_period_days == 3
    assert limits.penalty_daily_rate_percent == Decimal("0.1")
    assert limits.reminder_enabled is True
    assert limits.reminder_days_before == [3]
    assert limits.reminder_channels == [ReminderChannel.EMAIL, ReminderChannel.SMS]


def test_list_settings_accept_json_and_comma_strings(config, settings_source):
    settings_source.set(REMINDER_DAYS_KEY, "string", "7, 3,1")
    settings_source.set(REMINDER_CHANNELS_KEY, "json", data_in=["SMS", "TELEGRAM"])

    limits = config.payment_limits()

    assert limits.reminder_days_before == [7, 3, 1]
    assert limits.reminder_channels == [ReminderChannel.SMS, ReminderChannel.TELEGRAM]


def test_unknown_channel_rejected(config, settings_source):
    settings_source.set(REMINDER_CHANNELS_KEY, "string", "EMAIL,FAX")

    with pytest.raises(ConfigurationError):
        config.payment_limits()


def test_setting_of_wrong_type_rejected(config, settings_source):
    settings_source.set("finance.penalty.overdueGraceDays", "string", "three")

    with pytest.raises(ConfigurationError):
        config.payment_limits()


def test_schedule_split_must_total_100(config, settings_source):
    assert config.schedule_split().principal_percent == 70

    settings_source.set(
        SCHEDULE_SPLIT_KEY, "json", data_in={"principalPercent": 70, "profitSharePercent": 25, "serviceFeePercent": 4}
    )
    with pytest.raises(ConfigurationError):
        config.schedule_split()


def test_missing_key_raises(config, settings_source):
    del settings_source.rows[STAGE_THRESHOLDS_KEY]

    with pytest.raises(ConfigurationError):
        config.collection_policy()


@pytest.mark.parametrize(
    "thresholds",
    [
        [],
        [{"minOverdueDays": 1, "stage": "REMINDER_DAY_1"}],
        [{"minOverdueDays": 0, "stage": "CLIENT_CALL"}, {"minOverdueDays": 5, "stage": "REMINDER_DAY_2"}],
        [{"minOverdueDays": 0, "stage": "REMINDER_DAY_1"}, {"minOverdueDays": 0, "stage": "CLIENT_CALL"}],
        [{"minOverdueDays": 0, "stage": "REMINDER_DAY_1"}, {"minOverdueDays": 30, "stage": "CLOSED"}],
    ],
)
def test_invalid_stage_thresholds_rejected(config, settings_source, thresholds):
    settings_source.set(STAGE_THRESHOLDS_KEY, "json", data_in=thresholds)

    with pytest.raises(ConfigurationError):
        config.collection_policy()


def test_negative_overdue_days_have_no_stage(config):
    policy = config.collection_policy()

    assert isinstance(policy, CollectionPolicy)
    assert policy.threshold_for(4).stage == CollectionStage.GUARANTOR_CALL
    with pytest.raises(ConfigurationError):
        policy.threshold_for(-1)


def test_settings_rows_are_discriminated_by_type():
    assert config_value_adapter.validate_python({"type": "number", "value": "0.1"}).value == Decimal("0.1")
    assert config_value_adapter.validate_python({"type": "boolean", "value": "true"}).value is True
    assert config_value_adapter.validate_python({"type": "json", "data": [1, 2]}).data == [1, 2]
