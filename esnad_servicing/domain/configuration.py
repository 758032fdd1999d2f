"""Typed views over business settings records.

Settings rows are type-discriminated (``number``, ``boolean``, ``string``,
``json``) and parsed into the ``ConfigValue`` union at the persistence
boundary. ``ConfigurationStore`` turns those raw values into validated
policy objects and raises ``ConfigurationError`` instead of guessing when a
key is absent or malformed.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from esnad_servicing.domain.exceptions import ConfigurationError
from esnad_servicing.domain.models import CollectionStage, ReminderChannel

MIN_AMOUNT_KEY = "finance.installment.minAmount"
MAX_AMOUNT_KEY = "finance.installment.maxAmount"
DEFAULT_TERM_KEY = "finance.installment.defaultTermMonths"
SCHEDULE_SPLIT_KEY = "finance.installment.split"
GRACE_DAYS_KEY = "finance.penalty.overdueGraceDays"
PENALTY_RATE_KEY = "finance.penalty.dailyRatePercent"
REMINDER_ENABLED_KEY = "notifications.payment.reminderEnabled"
REMINDER_DAYS_KEY = "notifications.payment.reminderDaysBefore"
REMINDER_CHANNELS_KEY = "notifications.payment.channels"
SCORING_WEIGHTS_KEY = "scoring.weights"
SCORING_THRESHOLDS_KEY = "scoring.thresholds"
STAGE_THRESHOLDS_KEY = "collections.stageThresholds"


# Raw setting values, one variant per settings row type


class NumberSetting(BaseModel):
    type: Literal["number"]
    value: Decimal


class BooleanSetting(BaseModel):
    type: Literal["boolean"]
    value: bool


class StringSetting(BaseModel):
    type: Literal["string"]
    value: str


class JsonSetting(BaseModel):
    type: Literal["json"]
    data: Any


ConfigValue = Annotated[
    Union[NumberSetting, BooleanSetting, StringSetting, JsonSetting],
    Field(discriminator="type"),
]

config_value_adapter = TypeAdapter(ConfigValue)


class CamelModel(BaseModel):
    """Immutable settings payload using the camelCase keys stored in the database"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class PaymentLimitsConfig(CamelModel):
    min_amount: int
    max_amount: int
    default_term_months: int = Field(12, gt=0)
    grace_period_days: int = Field(..., ge=0)
    penalty_daily_rate_percent: Decimal = Field(..., ge=0)
    reminder_enabled: bool = True
    reminder_days_before: List[int] = Field(default_factory=list)
    reminder_channels: List[ReminderChannel] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_bounds(self) -> "PaymentLimitsConfig":
        if self.min_amount >= self.max_amount:
            raise ValueError("minAmount must be below maxAmount")
        if any(days <= 0 for days in self.reminder_days_before):
            raise ValueError("reminderDaysBefore offsets must be positive")
        return self


class ScheduleSplit(CamelModel):
    """Percent of every installment booked as principal, profit share and service fee"""

    principal_percent: int = Field(70, ge=0)
    profit_share_percent: int = Field(25, ge=0)
    service_fee_percent: int = Field(5, ge=0)

    @model_validator(mode="after")
    def check_total(self) -> "ScheduleSplit":
        total = self.principal_percent + self.profit_share_percent + self.service_fee_percent
        if total != 100:
            raise ValueError(f"split must add up to 100, got {total}")
        return self


class IncomeBucket(CamelModel):
    threshold: int
    value: int


class IncomeModifiers(CamelModel):
    high: Optional[IncomeBucket] = None
    low: Optional[IncomeBucket] = None

    @model_validator(mode="after")
    def check_no_overlap(self) -> "IncomeModifiers":
        if self.high and self.low and self.low.threshold > self.high.threshold:
            raise ValueError("low income threshold must not exceed high income threshold")
        return self


class CreditHistoryModifier(CamelModel):
    negative_keywords: List[str] = Field(default_factory=list)
    value: int = 0


class ScoringModifiers(CamelModel):
    marital_status: Dict[str, int] = Field(default_factory=dict)
    marital_aliases: Dict[str, str] = Field(default_factory=dict)
    income: IncomeModifiers = IncomeModifiers()
    credit_history: CreditHistoryModifier = CreditHistoryModifier()
    guarantors: Dict[str, int] = Field(default_factory=dict)


class ScoringWeights(CamelModel):
    initial_score: int
    modifiers: ScoringModifiers = ScoringModifiers()


class LowRiskBand(CamelModel):
    min: int
    label: Optional[str] = None


class MediumRiskBand(CamelModel):
    min: int
    max: int
    label: Optional[str] = None


class HighRiskBand(CamelModel):
    max: int
    label: Optional[str] = None


class ScoringThresholds(CamelModel):
    low: LowRiskBand
    medium: MediumRiskBand
    high: HighRiskBand

    @model_validator(mode="after")
    def check_ranges(self) -> "ScoringThresholds":
        if self.medium.min > self.medium.max:
            raise ValueError("medium band is empty")
        if self.high.max >= self.medium.min or self.medium.max >= self.low.min:
            raise ValueError("risk bands overlap")
        return self


class StageThreshold(CamelModel):
    min_overdue_days: int = Field(..., ge=0)
    stage: CollectionStage
    sla_hours: int = Field(24, gt=0)
    assignee_group: str = "COLLECTION"


class CollectionPolicy(CamelModel):
    """Ordered overdue-day thresholds mapped to collection stages"""

    thresholds: List[StageThreshold]

    @model_validator(mode="after")
    def check_mapping(self) -> "CollectionPolicy":
        if not self.thresholds:
            raise ValueError("at least one stage threshold is required")
        if self.thresholds[0].min_overdue_days != 0:
            raise ValueError("stage thresholds must start at 0 overdue days")
        for previous, current in zip(self.thresholds, self.thresholds[1:]):
            if current.min_overdue_days <= previous.min_overdue_days:
                raise ValueError("stage thresholds must have increasing overdue days")
            if not current.stage.is_later_than(previous.stage):
                raise ValueError("stage thresholds must move to strictly later stages")
        if any(t.stage == CollectionStage.CLOSED for t in self.thresholds):
            raise ValueError("CLOSED cannot be reached by overdue days")
        return self

    def threshold_for(self, overdue_days: int) -> StageThreshold:
        if overdue_days < 0:
            raise ConfigurationError(f"No stage threshold for {overdue_days} overdue days")
        matched = self.thresholds[0]
        for threshold in self.thresholds:
            if overdue_days >= threshold.min_overdue_days:
                matched = threshold
        return matched


class ConfigurationSource(Protocol):
    def load_configuration(self, key: str) -> Optional[ConfigValue]: ...


def _split_list(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class ConfigurationStore:
    """Read-only, validated access to business settings"""

    def __init__(self, source: ConfigurationSource):
        self.source = source

    def _load(self, key: str):
        value = self.source.load_configuration(key)
        if value is None:
            raise ConfigurationError(f"Missing configuration: {key}")
        return value

    def _number(self, key: str) -> Decimal:
        value = self._load(key)
        if not isinstance(value, NumberSetting):
            raise ConfigurationError(f"{key} must be a number setting, got {value.type}")
        return value.value

    def _boolean(self, key: str) -> bool:
        value = self._load(key)
        if not isinstance(value, BooleanSetting):
            raise ConfigurationError(f"{key} must be a boolean setting, got {value.type}")
        return value.value

    def _json(self, key: str) -> Any:
        value = self._load(key)
        if not isinstance(value, JsonSetting):
            raise ConfigurationError(f"{key} must be a json setting, got {value.type}")
        return value.data

    def _int_list(self, key: str) -> List[int]:
        value = self._load(key)
        try:
            if isinstance(value, NumberSetting):
                return [int(value.value)]
            if isinstance(value, StringSetting):
                return [int(part) for part in _split_list(value.value)]
            if isinstance(value, JsonSetting) and isinstance(value.data, list):
                return [int(part) for part in value.data]
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{key} is not a list of integers: {e}") from e
        raise ConfigurationError(f"{key} must list integers, got {value.type}")

    def _parse(self, model, key: str, data: Any):
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Malformed configuration {key}: {e}") from e

    def payment_limits(self) -> PaymentLimitsConfig:
        channels_value = self._load(REMINDER_CHANNELS_KEY)
        if isinstance(channels_value, StringSetting):
            channels = _split_list(channels_value.value)
        elif isinstance(channels_value, JsonSetting) and isinstance(channels_value.data, list):
            channels = channels_value.data
        else:
            raise ConfigurationError(f"{REMINDER_CHANNELS_KEY} must list channels")

        data = {
            "minAmount": self._number(MIN_AMOUNT_KEY),
            "maxAmount": self._number(MAX_AMOUNT_KEY),
            "defaultTermMonths": self._number(DEFAULT_TERM_KEY),
            "gracePeriodDays": self._number(GRACE_DAYS_KEY),
            "penaltyDailyRatePercent": self._number(PENALTY_RATE_KEY),
            "reminderEnabled": self._boolean(REMINDER_ENABLED_KEY),
            "reminderDaysBefore": self._int_list(REMINDER_DAYS_KEY),
            "reminderChannels": channels,
        }
        return self._parse(PaymentLimitsConfig, "payment limits", data)

    def schedule_split(self) -> ScheduleSplit:
        return self._parse(ScheduleSplit, SCHEDULE_SPLIT_KEY, self._json(SCHEDULE_SPLIT_KEY))

    def scoring_weights(self) -> ScoringWeights:
        return self._parse(ScoringWeights, SCORING_WEIGHTS_KEY, self._json(SCORING_WEIGHTS_KEY))

    def scoring_thresholds(self) -> ScoringThresholds:
        return self._parse(ScoringThresholds, SCORING_THRESHOLDS_KEY, self._json(SCORING_THRESHOLDS_KEY))

    def collection_policy(self) -> CollectionPolicy:
        data = self._json(STAGE_THRESHOLDS_KEY)
        return self._parse(CollectionPolicy, STAGE_THRESHOLDS_KEY, {"thresholds": data})
