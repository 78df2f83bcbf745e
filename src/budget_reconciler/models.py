import datetime
from decimal import Decimal
from typing import Any, Literal, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from budget_reconciler.core import settings

TransactionType = Literal["income", "expense", "transfer"]
BillingFrequency = Literal["monthly", "quarterly", "annually", "custom"]
PatternType = Literal["exact", "regex", "fuzzy"]
PatternAuthor = Literal["system", "user"]
BudgetPeriod = Literal["monthly", "yearly"]
BudgetStatus = Literal["on-track", "at-risk", "over-budget"]

DEFAULT_CURRENCY = "EUR"
DEFAULT_ALERT_THRESHOLDS = (50, 75, 90, 100)
INDEFINITE_END_DATE = datetime.date(settings.INDEFINITE_YEAR, 12, 31)


def new_id() -> str:
    return uuid4().hex


ModelT = TypeVar("ModelT", bound=BaseModel)


def revise(model: ModelT, changes: dict[str, Any]) -> ModelT:
    """Copy ``model`` with ``changes`` applied, re-running validation."""
    return type(model).model_validate({**model.model_dump(), **changes})


class Transaction(BaseModel):
    id: str = Field(default_factory=new_id)
    date: datetime.date
    description: str
    amount: Decimal  # negative = outflow
    type: TransactionType = "expense"
    category_id: str | None = None
    currency: str = DEFAULT_CURRENCY
    is_subscription: bool = False
    subscription_id: str | None = None


class Category(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str


class SubscriptionPattern(BaseModel):
    id: str = Field(default_factory=new_id)
    subscription_id: str
    pattern: str
    pattern_type: PatternType
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)
    created_by: PatternAuthor = "system"
    is_active: bool = True


class Subscription(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = DEFAULT_CURRENCY
    billing_frequency: BillingFrequency
    custom_frequency_days: int | None = None
    next_payment_date: datetime.date
    category_id: str
    is_active: bool = True
    start_date: datetime.date
    end_date: datetime.date | None = None
    last_used_date: datetime.date | None = None
    usage_rating: int | None = Field(default=None, ge=1, le=5)
    description: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def check_custom_frequency(self) -> "Subscription":
        if self.billing_frequency == "custom":
            if self.custom_frequency_days is None or self.custom_frequency_days <= 0:
                raise ValueError("custom billing requires custom_frequency_days > 0")
        elif self.custom_frequency_days is not None:
            raise ValueError(
                f"custom_frequency_days is only allowed for custom billing, "
                f"not {self.billing_frequency}"
            )
        return self


class PatternDraft(BaseModel):
    """A matching rule proposed by detection, not yet stored."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    pattern_type: PatternType
    confidence_score: float = Field(ge=0.0, le=1.0)


class SubscriptionCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    amount: Decimal
    currency: str
    billing_frequency: BillingFrequency
    custom_frequency_days: int | None = None
    category_id: str | None = None
    confidence: float
    transaction_ids: tuple[str, ...]
    patterns: tuple[PatternDraft, ...]
    first_payment_date: datetime.date
    last_payment_date: datetime.date
    next_payment_date: datetime.date
    total_spend: Decimal
    interval_regularity: float
    amount_stability: float
    reason: str


class SubscriptionMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    subscription: Subscription
    pattern_id: str
    pattern_type: PatternType
    confidence: float


def _check_thresholds(value: list[int]) -> list[int]:
    for threshold in value:
        if threshold <= 0 or threshold > 1000:
            raise ValueError(f"alert threshold {threshold} outside (0, 1000]")
    if any(later <= earlier for earlier, later in zip(value, value[1:])):
        raise ValueError("alert thresholds must be strictly ascending")
    return value


class Budget(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    category_id: str
    amount: Decimal = Field(gt=0)
    currency: str = DEFAULT_CURRENCY
    period: BudgetPeriod = "monthly"
    start_date: datetime.date
    end_date: datetime.date = INDEFINITE_END_DATE
    alert_thresholds: list[int] = Field(default_factory=lambda: list(DEFAULT_ALERT_THRESHOLDS))
    scenario_id: str | None = None
    is_active: bool = True
    description: str | None = None

    @field_validator("alert_thresholds")
    @classmethod
    def validate_thresholds(cls, value: list[int]) -> list[int]:
        return _check_thresholds(value)

    @model_validator(mode="after")
    def check_dates(self) -> "Budget":
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self

    @property
    def is_indefinite(self) -> bool:
        return self.end_date.year >= settings.INDEFINITE_YEAR


class BudgetScenario(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    description: str | None = None
    is_active: bool = False


class BudgetWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime.date
    end: datetime.date  # inclusive

    def contains(self, value: datetime.date) -> bool:
        return self.start <= value <= self.end


class BudgetProgress(BaseModel):
    budget_id: str
    window: BudgetWindow
    spent_amount: Decimal
    remaining_amount: Decimal
    percentage_used: Decimal  # fraction of the budget amount, 1 == fully spent
    thresholds_crossed: list[int]
    status: BudgetStatus


class BudgetWithProgress(BaseModel):
    budget: Budget
    progress: BudgetProgress


class SubscriptionCost(BaseModel):
    subscription_id: str
    name: str
    monthly_amount: Decimal


class SubscriptionCostSummary(BaseModel):
    total_monthly_cost: Decimal
    subscription_count: int
    breakdown: list[SubscriptionCost]


class BudgetSuggestion(BaseModel):
    category_id: str
    category_name: str
    period: BudgetPeriod
    months_analyzed: int
    historical_average: Decimal
    fixed_costs: Decimal
    variable_budget: Decimal
    total_suggestion: Decimal
    subscription_breakdown: list[SubscriptionCost]
    confidence: float
    reasoning: str


class SubscriptionCreate(BaseModel):
    name: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    billing_frequency: BillingFrequency
    custom_frequency_days: int | None = None
    next_payment_date: datetime.date
    category_id: str
    start_date: datetime.date
    end_date: datetime.date | None = None
    description: str | None = None
    notes: str | None = None
    transaction_ids: list[str] = Field(default_factory=list)


class SubscriptionUpdate(BaseModel):
    name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    billing_frequency: BillingFrequency | None = None
    custom_frequency_days: int | None = None
    next_payment_date: datetime.date | None = None
    category_id: str | None = None
    is_active: bool | None = None
    end_date: datetime.date | None = None
    last_used_date: datetime.date | None = None
    usage_rating: int | None = None
    description: str | None = None
    notes: str | None = None


class SubscriptionOverrides(BaseModel):
    name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    billing_frequency: BillingFrequency | None = None
    custom_frequency_days: int | None = None
    next_payment_date: datetime.date | None = None
    category_id: str | None = None
    start_date: datetime.date | None = None
    description: str | None = None
    notes: str | None = None


class SubscriptionMutationResult(BaseModel):
    subscription: Subscription
    budget_progress: list[BudgetProgress] = Field(default_factory=list)
    integration_failed: bool = False
    warnings: list[str] = Field(default_factory=list)


class BudgetCreate(BaseModel):
    name: str
    category_id: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    period: BudgetPeriod = "monthly"
    start_date: datetime.date
    end_date: datetime.date = INDEFINITE_END_DATE
    alert_thresholds: list[int] = Field(default_factory=lambda: list(DEFAULT_ALERT_THRESHOLDS))
    scenario_id: str | None = None
    description: str | None = None


class BudgetUpdate(BaseModel):
    name: str | None = None
    category_id: str | None = None
    amount: Decimal | None = None
    period: BudgetPeriod | None = None
    start_date: datetime.date | None = None
    end_date: datetime.date | None = None
    alert_thresholds: list[int] | None = None
    is_active: bool | None = None
    description: str | None = None


class TransactionUpdate(BaseModel):
    date: datetime.date | None = None
    description: str | None = None
    amount: Decimal | None = None
    type: TransactionType | None = None
    category_id: str | None = None


class BulkUpdateOperation(BaseModel):
    transaction_id: str
    updates: TransactionUpdate


class BulkProcessingOptions(BaseModel):
    batch_size: int = Field(default_factory=lambda: settings.BULK_BATCH_SIZE, ge=1)
    enable_budget_updates: bool = True


class BulkItemError(BaseModel):
    index: int
    code: str
    error: str


class BulkProcessingResult(BaseModel):
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    budget_updates_completed: bool = False
    recomputed_categories: list[str] = Field(default_factory=list)
    budget_progress: list[BudgetProgress] = Field(default_factory=list)
    errors: list[BulkItemError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_partial_failure(self) -> bool:
        return self.failed > 0 and self.successful > 0


class ReconciliationReport(BaseModel):
    checked: int = 0
    updated: int = 0
    flagged: int = 0
    errors: list[str] = Field(default_factory=list)


class MatchConfirmationResult(BaseModel):
    confirmed: int = 0
    subscriptions: list[Subscription] = Field(default_factory=list)
    budget_progress: list[BudgetProgress] = Field(default_factory=list)
    integration_failed: bool = False
    warnings: list[str] = Field(default_factory=list)
