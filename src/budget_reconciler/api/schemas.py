import datetime

from pydantic import BaseModel, Field

from budget_reconciler.models import (
    BulkProcessingOptions,
    BulkUpdateOperation,
    SubscriptionCandidate,
    SubscriptionMatch,
    SubscriptionOverrides,
    Transaction,
)


class CategoryCreateRequest(BaseModel):
    name: str


class TransactionsRequest(BaseModel):
    transactions: list[Transaction]


class DetectRequest(BaseModel):
    transactions: list[Transaction] | None = None
    include_income: bool = False
    reference_date: datetime.date | None = None


class MatchRequest(BaseModel):
    transactions: list[Transaction] | None = None


class ConfirmRequest(BaseModel):
    candidate: SubscriptionCandidate
    overrides: SubscriptionOverrides | None = None


class ConfirmMatchesRequest(BaseModel):
    matches: list[SubscriptionMatch]


class ReconcileRequest(BaseModel):
    reference_date: datetime.date | None = None


class PatternFeedbackRequest(BaseModel):
    was_correct: bool


class ScenarioCreateRequest(BaseModel):
    name: str
    description: str | None = None


class BulkUpdateRequest(BaseModel):
    operations: list[BulkUpdateOperation]
    options: BulkProcessingOptions = Field(default_factory=BulkProcessingOptions)


class BulkDeleteRequest(BaseModel):
    transaction_ids: list[str]
    options: BulkProcessingOptions = Field(default_factory=BulkProcessingOptions)
