import datetime
import os
from collections.abc import Callable, Sequence

from budget_reconciler.budgets.engine import BudgetPeriodEngine
from budget_reconciler.core.settings import DetectorTuning, MatcherTuning
from budget_reconciler.detection.detector import RecurrenceDetector
from budget_reconciler.errors import validation_scope
from budget_reconciler.logger import get_logger
from budget_reconciler.matching.matcher import PatternMatcher
from budget_reconciler.models import (
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetScenario,
    BudgetSuggestion,
    BudgetUpdate,
    BudgetWithProgress,
    BulkProcessingOptions,
    BulkProcessingResult,
    BulkUpdateOperation,
    Category,
    MatchConfirmationResult,
    ReconciliationReport,
    Subscription,
    SubscriptionCandidate,
    SubscriptionCostSummary,
    SubscriptionCreate,
    SubscriptionMatch,
    SubscriptionMutationResult,
    SubscriptionOverrides,
    SubscriptionPattern,
    SubscriptionUpdate,
    Transaction,
)
from budget_reconciler.services.budgets import BudgetService
from budget_reconciler.services.bulk import BulkTransactionProcessor
from budget_reconciler.services.subscriptions import SubscriptionService
from budget_reconciler.storage.base import Repository
from budget_reconciler.storage.memory import InMemoryRepository

logger = get_logger(__name__)

STORE_FILENAME = "reconciler.json"


class ReconciliationCoordinator:
    """Single entry point over subscriptions, budgets and bulk edits.

    Subscription mutations are committed first; the budgets of every affected
    category are then recomputed explicitly. A failed recompute is reported on
    the result instead of undoing the committed change.
    """

    def __init__(
        self,
        repository: Repository,
        matcher_tuning: MatcherTuning | None = None,
        detector_tuning: DetectorTuning | None = None,
        clock: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.repository = repository
        self.matcher = PatternMatcher(matcher_tuning)
        self.detector = RecurrenceDetector(repository, matcher=self.matcher, tuning=detector_tuning)
        self.engine = BudgetPeriodEngine()
        self.budgets = BudgetService(repository, engine=self.engine, clock=clock)
        self.subscriptions = SubscriptionService(
            repository, self.budgets, detector=self.detector, clock=clock
        )
        self.bulk = BulkTransactionProcessor(repository, self.budgets)

    @classmethod
    def from_data_dir(cls, data_dir: str) -> "ReconciliationCoordinator":
        data_path = os.path.join(data_dir, STORE_FILENAME)
        logger.info("Using data store at %s", data_path)
        return cls(InMemoryRepository(data_path=data_path))

    # Ingestion

    async def create_category(self, name: str) -> Category:
        with validation_scope():
            category = Category(name=name)
        return await self.repository.create_category(category)

    async def list_categories(self) -> list[Category]:
        return await self.repository.get_categories()

    async def add_transactions(self, transactions: Sequence[Transaction]) -> list[Transaction]:
        """Store every transaction or none of them."""
        async with self.repository.transaction():
            return [await self.repository.create_transaction(transaction) for transaction in transactions]

    # Subscriptions

    async def detect_subscriptions(
        self,
        transactions: Sequence[Transaction] | None = None,
        include_income: bool = False,
        reference_date: datetime.date | None = None,
    ) -> list[SubscriptionCandidate]:
        return await self.subscriptions.detect_subscriptions(
            transactions, include_income=include_income, reference_date=reference_date
        )

    async def match_existing_subscriptions(
        self, transactions: Sequence[Transaction] | None = None
    ) -> list[SubscriptionMatch]:
        return await self.subscriptions.match_existing_subscriptions(transactions)

    async def create_subscription(self, request: SubscriptionCreate) -> SubscriptionMutationResult:
        return await self.subscriptions.create_subscription(request)

    async def update_subscription(
        self, subscription_id: str, request: SubscriptionUpdate
    ) -> SubscriptionMutationResult:
        return await self.subscriptions.update_subscription(subscription_id, request)

    async def delete_subscription(self, subscription_id: str) -> SubscriptionMutationResult:
        return await self.subscriptions.delete_subscription(subscription_id)

    async def confirm_subscription(
        self,
        candidate: SubscriptionCandidate,
        overrides: SubscriptionOverrides | None = None,
    ) -> SubscriptionMutationResult:
        return await self.subscriptions.confirm_subscription(candidate, overrides)

    async def confirm_matches(self, matches: Sequence[SubscriptionMatch]) -> MatchConfirmationResult:
        return await self.subscriptions.confirm_matches(matches)

    async def record_pattern_feedback(self, pattern_id: str, was_correct: bool) -> SubscriptionPattern:
        return await self.subscriptions.record_pattern_feedback(pattern_id, was_correct)

    async def reconcile_subscriptions(
        self, reference_now: datetime.date | None = None
    ) -> ReconciliationReport:
        return await self.subscriptions.reconcile_subscriptions(reference_now)

    async def get_upcoming_payments(self, days: int = 30) -> list[Subscription]:
        return await self.subscriptions.get_upcoming_payments(days)

    async def get_total_monthly_cost(self) -> SubscriptionCostSummary:
        return await self.subscriptions.get_total_monthly_cost()

    async def get_unused_subscriptions(self, days_since_last_use: int = 90) -> list[Subscription]:
        return await self.subscriptions.get_unused_subscriptions(days_since_last_use)

    # Budgets

    async def create_budget(self, request: BudgetCreate) -> Budget:
        return await self.budgets.create_budget(request)

    async def update_budget(self, budget_id: str, request: BudgetUpdate) -> Budget:
        return await self.budgets.update_budget(budget_id, request)

    async def delete_budget(self, budget_id: str) -> None:
        await self.budgets.delete_budget(budget_id)

    async def get_budget_with_progress(self, budget_id: str) -> BudgetWithProgress:
        return await self.budgets.get_budget_with_progress(budget_id)

    async def get_active_budgets_progress(self) -> list[BudgetWithProgress]:
        return await self.budgets.get_active_budgets_progress()

    async def get_budget_suggestion(
        self,
        category_id: str,
        period: BudgetPeriod = "monthly",
        months: int | None = None,
    ) -> BudgetSuggestion:
        return await self.budgets.get_budget_suggestion(category_id, period, months)

    async def list_scenarios(self) -> list[BudgetScenario]:
        return await self.budgets.list_scenarios()

    async def create_scenario(self, name: str, description: str | None = None) -> BudgetScenario:
        return await self.budgets.create_scenario(name, description)

    async def activate_scenario(self, scenario_id: str) -> BudgetScenario:
        return await self.budgets.activate_scenario(scenario_id)

    # Bulk edits

    async def process_bulk_updates(
        self,
        operations: Sequence[BulkUpdateOperation],
        options: BulkProcessingOptions | None = None,
    ) -> BulkProcessingResult:
        return await self.bulk.process_bulk_updates(operations, options)

    async def process_bulk_deletions(
        self,
        transaction_ids: Sequence[str],
        options: BulkProcessingOptions | None = None,
    ) -> BulkProcessingResult:
        return await self.bulk.process_bulk_deletions(transaction_ids, options)
