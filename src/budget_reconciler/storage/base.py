import datetime
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any

from budget_reconciler.models import (
    Budget,
    BudgetScenario,
    Category,
    Subscription,
    SubscriptionPattern,
    Transaction,
)


class Repository(ABC):
    """Async persistence boundary used by every service."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Single-writer unit of work; all writes inside roll back together on error."""
        pass

    # Transactions

    @abstractmethod
    async def find_all_transactions(self) -> list[Transaction]:
        pass

    @abstractmethod
    async def find_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        pass

    @abstractmethod
    async def find_transactions_by_date_range(
        self, start: datetime.date, end: datetime.date
    ) -> list[Transaction]:
        """Transactions dated within [start, end], both inclusive."""
        pass

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> Transaction:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        pass

    @abstractmethod
    async def flag_transaction_as_subscription(
        self, transaction_id: str, subscription_id: str
    ) -> Transaction:
        pass

    @abstractmethod
    async def unflag_subscription_transactions(self, subscription_id: str) -> int:
        """Clear the subscription flag on every transaction linked to it; returns the count."""
        pass

    # Categories

    @abstractmethod
    async def get_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def get_category_by_id(self, category_id: str) -> Category | None:
        pass

    @abstractmethod
    async def create_category(self, category: Category) -> Category:
        pass

    # Subscriptions

    @abstractmethod
    async def find_active_subscriptions(self) -> list[Subscription]:
        pass

    @abstractmethod
    async def find_subscription_by_id(self, subscription_id: str) -> Subscription | None:
        pass

    @abstractmethod
    async def find_subscriptions_by_category(self, category_id: str) -> list[Subscription]:
        pass

    @abstractmethod
    async def create_subscription(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def update_subscription(self, subscription_id: str, changes: dict[str, Any]) -> Subscription:
        pass

    @abstractmethod
    async def delete_subscription(self, subscription_id: str) -> None:
        pass

    # Patterns

    @abstractmethod
    async def create_subscription_pattern(self, pattern: SubscriptionPattern) -> SubscriptionPattern:
        pass

    @abstractmethod
    async def find_active_patterns(self) -> list[SubscriptionPattern]:
        pass

    @abstractmethod
    async def find_subscription_pattern_by_id(self, pattern_id: str) -> SubscriptionPattern | None:
        pass

    @abstractmethod
    async def find_patterns_by_subscription(self, subscription_id: str) -> list[SubscriptionPattern]:
        pass

    @abstractmethod
    async def update_subscription_pattern(
        self, pattern_id: str, changes: dict[str, Any]
    ) -> SubscriptionPattern:
        pass

    @abstractmethod
    async def delete_subscription_pattern(self, pattern_id: str) -> None:
        pass

    # Budgets

    @abstractmethod
    async def find_active_budgets(self) -> list[Budget]:
        pass

    @abstractmethod
    async def find_budget_by_id(self, budget_id: str) -> Budget | None:
        pass

    @abstractmethod
    async def find_budgets_by_category(self, category_id: str) -> list[Budget]:
        pass

    @abstractmethod
    async def create_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def update_budget(self, budget_id: str, changes: dict[str, Any]) -> Budget:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: str) -> None:
        pass

    # Scenarios

    @abstractmethod
    async def find_all_budget_scenarios(self) -> list[BudgetScenario]:
        pass

    @abstractmethod
    async def find_budget_scenario_by_id(self, scenario_id: str) -> BudgetScenario | None:
        pass

    @abstractmethod
    async def create_budget_scenario(self, scenario: BudgetScenario) -> BudgetScenario:
        pass

    @abstractmethod
    async def update_budget_scenario(self, scenario_id: str, changes: dict[str, Any]) -> BudgetScenario:
        pass
