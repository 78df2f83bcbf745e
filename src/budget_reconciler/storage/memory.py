import asyncio
import datetime
import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel

from budget_reconciler.errors import ConflictError, NotFoundError
from budget_reconciler.logger import get_logger
from budget_reconciler.models import (
    Budget,
    BudgetScenario,
    Category,
    Subscription,
    SubscriptionPattern,
    Transaction,
    revise,
)

from .base import Repository

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_COLLECTIONS: dict[str, type[BaseModel]] = {
    "transactions": Transaction,
    "categories": Category,
    "subscriptions": Subscription,
    "patterns": SubscriptionPattern,
    "budgets": Budget,
    "scenarios": BudgetScenario,
}

# Repository whose transaction() the current task is running inside
_active_repository: ContextVar[object | None] = ContextVar("active_repository", default=None)


def _duplicate_key(transaction: Transaction) -> tuple[datetime.date, str, Decimal, str]:
    return transaction.date, transaction.description, transaction.amount, transaction.type


class InMemoryRepository(Repository):
    """Dict-backed repository, optionally persisted as one JSON document.

    Every write runs under a single asyncio lock. Inside ``transaction()`` the
    state is snapshotted first and restored if the block raises; the JSON file
    is rewritten once per committed unit of work.
    """

    def __init__(self, data_path: str | None = None) -> None:
        self.data_path = data_path
        self._lock = asyncio.Lock()
        self._state: dict[str, dict[str, Any]] = {name: {} for name in _COLLECTIONS}
        self.load()

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            logger.warning("Could not parse %s, starting with an empty store.", self.data_path)
            return
        for name, model in _COLLECTIONS.items():
            records = (model.model_validate(item) for item in raw.get(name, []))
            self._state[name] = {record.id: record for record in records}

    def save(self) -> None:
        if not self.data_path:
            return
        payload = {
            name: [record.model_dump(mode="json") for record in records.values()]
            for name, records in self._state.items()
        }
        with open(self.data_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _active_repository.get() is self:
            yield
            return
        async with self._lock:
            snapshot = {name: dict(records) for name, records in self._state.items()}
            token = _active_repository.set(self)
            try:
                yield
            except BaseException:
                self._state = snapshot
                raise
            else:
                self.save()
            finally:
                _active_repository.reset(token)

    # Helpers

    def _get(self, collection: str, record_id: str) -> Any:
        record = self._state[collection].get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    def _all(self, collection: str) -> list[Any]:
        return [record.model_copy(deep=True) for record in self._state[collection].values()]

    def _require(self, collection: str, entity: str, record_id: str) -> Any:
        record = self._state[collection].get(record_id)
        if record is None:
            raise NotFoundError(entity, record_id)
        return record

    def _put(self, collection: str, record: ModelT) -> ModelT:
        self._state[collection][record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def _revise(self, collection: str, entity: str, record_id: str, changes: dict[str, Any]) -> Any:
        current = self._require(collection, entity, record_id)
        changes = {key: value for key, value in changes.items() if key != "id"}
        return self._put(collection, revise(current, changes))

    def _check_unique(self, transaction: Transaction) -> None:
        key = _duplicate_key(transaction)
        for existing in self._state["transactions"].values():
            if existing.id != transaction.id and _duplicate_key(existing) == key:
                raise ConflictError(
                    f"Duplicate transaction {transaction.description!r} on {transaction.date}"
                )

    # Transactions

    async def find_all_transactions(self) -> list[Transaction]:
        return sorted(self._all("transactions"), key=lambda transaction: transaction.date)

    async def find_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        return self._get("transactions", transaction_id)

    async def find_transactions_by_date_range(
        self, start: datetime.date, end: datetime.date
    ) -> list[Transaction]:
        return [
            transaction
            for transaction in await self.find_all_transactions()
            if start <= transaction.date <= end
        ]

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        async with self.transaction():
            self._check_unique(transaction)
            return self._put("transactions", transaction)

    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> Transaction:
        async with self.transaction():
            current = self._require("transactions", "Transaction", transaction_id)
            updated = revise(current, {key: value for key, value in changes.items() if key != "id"})
            self._check_unique(updated)
            return self._put("transactions", updated)

    async def delete_transaction(self, transaction_id: str) -> None:
        async with self.transaction():
            self._require("transactions", "Transaction", transaction_id)
            del self._state["transactions"][transaction_id]

    async def flag_transaction_as_subscription(
        self, transaction_id: str, subscription_id: str
    ) -> Transaction:
        async with self.transaction():
            return self._revise(
                "transactions",
                "Transaction",
                transaction_id,
                {"is_subscription": True, "subscription_id": subscription_id},
            )

    async def unflag_subscription_transactions(self, subscription_id: str) -> int:
        async with self.transaction():
            linked = [
                transaction.id
                for transaction in self._state["transactions"].values()
                if transaction.subscription_id == subscription_id
            ]
            for transaction_id in linked:
                self._revise(
                    "transactions",
                    "Transaction",
                    transaction_id,
                    {"is_subscription": False, "subscription_id": None},
                )
            return len(linked)

    # Categories

    async def get_categories(self) -> list[Category]:
        return self._all("categories")

    async def get_category_by_id(self, category_id: str) -> Category | None:
        return self._get("categories", category_id)

    async def create_category(self, category: Category) -> Category:
        async with self.transaction():
            return self._put("categories", category)

    # Subscriptions

    async def find_active_subscriptions(self) -> list[Subscription]:
        return [subscription for subscription in self._all("subscriptions") if subscription.is_active]

    async def find_subscription_by_id(self, subscription_id: str) -> Subscription | None:
        return self._get("subscriptions", subscription_id)

    async def find_subscriptions_by_category(self, category_id: str) -> list[Subscription]:
        return [
            subscription
            for subscription in self._all("subscriptions")
            if subscription.category_id == category_id
        ]

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        async with self.transaction():
            return self._put("subscriptions", subscription)

    async def update_subscription(self, subscription_id: str, changes: dict[str, Any]) -> Subscription:
        async with self.transaction():
            return self._revise("subscriptions", "Subscription", subscription_id, changes)

    async def delete_subscription(self, subscription_id: str) -> None:
        async with self.transaction():
            self._require("subscriptions", "Subscription", subscription_id)
            del self._state["subscriptions"][subscription_id]

    # Patterns

    async def create_subscription_pattern(self, pattern: SubscriptionPattern) -> SubscriptionPattern:
        async with self.transaction():
            return self._put("patterns", pattern)

    async def find_active_patterns(self) -> list[SubscriptionPattern]:
        return [pattern for pattern in self._all("patterns") if pattern.is_active]

    async def find_subscription_pattern_by_id(self, pattern_id: str) -> SubscriptionPattern | None:
        return self._get("patterns", pattern_id)

    async def find_patterns_by_subscription(self, subscription_id: str) -> list[SubscriptionPattern]:
        return [
            pattern for pattern in self._all("patterns") if pattern.subscription_id == subscription_id
        ]

    async def update_subscription_pattern(
        self, pattern_id: str, changes: dict[str, Any]
    ) -> SubscriptionPattern:
        async with self.transaction():
            return self._revise("patterns", "Pattern", pattern_id, changes)

    async def delete_subscription_pattern(self, pattern_id: str) -> None:
        async with self.transaction():
            self._require("patterns", "Pattern", pattern_id)
            del self._state["patterns"][pattern_id]

    # Budgets

    async def find_active_budgets(self) -> list[Budget]:
        return [budget for budget in self._all("budgets") if budget.is_active]

    async def find_budget_by_id(self, budget_id: str) -> Budget | None:
        return self._get("budgets", budget_id)

    async def find_budgets_by_category(self, category_id: str) -> list[Budget]:
        return [budget for budget in self._all("budgets") if budget.category_id == category_id]

    async def create_budget(self, budget: Budget) -> Budget:
        async with self.transaction():
            return self._put("budgets", budget)

    async def update_budget(self, budget_id: str, changes: dict[str, Any]) -> Budget:
        async with self.transaction():
            return self._revise("budgets", "Budget", budget_id, changes)

    async def delete_budget(self, budget_id: str) -> None:
        async with self.transaction():
            self._require("budgets", "Budget", budget_id)
            del self._state["budgets"][budget_id]

    # Scenarios

    async def find_all_budget_scenarios(self) -> list[BudgetScenario]:
        return self._all("scenarios")

    async def find_budget_scenario_by_id(self, scenario_id: str) -> BudgetScenario | None:
        return self._get("scenarios", scenario_id)

    async def create_budget_scenario(self, scenario: BudgetScenario) -> BudgetScenario:
        async with self.transaction():
            return self._put("scenarios", scenario)

    async def update_budget_scenario(self, scenario_id: str, changes: dict[str, Any]) -> BudgetScenario:
        async with self.transaction():
            return self._revise("scenarios", "Scenario", scenario_id, changes)
