import datetime
from collections.abc import Callable, Iterable
from decimal import Decimal

from budget_reconciler.budgets.engine import BudgetPeriodEngine
from budget_reconciler.core import settings
from budget_reconciler.domain.periods import monthly_equivalent
from budget_reconciler.errors import NotFoundError, ValidationError, validation_scope
from budget_reconciler.logger import get_logger
from budget_reconciler.models import (
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetProgress,
    BudgetScenario,
    BudgetSuggestion,
    BudgetUpdate,
    BudgetWithProgress,
    Category,
    SubscriptionCost,
    Transaction,
)
from budget_reconciler.storage.base import Repository

logger = get_logger(__name__)

CENTS = Decimal("0.01")


class BudgetService:
    def __init__(
        self,
        repository: Repository,
        engine: BudgetPeriodEngine | None = None,
        clock: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.repository = repository
        self.engine = engine or BudgetPeriodEngine()
        self.clock = clock

    async def _require_category(self, category_id: str | None) -> Category:
        if not category_id:
            raise ValidationError("category_id is required")
        category = await self.repository.get_category_by_id(category_id)
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    async def _require_budget(self, budget_id: str) -> Budget:
        budget = await self.repository.find_budget_by_id(budget_id)
        if budget is None:
            raise NotFoundError("Budget", budget_id)
        return budget

    async def active_scenario(self) -> BudgetScenario | None:
        for scenario in await self.repository.find_all_budget_scenarios():
            if scenario.is_active:
                return scenario
        return None

    async def create_budget(self, request: BudgetCreate) -> Budget:
        if request.amount <= 0:
            raise ValidationError("Budget amount must be greater than zero")
        await self._require_category(request.category_id)

        scenario_id = request.scenario_id
        if scenario_id is None:
            active = await self.active_scenario()
            scenario_id = active.id if active else None
        elif await self.repository.find_budget_scenario_by_id(scenario_id) is None:
            raise NotFoundError("Scenario", scenario_id)

        with validation_scope():
            budget = Budget(**request.model_dump(exclude={"scenario_id"}), scenario_id=scenario_id)
        created = await self.repository.create_budget(budget)
        logger.info(
            "[BUDGET] Created %s budget %r for category %s (%s %s).",
            created.period,
            created.name,
            created.category_id,
            created.amount,
            created.currency,
        )
        return created

    async def update_budget(self, budget_id: str, request: BudgetUpdate) -> Budget:
        await self._require_budget(budget_id)
        changes = request.model_dump(exclude_unset=True)
        if "amount" in changes and (changes["amount"] is None or changes["amount"] <= 0):
            raise ValidationError("Budget amount must be greater than zero")
        if "category_id" in changes:
            await self._require_category(changes["category_id"])
        with validation_scope():
            updated = await self.repository.update_budget(budget_id, changes)
        logger.info("[BUDGET] Updated budget %r: %s", updated.name, ", ".join(sorted(changes)))
        return updated

    async def delete_budget(self, budget_id: str) -> None:
        budget = await self._require_budget(budget_id)
        await self.repository.delete_budget(budget_id)
        logger.info("[BUDGET] Deleted budget %r.", budget.name)

    def progress_for(
        self,
        budget: Budget,
        transactions: Iterable[Transaction],
    ) -> BudgetProgress:
        return self.engine.compute_progress(budget, transactions, self.clock())

    async def get_budget_with_progress(self, budget_id: str) -> BudgetWithProgress:
        budget = await self._require_budget(budget_id)
        transactions = await self.repository.find_all_transactions()
        return BudgetWithProgress(budget=budget, progress=self.progress_for(budget, transactions))

    async def get_active_budgets_progress(self) -> list[BudgetWithProgress]:
        """Progress of active budgets that are unscoped or belong to the active scenario."""
        active = await self.active_scenario()
        scenario_ids = {None, active.id if active else None}
        budgets = [
            budget
            for budget in await self.repository.find_active_budgets()
            if budget.scenario_id in scenario_ids
        ]
        transactions = await self.repository.find_all_transactions()
        return [
            BudgetWithProgress(budget=budget, progress=self.progress_for(budget, transactions))
            for budget in budgets
        ]

    async def recompute_category(self, category_id: str) -> list[BudgetProgress]:
        budgets = [
            budget
            for budget in await self.repository.find_budgets_by_category(category_id)
            if budget.is_active
        ]
        if not budgets:
            return []
        transactions = await self.repository.find_all_transactions()
        results = []
        for budget in budgets:
            progress = self.progress_for(budget, transactions)
            results.append(progress)
            logger.info(
                "[BUDGET] %r: %s of %s spent (%s).",
                budget.name,
                progress.spent_amount,
                budget.amount,
                progress.status,
            )
            if progress.status != "on-track":
                logger.warning(
                    "[BUDGET] %r crossed thresholds %s.", budget.name, progress.thresholds_crossed
                )
        return results

    # Scenarios

    async def list_scenarios(self) -> list[BudgetScenario]:
        return await self.repository.find_all_budget_scenarios()

    async def create_scenario(self, name: str, description: str | None = None) -> BudgetScenario:
        with validation_scope():
            scenario = BudgetScenario(name=name, description=description)
        created = await self.repository.create_budget_scenario(scenario)
        logger.info("[SCENARIO] Created scenario %r.", created.name)
        return created

    async def activate_scenario(self, scenario_id: str) -> BudgetScenario:
        async with self.repository.transaction():
            scenarios = await self.repository.find_all_budget_scenarios()
            target = next((scenario for scenario in scenarios if scenario.id == scenario_id), None)
            if target is None:
                raise NotFoundError("Scenario", scenario_id)

            active_ids = [scenario.id for scenario in scenarios if scenario.is_active]
            if active_ids == [scenario_id]:
                logger.info("[SCENARIO] %r is already the active scenario.", target.name)
                return target

            for other_id in active_ids:
                if other_id != scenario_id:
                    await self.repository.update_budget_scenario(other_id, {"is_active": False})
            activated = await self.repository.update_budget_scenario(scenario_id, {"is_active": True})

        logger.info("[SCENARIO] Activated scenario %r.", activated.name)
        return activated

    # Suggestions

    async def get_budget_suggestion(
        self,
        category_id: str,
        period: BudgetPeriod = "monthly",
        months: int | None = None,
    ) -> BudgetSuggestion:
        months = settings.SUGGESTION_HISTORY_MONTHS if months is None else months
        if months < 1:
            raise ValidationError("months must be at least 1")
        category = await self._require_category(category_id)

        transactions = await self.repository.find_all_transactions()
        historical = self.engine.historical_average(category_id, transactions, months, self.clock())
        subscriptions = [
            subscription
            for subscription in await self.repository.find_subscriptions_by_category(category_id)
            if subscription.is_active
        ]
        breakdown = [
            SubscriptionCost(
                subscription_id=subscription.id,
                name=subscription.name,
                monthly_amount=monthly_equivalent(
                    subscription.amount,
                    subscription.billing_frequency,
                    subscription.custom_frequency_days,
                ).quantize(CENTS),
            )
            for subscription in subscriptions
        ]

        multiplier = 12 if period == "yearly" else 1
        fixed = sum(
            (
                monthly_equivalent(s.amount, s.billing_frequency, s.custom_frequency_days)
                for s in subscriptions
            ),
            Decimal("0"),
        ) * multiplier
        variable = historical * multiplier

        confidence = 0.7
        if subscriptions:
            confidence += 0.2
        if historical > 0:
            confidence += 0.1

        reasoning = [f"Average variable spend over the last {months} months: {historical.quantize(CENTS)}."]
        if subscriptions:
            names = ", ".join(subscription.name for subscription in subscriptions)
            reasoning.append(f"Fixed subscription costs included: {names}.")
        else:
            reasoning.append("No active subscriptions in this category.")

        logger.info(
            "[BUDGET] Suggestion for %r (%s): fixed %s + variable %s.",
            category.name,
            period,
            fixed.quantize(CENTS),
            variable.quantize(CENTS),
        )
        return BudgetSuggestion(
            category_id=category.id,
            category_name=category.name,
            period=period,
            months_analyzed=months,
            historical_average=historical.quantize(CENTS),
            fixed_costs=fixed.quantize(CENTS),
            variable_budget=variable.quantize(CENTS),
            total_suggestion=(fixed + variable).quantize(CENTS),
            subscription_breakdown=breakdown,
            confidence=round(min(1.0, confidence), 2),
            reasoning=" ".join(reasoning),
        )
