import datetime
from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal
from typing import Any

from budget_reconciler.detection.detector import RecurrenceDetector
from budget_reconciler.domain.periods import (
    advance_date,
    match_window_days,
    monthly_equivalent,
    months_ago,
)
from budget_reconciler.domain.text import normalize_description
from budget_reconciler.errors import (
    IntegrationFailure,
    NotFoundError,
    ReconcilerError,
    ValidationError,
    validation_scope,
)
from budget_reconciler.logger import get_logger
from budget_reconciler.matching.matcher import adjust_confidence
from budget_reconciler.models import (
    BudgetProgress,
    Category,
    MatchConfirmationResult,
    PatternDraft,
    ReconciliationReport,
    Subscription,
    SubscriptionCandidate,
    SubscriptionCost,
    SubscriptionCostSummary,
    SubscriptionCreate,
    SubscriptionMatch,
    SubscriptionMutationResult,
    SubscriptionOverrides,
    SubscriptionPattern,
    SubscriptionUpdate,
    Transaction,
)
from budget_reconciler.services.budgets import CENTS, BudgetService
from budget_reconciler.storage.base import Repository

logger = get_logger(__name__)

RECONCILE_LOOKBACK_MONTHS = 6
DEFAULT_UPCOMING_DAYS = 30
DEFAULT_UNUSED_AFTER_DAYS = 90
_PREFERRED_CATEGORY_WORDS = (("subscription", "recurring"), ("other", "misc"))


class SubscriptionService:
    def __init__(
        self,
        repository: Repository,
        budgets: BudgetService,
        detector: RecurrenceDetector | None = None,
        clock: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.repository = repository
        self.budgets = budgets
        self.detector = detector or RecurrenceDetector(repository)
        self.clock = clock

    async def _require_category(self, category_id: str | None) -> Category:
        if not category_id:
            raise ValidationError("category_id is required")
        category = await self.repository.get_category_by_id(category_id)
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    async def _require_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.find_subscription_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    async def default_category_id(self) -> str:
        categories = await self.repository.get_categories()
        if not categories:
            raise ValidationError("No category available to file the subscription under")
        for words in _PREFERRED_CATEGORY_WORDS:
            for category in categories:
                if any(word in category.name.lower() for word in words):
                    return category.id
        return categories[0].id

    # Budget propagation

    async def _propagate(
        self,
        category_ids: Iterable[str | None],
        action: str,
        subscription: Subscription,
    ) -> tuple[list[BudgetProgress], list[str]]:
        progress: list[BudgetProgress] = []
        warnings: list[str] = []
        for category_id in dict.fromkeys(category_id for category_id in category_ids if category_id):
            try:
                progress.extend(await self.budgets.recompute_category(category_id))
            except Exception as exc:
                failure = IntegrationFailure(
                    f"Budget recompute for category {category_id} failed after "
                    f"{action} {subscription.name!r}: {exc}"
                )
                logger.exception("[RECONCILE] %s", failure.message)
                warnings.append(failure.message)
        return progress, warnings

    async def on_subscription_created(
        self, subscription: Subscription
    ) -> tuple[list[BudgetProgress], list[str]]:
        return await self._propagate([subscription.category_id], "creating", subscription)

    async def on_subscription_updated(
        self, before: Subscription, after: Subscription
    ) -> tuple[list[BudgetProgress], list[str]]:
        return await self._propagate([before.category_id, after.category_id], "updating", after)

    async def on_subscription_deleted(
        self, subscription: Subscription
    ) -> tuple[list[BudgetProgress], list[str]]:
        return await self._propagate([subscription.category_id], "deleting", subscription)

    def _result(
        self,
        subscription: Subscription,
        propagated: tuple[list[BudgetProgress], list[str]],
    ) -> SubscriptionMutationResult:
        progress, warnings = propagated
        return SubscriptionMutationResult(
            subscription=subscription,
            budget_progress=progress,
            integration_failed=bool(warnings),
            warnings=warnings,
        )

    # Lifecycle

    async def create_subscription(self, request: SubscriptionCreate) -> SubscriptionMutationResult:
        await self._require_category(request.category_id)
        with validation_scope():
            subscription = Subscription(**request.model_dump(exclude={"transaction_ids"}))

        async with self.repository.transaction():
            created = await self.repository.create_subscription(subscription)
            descriptions = []
            for transaction_id in request.transaction_ids:
                flagged = await self.repository.flag_transaction_as_subscription(
                    transaction_id, created.id
                )
                descriptions.append(normalize_description(flagged.description))
            drafts = [
                PatternDraft(pattern=description, pattern_type="exact", confidence_score=1.0)
                for description in dict.fromkeys(descriptions)
            ]
            await self.detector.create_patterns_for_subscription(created.id, drafts, created_by="user")

        logger.info("[RECONCILE] Created subscription %r.", created.name)
        return self._result(created, await self.on_subscription_created(created))

    async def update_subscription(
        self, subscription_id: str, request: SubscriptionUpdate
    ) -> SubscriptionMutationResult:
        before = await self._require_subscription(subscription_id)
        changes: dict[str, Any] = request.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No changes given")
        if "category_id" in changes:
            await self._require_category(changes["category_id"])
        if changes.get("billing_frequency") not in (None, "custom"):
            changes.setdefault("custom_frequency_days", None)

        with validation_scope():
            async with self.repository.transaction():
                after = await self.repository.update_subscription(subscription_id, changes)

        logger.info("[RECONCILE] Updated subscription %r: %s", after.name, ", ".join(sorted(changes)))
        return self._result(after, await self.on_subscription_updated(before, after))

    async def delete_subscription(self, subscription_id: str) -> SubscriptionMutationResult:
        subscription = await self._require_subscription(subscription_id)
        async with self.repository.transaction():
            unflagged = await self.repository.unflag_subscription_transactions(subscription_id)
            for pattern in await self.repository.find_patterns_by_subscription(subscription_id):
                await self.repository.delete_subscription_pattern(pattern.id)
            await self.repository.delete_subscription(subscription_id)

        logger.info(
            "[RECONCILE] Deleted subscription %r, unflagged %s transactions.",
            subscription.name,
            unflagged,
        )
        return self._result(subscription, await self.on_subscription_deleted(subscription))

    # Detection and matching

    async def detect_subscriptions(
        self,
        transactions: Sequence[Transaction] | None = None,
        include_income: bool = False,
        reference_date: datetime.date | None = None,
    ) -> list[SubscriptionCandidate]:
        if transactions is None:
            transactions = await self.repository.find_all_transactions()
        if reference_date is None and transactions:
            reference_date = max(transaction.date for transaction in transactions)
        existing = await self.repository.find_active_subscriptions()
        return self.detector.detect_subscriptions(
            [transaction for transaction in transactions if not transaction.is_subscription],
            include_income=include_income,
            existing=existing,
            reference_date=reference_date,
        )

    async def match_existing_subscriptions(
        self, transactions: Sequence[Transaction] | None = None
    ) -> list[SubscriptionMatch]:
        return await self.detector.match_existing_subscriptions(transactions)

    async def confirm_subscription(
        self,
        candidate: SubscriptionCandidate,
        overrides: SubscriptionOverrides | None = None,
    ) -> SubscriptionMutationResult:
        values: dict[str, Any] = {
            "name": candidate.name,
            "amount": candidate.amount,
            "currency": candidate.currency,
            "billing_frequency": candidate.billing_frequency,
            "custom_frequency_days": candidate.custom_frequency_days,
            "next_payment_date": candidate.next_payment_date,
            "category_id": candidate.category_id,
            "start_date": candidate.first_payment_date,
            "description": candidate.reason,
        }
        if overrides is not None:
            chosen = overrides.model_dump(exclude_unset=True, exclude_none=True)
            if chosen.get("billing_frequency") not in (None, "custom"):
                values["custom_frequency_days"] = None
            values.update(chosen)

        if values["category_id"]:
            await self._require_category(values["category_id"])
        else:
            values["category_id"] = await self.default_category_id()

        with validation_scope():
            subscription = Subscription(**values)

        async with self.repository.transaction():
            created = await self.repository.create_subscription(subscription)
            await self.detector.create_patterns_for_subscription(created.id, candidate.patterns)
            for transaction_id in candidate.transaction_ids:
                await self.repository.flag_transaction_as_subscription(transaction_id, created.id)

        logger.info(
            "[RECONCILE] Confirmed subscription %r from %s transactions.",
            created.name,
            len(candidate.transaction_ids),
        )
        return self._result(created, await self.on_subscription_created(created))

    async def _feedback(self, pattern_id: str, was_correct: bool) -> SubscriptionPattern | None:
        pattern = await self.repository.find_subscription_pattern_by_id(pattern_id)
        if pattern is None:
            return None
        score = adjust_confidence(pattern.confidence_score, was_correct)
        return await self.repository.update_subscription_pattern(
            pattern_id, {"confidence_score": score}
        )

    async def record_pattern_feedback(self, pattern_id: str, was_correct: bool) -> SubscriptionPattern:
        updated = await self._feedback(pattern_id, was_correct)
        if updated is None:
            raise NotFoundError("Pattern", pattern_id)
        logger.info(
            "[MATCH] Pattern %r marked %s, confidence now %.2f.",
            updated.pattern,
            "correct" if was_correct else "incorrect",
            updated.confidence_score,
        )
        return updated

    def _due_window_start(self, subscription: Subscription) -> datetime.date:
        tuning = self.detector.matcher.tuning
        window = match_window_days(
            subscription.billing_frequency,
            subscription.custom_frequency_days,
            monthly_window_days=tuning.monthly_window_days,
            min_window_days=tuning.min_window_days,
        )
        return subscription.next_payment_date - datetime.timedelta(days=window)

    async def confirm_matches(self, matches: Sequence[SubscriptionMatch]) -> MatchConfirmationResult:
        touched: dict[str, Subscription] = {}
        async with self.repository.transaction():
            for found in sorted(matches, key=lambda match: match.transaction.date):
                subscription = await self._require_subscription(found.subscription.id)
                paid = found.transaction.date
                await self.repository.flag_transaction_as_subscription(
                    found.transaction.id, subscription.id
                )
                changes: dict[str, Any] = {}
                if subscription.last_used_date is None or paid > subscription.last_used_date:
                    changes["last_used_date"] = paid
                if paid >= self._due_window_start(subscription):
                    next_date = advance_date(
                        paid, subscription.billing_frequency, subscription.custom_frequency_days
                    )
                    if next_date > subscription.next_payment_date:
                        changes["next_payment_date"] = next_date
                if changes:
                    subscription = await self.repository.update_subscription(subscription.id, changes)
                if await self._feedback(found.pattern_id, True) is None:
                    logger.warning("[MATCH] Pattern %s no longer exists, skipping feedback.", found.pattern_id)
                touched[subscription.id] = subscription

        subscriptions = list(touched.values())
        progress: list[BudgetProgress] = []
        warnings: list[str] = []
        seen_categories: set[str] = set()
        for subscription in subscriptions:
            if subscription.category_id in seen_categories:
                continue
            seen_categories.add(subscription.category_id)
            category_progress, category_warnings = await self.on_subscription_updated(
                subscription, subscription
            )
            progress.extend(category_progress)
            warnings.extend(category_warnings)

        logger.info(
            "[RECONCILE] Confirmed %s matches across %s subscriptions.", len(matches), len(subscriptions)
        )
        return MatchConfirmationResult(
            confirmed=len(matches),
            subscriptions=subscriptions,
            budget_progress=progress,
            integration_failed=bool(warnings),
            warnings=warnings,
        )

    async def reconcile_subscriptions(
        self, reference_now: datetime.date | None = None
    ) -> ReconciliationReport:
        """Realign every active subscription with its latest matching payment."""
        today = reference_now or self.clock()
        expenses = [
            transaction
            for transaction in await self.repository.find_transactions_by_date_range(
                months_ago(today, RECONCILE_LOOKBACK_MONTHS), today
            )
            if transaction.type == "expense"
        ]
        patterns = await self.repository.find_active_patterns()
        matcher = self.detector.matcher
        report = ReconciliationReport()

        for subscription in await self.repository.find_active_subscriptions():
            report.checked += 1
            own_patterns = [pattern for pattern in patterns if pattern.subscription_id == subscription.id]
            try:
                paid = [
                    transaction
                    for transaction in expenses
                    if transaction.subscription_id in (None, subscription.id)
                    and any(
                        matcher.pattern_score(pattern, normalize_description(transaction.description))
                        is not None
                        for pattern in own_patterns
                    )
                ]
                if not paid:
                    continue
                latest = max(paid, key=lambda transaction: transaction.date)
                next_date = advance_date(
                    latest.date, subscription.billing_frequency, subscription.custom_frequency_days
                )
                if next_date != subscription.next_payment_date:
                    await self.repository.update_subscription(
                        subscription.id, {"next_payment_date": next_date}
                    )
                    report.updated += 1
                if not latest.is_subscription:
                    await self.repository.flag_transaction_as_subscription(latest.id, subscription.id)
                    report.flagged += 1
            except ReconcilerError as exc:
                logger.warning("[RECONCILE] Could not reconcile %r: %s", subscription.name, exc.message)
                report.errors.append(f"{subscription.name}: {exc.message}")

        logger.info(
            "[RECONCILE] Checked %s subscriptions, updated %s, flagged %s, errors %s.",
            report.checked,
            report.updated,
            report.flagged,
            len(report.errors),
        )
        return report

    # Queries

    async def get_upcoming_payments(self, days: int = DEFAULT_UPCOMING_DAYS) -> list[Subscription]:
        """Active subscriptions due within ``days``, overdue ones included, soonest first."""
        if days < 0:
            raise ValidationError("days must not be negative")
        horizon = self.clock() + datetime.timedelta(days=days)
        upcoming = [
            subscription
            for subscription in await self.repository.find_active_subscriptions()
            if subscription.next_payment_date <= horizon
        ]
        return sorted(upcoming, key=lambda subscription: (subscription.next_payment_date, subscription.name))

    async def get_total_monthly_cost(self) -> SubscriptionCostSummary:
        subscriptions = await self.repository.find_active_subscriptions()
        costs = [
            (
                subscription,
                monthly_equivalent(
                    subscription.amount,
                    subscription.billing_frequency,
                    subscription.custom_frequency_days,
                ),
            )
            for subscription in subscriptions
        ]
        total = sum((cost for _, cost in costs), Decimal("0"))
        return SubscriptionCostSummary(
            total_monthly_cost=total.quantize(CENTS),
            subscription_count=len(costs),
            breakdown=[
                SubscriptionCost(
                    subscription_id=subscription.id,
                    name=subscription.name,
                    monthly_amount=cost.quantize(CENTS),
                )
                for subscription, cost in sorted(costs, key=lambda item: item[1], reverse=True)
            ],
        )

    async def get_unused_subscriptions(
        self, days_since_last_use: int = DEFAULT_UNUSED_AFTER_DAYS
    ) -> list[Subscription]:
        """Active subscriptions never used, or not used for ``days_since_last_use``; priciest first."""
        if days_since_last_use < 0:
            raise ValidationError("days_since_last_use must not be negative")
        cutoff = self.clock() - datetime.timedelta(days=days_since_last_use)
        unused = [
            subscription
            for subscription in await self.repository.find_active_subscriptions()
            if subscription.last_used_date is None or subscription.last_used_date < cutoff
        ]
        return sorted(unused, key=lambda subscription: subscription.amount, reverse=True)
