import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from budget_reconciler.errors import NotFoundError, ValidationError
from budget_reconciler.models import (
    BudgetCreate,
    SubscriptionCreate,
    SubscriptionOverrides,
    SubscriptionPattern,
    SubscriptionUpdate,
)


@pytest.fixture
async def streaming(coordinator):
    return await coordinator.create_category("Streaming Subscriptions")


@pytest.fixture
async def stored_history(coordinator, streaming, netflix_history):
    transactions = [tx.model_copy(update={"category_id": streaming.id}) for tx in netflix_history]
    return await coordinator.add_transactions(transactions)


def netflix_request(category_id: str, **overrides) -> SubscriptionCreate:
    values = {
        "name": "Netflix",
        "amount": Decimal("15.99"),
        "billing_frequency": "monthly",
        "next_payment_date": datetime.date(2024, 7, 15),
        "category_id": category_id,
        "start_date": datetime.date(2024, 1, 15),
    }
    values.update(overrides)
    return SubscriptionCreate(**values)


@pytest.mark.anyio
async def test_candidate_to_subscription_round_trip(coordinator, repository, streaming, stored_history):
    await coordinator.create_budget(
        BudgetCreate(
            name="Streaming", category_id=streaming.id, amount=Decimal("50"),
            start_date=datetime.date(2024, 1, 1),
        )
    )
    candidates = await coordinator.detect_subscriptions()
    assert len(candidates) == 1

    result = await coordinator.confirm_subscription(candidates[0])

    subscription = result.subscription
    assert subscription.name == "Netflix"
    assert subscription.category_id == streaming.id
    assert subscription.next_payment_date == datetime.date(2024, 7, 15)
    assert not result.integration_failed
    assert len(result.budget_progress) == 1

    patterns = await repository.find_patterns_by_subscription(subscription.id)
    assert {pattern.pattern_type for pattern in patterns} == {"exact", "fuzzy"}
    for tx in stored_history:
        stored = await repository.find_transaction_by_id(tx.id)
        assert stored.is_subscription
        assert stored.subscription_id == subscription.id

    assert await coordinator.detect_subscriptions() == []


@pytest.mark.anyio
async def test_confirm_picks_default_category(coordinator, netflix_history):
    await coordinator.create_category("Food")
    misc = await coordinator.create_category("Misc")
    await coordinator.add_transactions(netflix_history)

    candidate = (await coordinator.detect_subscriptions())[0]
    assert candidate.category_id is None
    result = await coordinator.confirm_subscription(candidate)
    assert result.subscription.category_id == misc.id


@pytest.mark.anyio
async def test_confirm_overrides_win(coordinator, streaming, stored_history):
    candidate = (await coordinator.detect_subscriptions())[0]
    overrides = SubscriptionOverrides(name="Netflix Premium", amount=Decimal("17.99"))
    result = await coordinator.confirm_subscription(candidate, overrides)
    assert result.subscription.name == "Netflix Premium"
    assert result.subscription.amount == Decimal("17.99")
    assert result.subscription.billing_frequency == "monthly"


@pytest.mark.anyio
async def test_confirm_rolls_back_when_transaction_missing(coordinator, repository, streaming, stored_history):
    candidate = (await coordinator.detect_subscriptions())[0]
    broken = candidate.model_copy(update={"transaction_ids": candidate.transaction_ids + ("missing",)})
    with pytest.raises(NotFoundError):
        await coordinator.confirm_subscription(broken)
    assert await repository.find_active_subscriptions() == []
    assert await repository.find_active_patterns() == []


@pytest.mark.anyio
async def test_budget_failure_does_not_undo_subscription(coordinator, repository, streaming):
    coordinator.budgets.recompute_category = AsyncMock(side_effect=RuntimeError("budget store offline"))

    result = await coordinator.create_subscription(netflix_request(streaming.id))

    assert result.integration_failed
    assert "budget store offline" in result.warnings[0]
    assert await repository.find_subscription_by_id(result.subscription.id) is not None


@pytest.mark.anyio
async def test_create_subscription_validation(coordinator, streaming):
    with pytest.raises(NotFoundError):
        await coordinator.create_subscription(netflix_request("missing"))
    with pytest.raises(ValidationError):
        await coordinator.create_subscription(netflix_request(streaming.id, billing_frequency="custom"))
    with pytest.raises(ValidationError):
        await coordinator.create_subscription(netflix_request(streaming.id, amount=Decimal("0")))


@pytest.mark.anyio
async def test_category_change_recomputes_old_and_new(coordinator, streaming):
    music = await coordinator.create_category("Music")
    streaming_budget = await coordinator.create_budget(
        BudgetCreate(name="Streaming", category_id=streaming.id, amount=Decimal("40"), start_date=datetime.date(2024, 1, 1))
    )
    music_budget = await coordinator.create_budget(
        BudgetCreate(name="Music", category_id=music.id, amount=Decimal("20"), start_date=datetime.date(2024, 1, 1))
    )
    created = await coordinator.create_subscription(netflix_request(streaming.id))

    result = await coordinator.update_subscription(
        created.subscription.id, SubscriptionUpdate(category_id=music.id)
    )
    assert result.subscription.category_id == music.id
    assert {progress.budget_id for progress in result.budget_progress} == {
        streaming_budget.id,
        music_budget.id,
    }


@pytest.mark.anyio
async def test_switching_to_standard_frequency_clears_custom_days(coordinator, streaming):
    created = await coordinator.create_subscription(
        netflix_request(streaming.id, billing_frequency="custom", custom_frequency_days=28)
    )
    result = await coordinator.update_subscription(
        created.subscription.id, SubscriptionUpdate(billing_frequency="monthly")
    )
    assert result.subscription.custom_frequency_days is None


@pytest.mark.anyio
async def test_delete_unflags_transactions_and_removes_patterns(coordinator, repository, streaming, stored_history):
    created = await coordinator.create_subscription(
        netflix_request(streaming.id, transaction_ids=[tx.id for tx in stored_history])
    )
    assert await repository.find_patterns_by_subscription(created.subscription.id)

    await coordinator.delete_subscription(created.subscription.id)

    assert await repository.find_subscription_by_id(created.subscription.id) is None
    assert await repository.find_patterns_by_subscription(created.subscription.id) == []
    assert not any(tx.is_subscription for tx in await repository.find_all_transactions())
    with pytest.raises(NotFoundError):
        await coordinator.delete_subscription(created.subscription.id)


@pytest.mark.anyio
async def test_match_and_confirm_advances_next_payment(coordinator, repository, streaming, make_transaction):
    created = await coordinator.create_subscription(netflix_request(streaming.id))
    subscription = created.subscription
    pattern = await repository.create_subscription_pattern(
        SubscriptionPattern(
            subscription_id=subscription.id, pattern="netflix", pattern_type="fuzzy", confidence_score=0.8
        )
    )
    [paid] = await coordinator.add_transactions(
        [make_transaction("NETFLIX 4411", "-15.99", datetime.date(2024, 7, 16), category_id=streaming.id)]
    )

    matches = await coordinator.match_existing_subscriptions()
    assert [match.transaction.id for match in matches] == [paid.id]

    result = await coordinator.confirm_matches(matches)

    assert result.confirmed == 1
    assert result.subscriptions[0].next_payment_date == datetime.date(2024, 8, 16)
    assert result.subscriptions[0].last_used_date == datetime.date(2024, 7, 16)
    stored_pattern = await repository.find_subscription_pattern_by_id(pattern.id)
    assert stored_pattern.confidence_score == pytest.approx(0.82)
    stored_tx = await repository.find_transaction_by_id(paid.id)
    assert stored_tx.subscription_id == subscription.id
    assert await coordinator.match_existing_subscriptions() == []


@pytest.mark.anyio
async def test_negative_feedback_lowers_confidence(coordinator, repository, streaming):
    created = await coordinator.create_subscription(netflix_request(streaming.id))
    pattern = await repository.create_subscription_pattern(
        SubscriptionPattern(subscription_id=created.subscription.id, pattern="netflix", pattern_type="fuzzy")
    )
    updated = await coordinator.record_pattern_feedback(pattern.id, was_correct=False)
    assert updated.confidence_score == pytest.approx(0.85)
    with pytest.raises(NotFoundError):
        await coordinator.record_pattern_feedback("missing", was_correct=True)


@pytest.mark.anyio
async def test_reconcile_realigns_next_payment(coordinator, repository, streaming, stored_history):
    created = await coordinator.create_subscription(
        netflix_request(streaming.id, next_payment_date=datetime.date(2024, 3, 15))
    )
    await repository.create_subscription_pattern(
        SubscriptionPattern(subscription_id=created.subscription.id, pattern="netflix.com", pattern_type="exact")
    )

    report = await coordinator.reconcile_subscriptions()

    assert report.checked == 1
    assert report.updated == 1
    assert report.flagged == 1
    assert report.errors == []
    stored = await repository.find_subscription_by_id(created.subscription.id)
    assert stored.next_payment_date == datetime.date(2024, 7, 15)


@pytest.mark.anyio
async def test_budget_suggestion_adds_fixed_costs(coordinator, streaming, make_transaction):
    await coordinator.create_subscription(netflix_request(streaming.id))
    await coordinator.create_subscription(
        netflix_request(streaming.id, name="Cloud Storage", amount=Decimal("120"), billing_frequency="annually")
    )
    await coordinator.add_transactions(
        [
            make_transaction("Movie rental", "-40.00", datetime.date(2024, 4, 10), category_id=streaming.id),
            make_transaction("Movie rental", "-50.00", datetime.date(2024, 6, 10), category_id=streaming.id),
        ]
    )

    monthly = await coordinator.get_budget_suggestion(streaming.id, months=3)
    assert monthly.fixed_costs == Decimal("25.99")
    assert monthly.historical_average == Decimal("30.00")
    assert monthly.total_suggestion == Decimal("55.99")
    assert monthly.confidence == 1.0
    assert len(monthly.subscription_breakdown) == 2

    yearly = await coordinator.get_budget_suggestion(streaming.id, period="yearly", months=3)
    assert yearly.total_suggestion == Decimal("671.88")


@pytest.mark.anyio
async def test_create_budget_defaults_to_active_scenario(coordinator, streaming):
    scenario = await coordinator.create_scenario("Baseline")
    await coordinator.activate_scenario(scenario.id)
    budget = await coordinator.create_budget(
        BudgetCreate(name="Streaming", category_id=streaming.id, amount=Decimal("30"), start_date=datetime.date(2024, 1, 1))
    )
    assert budget.scenario_id == scenario.id

    with pytest.raises(ValidationError):
        await coordinator.create_budget(
            BudgetCreate(name="Zero", category_id=streaming.id, amount=Decimal("0"), start_date=datetime.date(2024, 1, 1))
        )

    overview = await coordinator.get_active_budgets_progress()
    assert [entry.budget.id for entry in overview] == [budget.id]


@pytest.mark.anyio
async def test_upcoming_payments_include_overdue_and_skip_far_future(coordinator, streaming):
    netflix = (await coordinator.create_subscription(netflix_request(streaming.id))).subscription
    overdue = (
        await coordinator.create_subscription(
            netflix_request(streaming.id, name="Newspaper", next_payment_date=datetime.date(2024, 7, 1))
        )
    ).subscription
    await coordinator.create_subscription(
        netflix_request(streaming.id, name="Gym", next_payment_date=datetime.date(2024, 8, 20))
    )

    upcoming = await coordinator.get_upcoming_payments(30)

    assert [subscription.id for subscription in upcoming] == [overdue.id, netflix.id]
    assert len(await coordinator.get_upcoming_payments(40)) == 3
    with pytest.raises(ValidationError):
        await coordinator.get_upcoming_payments(-1)


@pytest.mark.anyio
async def test_total_monthly_cost_normalises_frequencies(coordinator, streaming):
    await coordinator.create_subscription(netflix_request(streaming.id))
    await coordinator.create_subscription(
        netflix_request(streaming.id, name="Cloud Storage", amount=Decimal("120"), billing_frequency="annually")
    )
    await coordinator.create_subscription(
        netflix_request(streaming.id, name="Magazine", amount=Decimal("30"), billing_frequency="quarterly")
    )
    cancelled = await coordinator.create_subscription(netflix_request(streaming.id, name="Old Plan"))
    await coordinator.update_subscription(cancelled.subscription.id, SubscriptionUpdate(is_active=False))

    summary = await coordinator.get_total_monthly_cost()

    assert summary.total_monthly_cost == Decimal("35.99")
    assert summary.subscription_count == 3
    assert [cost.name for cost in summary.breakdown][0] == "Netflix"


@pytest.mark.anyio
async def test_unused_subscriptions_by_last_use(coordinator, streaming):
    never_used = (await coordinator.create_subscription(netflix_request(streaming.id))).subscription
    recent = (await coordinator.create_subscription(netflix_request(streaming.id, name="Music"))).subscription
    stale = (
        await coordinator.create_subscription(netflix_request(streaming.id, name="Gym", amount=Decimal("9.99")))
    ).subscription
    await coordinator.update_subscription(recent.id, SubscriptionUpdate(last_used_date=datetime.date(2024, 7, 1)))
    await coordinator.update_subscription(stale.id, SubscriptionUpdate(last_used_date=datetime.date(2024, 1, 1)))

    unused = await coordinator.get_unused_subscriptions(90)

    assert [subscription.id for subscription in unused] == [never_used.id, stale.id]


@pytest.mark.anyio
async def test_delete_budget(coordinator, streaming):
    budget = await coordinator.create_budget(
        BudgetCreate(name="Streaming", category_id=streaming.id, amount=Decimal("30"), start_date=datetime.date(2024, 1, 1))
    )

    await coordinator.delete_budget(budget.id)

    with pytest.raises(NotFoundError):
        await coordinator.get_budget_with_progress(budget.id)
    with pytest.raises(NotFoundError):
        await coordinator.delete_budget(budget.id)
