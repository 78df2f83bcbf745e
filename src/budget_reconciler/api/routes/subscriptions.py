from typing import Annotated

from fastapi import APIRouter, Depends, Query

from budget_reconciler.api.dependencies import get_coordinator
from budget_reconciler.api.schemas import (
    ConfirmMatchesRequest,
    ConfirmRequest,
    DetectRequest,
    MatchRequest,
    PatternFeedbackRequest,
    ReconcileRequest,
)
from budget_reconciler.models import (
    MatchConfirmationResult,
    ReconciliationReport,
    Subscription,
    SubscriptionCandidate,
    SubscriptionCostSummary,
    SubscriptionCreate,
    SubscriptionMatch,
    SubscriptionMutationResult,
    SubscriptionPattern,
    SubscriptionUpdate,
)
from budget_reconciler.services.reconciliation import ReconciliationCoordinator

router = APIRouter()

Coordinator = Annotated[ReconciliationCoordinator, Depends(get_coordinator)]


@router.post("/subscriptions/detect", response_model=list[SubscriptionCandidate])
async def detect_subscriptions(req: DetectRequest, coordinator: Coordinator) -> list[SubscriptionCandidate]:
    return await coordinator.detect_subscriptions(
        req.transactions,
        include_income=req.include_income,
        reference_date=req.reference_date,
    )


@router.post("/subscriptions/match", response_model=list[SubscriptionMatch])
async def match_subscriptions(req: MatchRequest, coordinator: Coordinator) -> list[SubscriptionMatch]:
    return await coordinator.match_existing_subscriptions(req.transactions)


@router.post("/subscriptions/confirm", status_code=201, response_model=SubscriptionMutationResult)
async def confirm_subscription(req: ConfirmRequest, coordinator: Coordinator) -> SubscriptionMutationResult:
    return await coordinator.confirm_subscription(req.candidate, req.overrides)


@router.post("/subscriptions/matches/confirm", response_model=MatchConfirmationResult)
async def confirm_matches(req: ConfirmMatchesRequest, coordinator: Coordinator) -> MatchConfirmationResult:
    return await coordinator.confirm_matches(req.matches)


@router.post("/subscriptions/reconcile", response_model=ReconciliationReport)
async def reconcile_subscriptions(req: ReconcileRequest, coordinator: Coordinator) -> ReconciliationReport:
    return await coordinator.reconcile_subscriptions(req.reference_date)


@router.get("/subscriptions/upcoming", response_model=list[Subscription])
async def get_upcoming_payments(
    coordinator: Coordinator,
    days: Annotated[int, Query(ge=0)] = 30,
) -> list[Subscription]:
    return await coordinator.get_upcoming_payments(days)


@router.get("/subscriptions/monthly-cost", response_model=SubscriptionCostSummary)
async def get_total_monthly_cost(coordinator: Coordinator) -> SubscriptionCostSummary:
    return await coordinator.get_total_monthly_cost()


@router.get("/subscriptions/unused", response_model=list[Subscription])
async def get_unused_subscriptions(
    coordinator: Coordinator,
    days: Annotated[int, Query(ge=0)] = 90,
) -> list[Subscription]:
    return await coordinator.get_unused_subscriptions(days)


@router.post("/subscriptions", status_code=201, response_model=SubscriptionMutationResult)
async def create_subscription(req: SubscriptionCreate, coordinator: Coordinator) -> SubscriptionMutationResult:
    return await coordinator.create_subscription(req)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionMutationResult)
async def update_subscription(
    subscription_id: str,
    req: SubscriptionUpdate,
    coordinator: Coordinator,
) -> SubscriptionMutationResult:
    return await coordinator.update_subscription(subscription_id, req)


@router.delete("/subscriptions/{subscription_id}", response_model=SubscriptionMutationResult)
async def delete_subscription(subscription_id: str, coordinator: Coordinator) -> SubscriptionMutationResult:
    return await coordinator.delete_subscription(subscription_id)


@router.post("/patterns/{pattern_id}/feedback", response_model=SubscriptionPattern)
async def record_pattern_feedback(
    pattern_id: str,
    req: PatternFeedbackRequest,
    coordinator: Coordinator,
) -> SubscriptionPattern:
    return await coordinator.record_pattern_feedback(pattern_id, req.was_correct)
