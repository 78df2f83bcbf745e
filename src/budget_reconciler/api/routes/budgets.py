from typing import Annotated

from fastapi import APIRouter, Depends, Query

from budget_reconciler.api.dependencies import get_coordinator
from budget_reconciler.models import (
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetSuggestion,
    BudgetUpdate,
    BudgetWithProgress,
)
from budget_reconciler.services.reconciliation import ReconciliationCoordinator

router = APIRouter()

Coordinator = Annotated[ReconciliationCoordinator, Depends(get_coordinator)]


@router.get("/budgets", response_model=list[BudgetWithProgress])
async def list_active_budgets(coordinator: Coordinator) -> list[BudgetWithProgress]:
    return await coordinator.get_active_budgets_progress()


@router.post("/budgets", status_code=201, response_model=Budget)
async def create_budget(req: BudgetCreate, coordinator: Coordinator) -> Budget:
    return await coordinator.create_budget(req)


@router.get("/budgets/suggestions/{category_id}", response_model=BudgetSuggestion)
async def get_budget_suggestion(
    category_id: str,
    coordinator: Coordinator,
    period: BudgetPeriod = "monthly",
    months: Annotated[int | None, Query(ge=1)] = None,
) -> BudgetSuggestion:
    return await coordinator.get_budget_suggestion(category_id, period, months)


@router.get("/budgets/{budget_id}", response_model=BudgetWithProgress)
async def get_budget(budget_id: str, coordinator: Coordinator) -> BudgetWithProgress:
    return await coordinator.get_budget_with_progress(budget_id)


@router.patch("/budgets/{budget_id}", response_model=Budget)
async def update_budget(budget_id: str, req: BudgetUpdate, coordinator: Coordinator) -> Budget:
    return await coordinator.update_budget(budget_id, req)


@router.delete("/budgets/{budget_id}", status_code=204)
async def delete_budget(budget_id: str, coordinator: Coordinator) -> None:
    await coordinator.delete_budget(budget_id)
