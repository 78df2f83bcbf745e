from typing import Annotated

from fastapi import APIRouter, Depends

from budget_reconciler.api.dependencies import get_coordinator
from budget_reconciler.api.schemas import ScenarioCreateRequest
from budget_reconciler.models import BudgetScenario
from budget_reconciler.services.reconciliation import ReconciliationCoordinator

router = APIRouter()

Coordinator = Annotated[ReconciliationCoordinator, Depends(get_coordinator)]


@router.get("/budget-scenarios", response_model=list[BudgetScenario])
async def list_scenarios(coordinator: Coordinator) -> list[BudgetScenario]:
    return await coordinator.list_scenarios()


@router.post("/budget-scenarios", status_code=201, response_model=BudgetScenario)
async def create_scenario(req: ScenarioCreateRequest, coordinator: Coordinator) -> BudgetScenario:
    return await coordinator.create_scenario(req.name, req.description)


@router.put("/budget-scenarios/{scenario_id}/activate", response_model=BudgetScenario)
async def activate_scenario(scenario_id: str, coordinator: Coordinator) -> BudgetScenario:
    return await coordinator.activate_scenario(scenario_id)
