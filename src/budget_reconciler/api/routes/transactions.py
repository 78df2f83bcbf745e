from typing import Annotated

from fastapi import APIRouter, Depends, Response

from budget_reconciler.api.dependencies import get_coordinator
from budget_reconciler.api.schemas import (
    BulkDeleteRequest,
    BulkUpdateRequest,
    CategoryCreateRequest,
    TransactionsRequest,
)
from budget_reconciler.models import BulkProcessingResult, Category, Transaction
from budget_reconciler.services.reconciliation import ReconciliationCoordinator

router = APIRouter()

Coordinator = Annotated[ReconciliationCoordinator, Depends(get_coordinator)]


def bulk_status_code(result: BulkProcessingResult) -> int:
    if result.is_partial_failure:
        return 207
    if result.failed and not result.successful:
        return 422
    return 200


@router.get("/categories", response_model=list[Category])
async def list_categories(coordinator: Coordinator) -> list[Category]:
    return await coordinator.list_categories()


@router.post("/categories", status_code=201, response_model=Category)
async def create_category(req: CategoryCreateRequest, coordinator: Coordinator) -> Category:
    return await coordinator.create_category(req.name)


@router.post("/transactions", status_code=201, response_model=list[Transaction])
async def add_transactions(req: TransactionsRequest, coordinator: Coordinator) -> list[Transaction]:
    return await coordinator.add_transactions(req.transactions)


@router.post("/transactions/bulk-update", response_model=BulkProcessingResult)
async def bulk_update(
    req: BulkUpdateRequest,
    response: Response,
    coordinator: Coordinator,
) -> BulkProcessingResult:
    result = await coordinator.process_bulk_updates(req.operations, req.options)
    response.status_code = bulk_status_code(result)
    return result


@router.post("/transactions/bulk-delete", response_model=BulkProcessingResult)
async def bulk_delete(
    req: BulkDeleteRequest,
    response: Response,
    coordinator: Coordinator,
) -> BulkProcessingResult:
    result = await coordinator.process_bulk_deletions(req.transaction_ids, req.options)
    response.status_code = bulk_status_code(result)
    return result
