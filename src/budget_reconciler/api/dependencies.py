from fastapi import HTTPException, Request

from budget_reconciler.services.reconciliation import ReconciliationCoordinator


def get_coordinator(request: Request) -> ReconciliationCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if not coordinator:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return coordinator
