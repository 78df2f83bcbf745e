from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from budget_reconciler.api.routes import budgets, scenarios, subscriptions, transactions
from budget_reconciler.core import settings
from budget_reconciler.errors import ConflictError, NotFoundError, ReconcilerError
from budget_reconciler.logger import get_logger, setup_logging
from budget_reconciler.services.reconciliation import ReconciliationCoordinator

logger = get_logger(__name__)


def status_for_error(exc: ReconcilerError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 422


async def handle_reconciler_error(request: Request, exc: ReconcilerError) -> JSONResponse:
    status_code = status_for_error(exc)
    logger.info("[API] %s %s -> %s (%s)", request.method, request.url.path, status_code, exc.code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(coordinator: ReconciliationCoordinator | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()
        if coordinator is not None:
            app.state.coordinator = coordinator
        else:
            settings.ensure_dir(settings.DATA_DIR)
            app.state.coordinator = ReconciliationCoordinator.from_data_dir(settings.DATA_DIR)
        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Budget Reconciler", lifespan=lifespan)
    app.add_exception_handler(ReconcilerError, handle_reconciler_error)

    app.include_router(subscriptions.router)
    app.include_router(budgets.router)
    app.include_router(scenarios.router)
    app.include_router(transactions.router)

    return app
