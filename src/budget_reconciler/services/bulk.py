import asyncio
from collections.abc import Awaitable, Callable, Sequence
from time import perf_counter
from typing import TypeVar

from budget_reconciler.errors import (
    IntegrationFailure,
    NotFoundError,
    ReconcilerError,
    ValidationError,
    validation_scope,
)
from budget_reconciler.logger import get_logger
from budget_reconciler.models import (
    BulkItemError,
    BulkProcessingOptions,
    BulkProcessingResult,
    BulkUpdateOperation,
)
from budget_reconciler.services.budgets import BudgetService
from budget_reconciler.storage.base import Repository

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")


class BulkTransactionProcessor:
    def __init__(self, repository: Repository, budgets: BudgetService) -> None:
        self.repository = repository
        self.budgets = budgets

    async def _update_one(self, operation: BulkUpdateOperation) -> list[str | None]:
        current = await self.repository.find_transaction_by_id(operation.transaction_id)
        if current is None:
            raise NotFoundError("Transaction", operation.transaction_id)
        changes = operation.updates.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError(f"No changes given for transaction {operation.transaction_id}")
        if changes.get("category_id") is not None:
            if await self.repository.get_category_by_id(changes["category_id"]) is None:
                raise NotFoundError("Category", changes["category_id"])
        with validation_scope():
            updated = await self.repository.update_transaction(operation.transaction_id, changes)
        return [current.category_id, updated.category_id]

    async def _delete_one(self, transaction_id: str) -> list[str | None]:
        current = await self.repository.find_transaction_by_id(transaction_id)
        if current is None:
            raise NotFoundError("Transaction", transaction_id)
        await self.repository.delete_transaction(transaction_id)
        return [current.category_id]

    async def _process_batch(
        self,
        batch: Sequence[ItemT],
        offset: int,
        handler: Callable[[ItemT], Awaitable[list[str | None]]],
        result: BulkProcessingResult,
        touched: dict[str, None],
    ) -> None:
        for position, item in enumerate(batch):
            index = offset + position
            result.total_processed += 1
            try:
                categories = await handler(item)
            except ReconcilerError as exc:
                result.failed += 1
                result.errors.append(BulkItemError(index=index, code=exc.code, error=exc.message))
                logger.debug("[BULK] Item %s failed: %s", index, exc.message)
                continue
            except Exception as exc:
                result.failed += 1
                result.errors.append(BulkItemError(index=index, code="internal_error", error=str(exc)))
                logger.exception("[BULK] Item %s failed unexpectedly", index)
                continue
            result.successful += 1
            for category_id in categories:
                if category_id:
                    touched[category_id] = None

    async def _run(
        self,
        label: str,
        items: Sequence[ItemT],
        handler: Callable[[ItemT], Awaitable[list[str | None]]],
        options: BulkProcessingOptions | None,
    ) -> BulkProcessingResult:
        options = options or BulkProcessingOptions()
        result = BulkProcessingResult()
        touched: dict[str, None] = {}
        started = perf_counter()
        logger.info("[BULK] Starting %s of %s transactions.", label, len(items))

        for offset in range(0, len(items), options.batch_size):
            batch = items[offset:offset + options.batch_size]
            await self._process_batch(batch, offset, handler, result, touched)
            logger.info(
                "[BULK] Batch processed. Items: %s, Successful so far: %s, Failed so far: %s",
                len(batch),
                result.successful,
                result.failed,
            )
            await asyncio.sleep(0)

        if options.enable_budget_updates:
            await self._recompute(list(touched), result)

        logger.info(
            "[BULK] %s complete in %.2fs. Successful: %s, Failed: %s, Budgets recomputed: %s",
            label.capitalize(),
            perf_counter() - started,
            result.successful,
            result.failed,
            len(result.recomputed_categories),
        )
        return result

    async def _recompute(self, category_ids: list[str], result: BulkProcessingResult) -> None:
        for category_id in category_ids:
            try:
                progress = await self.budgets.recompute_category(category_id)
            except Exception as exc:
                failure = IntegrationFailure(
                    f"Budget recompute for category {category_id} after bulk edit failed: {exc}"
                )
                logger.exception("[BULK] %s", failure.message)
                result.warnings.append(failure.message)
                continue
            result.budget_progress.extend(progress)
            result.recomputed_categories.append(category_id)
        result.budget_updates_completed = not result.warnings

    async def process_bulk_updates(
        self,
        operations: Sequence[BulkUpdateOperation],
        options: BulkProcessingOptions | None = None,
    ) -> BulkProcessingResult:
        return await self._run("update", operations, self._update_one, options)

    async def process_bulk_deletions(
        self,
        transaction_ids: Sequence[str],
        options: BulkProcessingOptions | None = None,
    ) -> BulkProcessingResult:
        return await self._run("deletion", transaction_ids, self._delete_one, options)
