import datetime
from collections.abc import Callable
from decimal import Decimal

import pytest

from budget_reconciler.core.settings import DetectorTuning, MatcherTuning
from budget_reconciler.models import Transaction
from budget_reconciler.services.reconciliation import ReconciliationCoordinator
from budget_reconciler.storage.memory import InMemoryRepository

TODAY = datetime.date(2024, 7, 15)

TransactionFactory = Callable[..., Transaction]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def today() -> datetime.date:
    return TODAY


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def coordinator(repository: InMemoryRepository) -> ReconciliationCoordinator:
    return ReconciliationCoordinator(
        repository,
        matcher_tuning=MatcherTuning(),
        detector_tuning=DetectorTuning(),
        clock=lambda: TODAY,
    )


@pytest.fixture
def make_transaction() -> TransactionFactory:
    def factory(
        description: str,
        amount: str | Decimal,
        date: datetime.date,
        **kwargs,
    ) -> Transaction:
        return Transaction(description=description, amount=Decimal(amount), date=date, **kwargs)

    return factory


@pytest.fixture
def netflix_history(make_transaction: TransactionFactory) -> list[Transaction]:
    """Six monthly Netflix charges with varying bank reference numbers."""
    return [
        make_transaction(f"NETFLIX.COM {1000 + month}", "-15.99", datetime.date(2024, month, 15))
        for month in range(1, 7)
    ]
