import datetime
from collections.abc import Iterable
from decimal import Decimal

from budget_reconciler.domain.periods import (
    is_indefinite,
    month_end,
    month_start,
    months_ago,
    year_end,
    year_start,
)
from budget_reconciler.models import (
    Budget,
    BudgetProgress,
    BudgetStatus,
    BudgetWindow,
    Transaction,
)

AT_RISK_RATIO = Decimal("0.85")
OVER_BUDGET_RATIO = Decimal("1")


class BudgetPeriodEngine:
    """Pure calculations over budgets and the transactions they cover."""

    def resolve_window(self, budget: Budget, reference_now: datetime.date) -> BudgetWindow:
        """Fixed budgets cover their own dates; indefinite ones roll with ``reference_now``."""
        if not is_indefinite(budget.end_date):
            return BudgetWindow(start=budget.start_date, end=budget.end_date)
        if budget.period == "yearly":
            return BudgetWindow(start=year_start(reference_now), end=year_end(reference_now))
        return BudgetWindow(start=month_start(reference_now), end=month_end(reference_now))

    def spent_in_window(
        self,
        category_id: str,
        transactions: Iterable[Transaction],
        window: BudgetWindow,
    ) -> Decimal:
        spent = Decimal("0")
        for transaction in transactions:
            if (
                transaction.type == "expense"
                and transaction.category_id == category_id
                and window.contains(transaction.date)
            ):
                spent += abs(transaction.amount)
        return spent

    def status_for(self, ratio: Decimal) -> BudgetStatus:
        if ratio >= OVER_BUDGET_RATIO:
            return "over-budget"
        if ratio >= AT_RISK_RATIO:
            return "at-risk"
        return "on-track"

    def compute_progress(
        self,
        budget: Budget,
        transactions: Iterable[Transaction],
        reference_now: datetime.date | None = None,
    ) -> BudgetProgress:
        window = self.resolve_window(budget, reference_now or datetime.date.today())
        spent = self.spent_in_window(budget.category_id, transactions, window)
        ratio = spent / budget.amount
        percent = ratio * 100
        return BudgetProgress(
            budget_id=budget.id,
            window=window,
            spent_amount=spent,
            remaining_amount=max(budget.amount - spent, Decimal("0")),
            percentage_used=ratio,
            thresholds_crossed=[
                threshold for threshold in sorted(budget.alert_thresholds) if threshold <= percent
            ],
            status=self.status_for(ratio),
        )

    def historical_average(
        self,
        category_id: str,
        transactions: Iterable[Transaction],
        months: int,
        reference_now: datetime.date | None = None,
    ) -> Decimal:
        """Average monthly spend over the ``months`` whole months before ``reference_now``.

        Transactions already flagged as subscription payments are left out so
        that fixed costs are not counted twice by callers adding them back.
        """
        if months <= 0:
            return Decimal("0")
        current_month = month_start(reference_now or datetime.date.today())
        window = BudgetWindow(
            start=months_ago(current_month, months),
            end=current_month - datetime.timedelta(days=1),
        )
        variable = (transaction for transaction in transactions if not transaction.is_subscription)
        return self.spent_in_window(category_id, variable, window) / months
