import datetime
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from budget_reconciler.core import settings
from budget_reconciler.models import BillingFrequency

AVERAGE_MONTH_DAYS = 30.44
REFERENCE_PERIOD_DAYS: dict[BillingFrequency, float] = {
    "monthly": AVERAGE_MONTH_DAYS,
    "quarterly": 91.31,
    "annually": 365.25,
}
_MONTH_STEPS: dict[BillingFrequency, int] = {
    "monthly": 1,
    "quarterly": 3,
    "annually": 12,
}


def period_days(frequency: BillingFrequency, custom_days: int | None = None) -> float:
    if frequency == "custom":
        if not custom_days or custom_days <= 0:
            raise ValueError("custom frequency requires a positive day count")
        return float(custom_days)
    return REFERENCE_PERIOD_DAYS[frequency]


def advance_date(
    value: datetime.date,
    frequency: BillingFrequency,
    custom_days: int | None = None,
    periods: int = 1,
) -> datetime.date:
    """Move ``value`` forward by whole billing periods, clamping month ends."""
    if frequency == "custom":
        return value + datetime.timedelta(days=int(period_days(frequency, custom_days)) * periods)
    return value + relativedelta(months=_MONTH_STEPS[frequency] * periods)


def monthly_equivalent(
    amount: Decimal,
    frequency: BillingFrequency,
    custom_days: int | None = None,
) -> Decimal:
    if frequency == "monthly":
        return amount
    if frequency == "quarterly":
        return amount / Decimal(3)
    if frequency == "annually":
        return amount / Decimal(12)
    months = Decimal(str(period_days(frequency, custom_days))) / Decimal(str(AVERAGE_MONTH_DAYS))
    return amount / months


def match_window_days(
    frequency: BillingFrequency,
    custom_days: int | None = None,
    monthly_window_days: int = 7,
    min_window_days: int = 2,
) -> int:
    """Tolerance around a due date, scaled from the monthly window by period length."""
    scaled = monthly_window_days * period_days(frequency, custom_days) / AVERAGE_MONTH_DAYS
    return max(min_window_days, round(scaled))


def is_indefinite(end_date: datetime.date | None) -> bool:
    return end_date is None or end_date.year >= settings.INDEFINITE_YEAR


def month_start(value: datetime.date) -> datetime.date:
    return value.replace(day=1)


def month_end(value: datetime.date) -> datetime.date:
    return month_start(value) + relativedelta(months=1) - datetime.timedelta(days=1)


def year_start(value: datetime.date) -> datetime.date:
    return value.replace(month=1, day=1)


def year_end(value: datetime.date) -> datetime.date:
    return value.replace(month=12, day=31)


def months_ago(value: datetime.date, months: int) -> datetime.date:
    return value - relativedelta(months=months)
