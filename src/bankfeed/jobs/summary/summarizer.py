"""Daily and monthly spending summaries built from stored transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from bankfeed.adapters.db.facade import DB, CounterpartyTotal

SUMMARY_TOP_COUNTERPARTIES = 5
DEFAULT_CURRENCY = "EUR"


@dataclass
class DailyTransaction:
    counterparty_name: str
    amount: Decimal
    currency: str


@dataclass
class DailySummary:
    date: date
    total_spent: Decimal
    currency: str
    transactions: list[DailyTransaction] = field(default_factory=list)


@dataclass
class MonthlySummary:
    year: int
    month: int
    total_spent: Decimal
    total_received: Decimal
    currency: str
    top_counterparties: list[CounterpartyTotal] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return next_month_start(self.year, self.month)


def next_month_start(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def previous_month(day: date) -> tuple[int, int]:
    last_of_previous = day.replace(day=1) - timedelta(days=1)
    return last_of_previous.year, last_of_previous.month


def get_daily_summary(db: DB, day: date) -> DailySummary | None:
    """Spending on one day; None when nothing was spent."""
    next_day = day + timedelta(days=1)
    totals = db.period_totals(start=day, end=next_day, direction="DBIT")
    if totals is None:
        return None

    rows = db.list_transactions(start=day, end=next_day, direction="DBIT")
    transactions = [
        DailyTransaction(
            counterparty_name=row.counterparty_name,
            amount=row.amount,
            currency=row.currency,
        )
        for row in sorted(rows, key=lambda r: r.amount_units, reverse=True)
    ]
    return DailySummary(
        date=day,
        total_spent=totals.total_spent,
        currency=totals.currency or DEFAULT_CURRENCY,
        transactions=transactions,
    )


def get_monthly_summary(
    db: DB,
    year: int,
    month: int,
    *,
    top: int = SUMMARY_TOP_COUNTERPARTIES,
) -> MonthlySummary | None:
    """Spent / received totals and top counterparties for a calendar month."""
    start = date(year, month, 1)
    end = next_month_start(year, month)
    totals = db.period_totals(start=start, end=end)
    if totals is None:
        return None

    return MonthlySummary(
        year=year,
        month=month,
        total_spent=totals.total_spent,
        total_received=totals.total_received,
        currency=totals.currency or DEFAULT_CURRENCY,
        top_counterparties=db.top_counterparties(start=start, end=end, limit=top),
    )
