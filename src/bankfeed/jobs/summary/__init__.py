"""Spending summary job: aggregation and Telegram delivery."""

from __future__ import annotations

from bankfeed.jobs.summary.summarizer import (
    DailySummary,
    MonthlySummary,
    get_daily_summary,
    get_monthly_summary,
    previous_month,
)
from bankfeed.jobs.summary.telegram import (
    NotificationResult,
    TelegramNotifier,
    format_daily,
    format_monthly,
)

__all__ = [
    "DailySummary",
    "MonthlySummary",
    "NotificationResult",
    "TelegramNotifier",
    "format_daily",
    "format_monthly",
    "get_daily_summary",
    "get_monthly_summary",
    "previous_month",
]
