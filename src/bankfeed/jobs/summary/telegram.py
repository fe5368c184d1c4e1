"""Telegram delivery for spending summaries."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
import html
import time
from typing import Any

import httpx

from bankfeed.jobs.summary.summarizer import DailySummary, MonthlySummary

TELEGRAM_API_BASE_URL = "https://api.telegram.org"


@dataclass
class NotificationResult:
    """Result of a message send operation."""

    success: bool
    message_id: int | None
    error: str | None


def format_amount(amount: Decimal, currency: str) -> str:
    """At least two places; more only when the amount carries them (e.g. KWD)."""
    exponent = amount.normalize().as_tuple().exponent
    places = max(2, -exponent) if isinstance(exponent, int) else 2
    return f"{amount:.{places}f} {currency}"


def _epoch_ms(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=UTC).timestamp() * 1000)


def format_daily(summary: DailySummary, *, dashboard_url: str = "") -> str:
    """HTML message for a daily summary."""
    day = summary.date.strftime("%d.%m.%Y")
    spent = format_amount(summary.total_spent, summary.currency)
    msg = f"<b>🗓 Daily Summary: {day}\n\n💸 Spent: {spent}</b>\n"

    if summary.transactions:
        msg += "\n"
        for tx in summary.transactions:
            name = html.escape(tx.counterparty_name)
            msg += f"• {name}: -{format_amount(tx.amount, tx.currency)}\n"

    if dashboard_url:
        url = html.escape(f"{dashboard_url}&from=now-1d&to=now")
        msg += f'\n📊 <a href="{url}">Dashboard</a>'

    return msg


def format_monthly(summary: MonthlySummary, *, dashboard_url: str = "") -> str:
    """HTML message for a monthly summary."""
    msg = f"<b>🗓 Monthly Summary: {summary.month:02d}.{summary.year}\n\n"
    spent = format_amount(summary.total_spent, summary.currency)
    received = format_amount(summary.total_received, summary.currency)
    msg += f"💸 Spent: {spent}\n💰 Received: {received}</b>\n"

    if summary.top_counterparties:
        msg += "\n🏪 Top spending:\n"
        for cp in summary.top_counterparties:
            name = html.escape(cp.name)
            msg += f"• {name}: -{format_amount(cp.total, summary.currency)}\n"

    if dashboard_url:
        start, end = summary.start, summary.end
        url = html.escape(
            f"{dashboard_url}&from={_epoch_ms(start.year, start.month, 1)}"
            f"&to={_epoch_ms(end.year, end.month, 1)}"
        )
        msg += f'\n📊 <a href="{url}">Dashboard</a>'

    return msg


class TelegramNotifier:
    """Sends summaries to one Telegram chat through the Bot API."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        dashboard_url: str = "",
        base_url: str = TELEGRAM_API_BASE_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the notifier.

        Args:
            bot_token: Telegram bot token
            chat_id: Target chat id
            dashboard_url: Optional dashboard link appended to messages
            base_url: Bot API base URL
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests inject a mock)
            sleep: Backoff sleep function
        """
        if not bot_token or not chat_id:
            raise ValueError("Telegram bot token and chat id are required.")
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._dashboard_url = dashboard_url
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._sleep = sleep

    def send_daily_summary(self, summary: DailySummary) -> NotificationResult:
        return self.send_message(
            format_daily(summary, dashboard_url=self._dashboard_url)
        )

    def send_monthly_summary(self, summary: MonthlySummary) -> NotificationResult:
        return self.send_message(
            format_monthly(summary, dashboard_url=self._dashboard_url)
        )

    def send_message(self, text: str, max_retries: int = 3) -> NotificationResult:
        """Send an HTML message.

        Args:
            text: HTML message body
            max_retries: Maximum attempts on failure

        Returns:
            NotificationResult with success status and message id
        """
        payload: dict[str, Any] = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "link_preview_options": {"is_disabled": True},
        }
        url = f"{self._base_url}/bot{self._bot_token}/sendMessage"
        last_error = "no attempts made"
        attempts = 0

        for attempt in range(max_retries):
            attempts += 1
            try:
                with httpx.Client(
                    timeout=self._timeout_seconds, transport=self._transport
                ) as client:
                    response = client.post(url, json=payload)
                data = response.json()
                if response.is_success and data.get("ok"):
                    result = data.get("result") or {}
                    return NotificationResult(
                        success=True,
                        message_id=result.get("message_id"),
                        error=None,
                    )
                last_error = (
                    f"Telegram API error ({response.status_code}): "
                    f"{data.get('description', response.text)}"
                )
                # Client errors other than rate limiting will not succeed on retry.
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    break
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e)

            if attempt < max_retries - 1:
                # Exponential backoff: 1s, 2s, 4s
                self._sleep(2**attempt)

        return NotificationResult(
            success=False,
            message_id=None,
            error=f"Failed after {attempts} attempt(s): {last_error}",
        )
