from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime
import os
import sys

from dotenv import load_dotenv
from loguru import logger
import typer

from bankfeed.adapters.clients.enable_banking import (
    EnableBankingClient,
    EnableBankingClientError,
)
from bankfeed.adapters.db.facade import DB, open_db
from bankfeed.core.config import (
    DEFAULT_DATABASE_URL,
    AppConfig,
    load_app_config_from_env,
)
from bankfeed.core.errors import AllBanksFailedError, ConfigError
from bankfeed.jobs.summary import (
    TelegramNotifier,
    format_daily,
    format_monthly,
    get_daily_summary,
    get_monthly_summary,
    previous_month,
)
from bankfeed.services.auth_flow import AuthFlowError, run_auth_flow
from bankfeed.tools.ingest import IngestionSummary, IngestTool

# Load environment variables from .env
load_dotenv()

app = typer.Typer(
    help="Bankfeed: bank transaction ingestion and spending summaries.",
    no_args_is_help=True,
)


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=level,
    )


def _load_config() -> AppConfig:
    try:
        config = load_app_config_from_env()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1) from None
    _configure_logging(config.log_level)
    return config


def _today() -> date:
    return datetime.now(UTC).date()


def _echo_ingestion(summary: IngestionSummary) -> None:
    for result in summary.results.values():
        if result.status == "ok":
            line = (
                f"  {result.bank_name}: {result.fetched} fetched, "
                f"{result.inserted} new ({result.date_from} to {result.date_to})"
            )
            if result.page_limit_hit:
                line += " [page limit reached]"
        elif result.status == "skipped":
            line = f"  {result.bank_name}: skipped ({result.reason})"
        else:
            line = f"  {result.bank_name}: FAILED ({result.error})"
        typer.echo(line)
    typer.echo(
        f"Total: {summary.total_fetched} fetched, {summary.total_inserted} new"
    )


def send_summaries(config: AppConfig, db: DB, today: date) -> None:
    """Deliver today's summary and, on the 1st, last month's summary."""
    if not config.telegram_enabled:
        logger.info("Telegram not configured, skipping summaries")
        return

    notifier = TelegramNotifier(
        config.telegram_bot_token or "",
        config.telegram_chat_id or "",
        dashboard_url=config.dashboard_url,
    )

    daily = get_daily_summary(db, today)
    if daily is None:
        logger.info("No spending on {}, daily summary not sent", today)
    else:
        result = notifier.send_daily_summary(daily)
        if not result.success:
            logger.warning("Daily summary not delivered: {}", result.error)

    if today.day != 1:
        return
    year, month = previous_month(today)
    monthly = get_monthly_summary(db, year, month)
    if monthly is None:
        logger.info(
            "No transactions in {}-{:02d}, monthly summary not sent", year, month
        )
        return
    result = notifier.send_monthly_summary(monthly)
    if not result.success:
        logger.warning("Monthly summary not delivered: {}", result.error)


@app.command("fetch")
def fetch(
    full: bool = typer.Option(
        False, "--full", help="Ignore stored history and fetch the full lookback"
    ),
) -> None:
    """Fetch new transactions for every configured bank and send summaries."""
    config = _load_config()
    with open_db(config.database_url) as db:
        tool = IngestTool(config.banks, db, settings=config.ingest)
        try:
            ingestion = asyncio.run(tool.run_ingestion(force_full_lookback=full))
        except AllBanksFailedError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1) from None

        _echo_ingestion(ingestion)
        send_summaries(config, db, _today())


@app.command("auth")
def auth(bank_id: str = typer.Argument(..., help="Configured bank id")) -> None:
    """Authorize access to a bank and store the session."""
    config = _load_config()
    try:
        bank = config.find_bank(bank_id)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    def prompt(url: str) -> str:
        typer.echo(f"Open this URL in your browser to authorize {bank.name}:\n")
        typer.echo(url)
        typer.echo("")
        return typer.prompt("Paste the URL you were redirected to")

    client = EnableBankingClient.for_bank(
        bank, timeout_seconds=config.ingest.request_timeout_seconds
    )
    with open_db(config.database_url) as db:
        try:
            record = asyncio.run(run_auth_flow(bank, client, db, prompt))
        except (AuthFlowError, EnableBankingClientError) as e:
            typer.echo(f"Authorization failed: {e}", err=True)
            raise typer.Exit(1) from None

    typer.echo(
        f"Session saved for {bank.name}: {len(record.accounts)} account(s), "
        f"valid until {record.valid_until.date().isoformat()}"
    )


@app.command("init-db")
def init_db(
    url: str | None = typer.Option(
        None, help="Database URL (defaults to DATABASE_URL)"
    ),
) -> None:
    """Create the database schema."""
    database_url = url or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL
    with open_db(database_url):
        pass
    typer.echo(f"Schema ready at {database_url}")


@app.command("summary")
def summary(
    day: str | None = typer.Option(None, help="Day to summarize (YYYY-MM-DD)"),
    month: str | None = typer.Option(None, help="Month to summarize (YYYY-MM)"),
    send: bool = typer.Option(False, "--send", help="Also deliver via Telegram"),
) -> None:
    """Print a daily (default: today) or monthly spending summary."""
    if day and month:
        typer.echo("Use either --day or --month, not both.", err=True)
        raise typer.Exit(2)

    config = _load_config()
    notifier = None
    if send:
        if not config.telegram_enabled:
            typer.echo("Telegram is not configured.", err=True)
            raise typer.Exit(1)
        notifier = TelegramNotifier(
            config.telegram_bot_token or "",
            config.telegram_chat_id or "",
            dashboard_url=config.dashboard_url,
        )

    try:
        if month:
            target = datetime.strptime(month, "%Y-%m").date()
        else:
            target = date.fromisoformat(day) if day else _today()
    except ValueError:
        typer.echo("Invalid date; expected YYYY-MM-DD or YYYY-MM.", err=True)
        raise typer.Exit(2) from None

    with open_db(config.database_url) as db:
        if month:
            monthly = get_monthly_summary(db, target.year, target.month)
            if monthly is None:
                typer.echo(f"No transactions in {month}.")
                return
            typer.echo(format_monthly(monthly, dashboard_url=config.dashboard_url))
            result = notifier.send_monthly_summary(monthly) if notifier else None
        else:
            daily = get_daily_summary(db, target)
            if daily is None:
                typer.echo(f"No spending on {target.isoformat()}.")
                return
            typer.echo(format_daily(daily, dashboard_url=config.dashboard_url))
            result = notifier.send_daily_summary(daily) if notifier else None

    if result is not None and not result.success:
        typer.echo(f"Delivery failed: {result.error}", err=True)
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
