from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Literal

import loguru
from loguru import logger

from bankfeed.adapters.clients.enable_banking import EnableBankingClient
from bankfeed.adapters.db.facade import DB
from bankfeed.core.config import BankConfig, IngestSettings
from bankfeed.core.errors import AllBanksFailedError
from bankfeed.tools.ingest.planner import FetchPlanner
from bankfeed.tools.ingest.reader import TransactionReader

BankStatus = Literal["ok", "skipped", "failed"]

ClientFactory = Callable[[BankConfig], EnableBankingClient]


@dataclass
class BankIngestionResult:
    """Outcome of ingesting one bank."""

    bank_id: str
    bank_name: str
    status: BankStatus = "ok"
    fetched: int = 0
    inserted: int = 0
    accounts: int = 0
    page_limit_hit: bool = False
    date_from: date | None = None
    date_to: date | None = None
    reason: str | None = None
    error: str | None = None

    @property
    def duplicates(self) -> int:
        return self.fetched - self.inserted


@dataclass
class IngestionSummary:
    """Per-bank results of one ingestion run, keyed by bank id."""

    results: dict[str, BankIngestionResult] = field(default_factory=dict)

    def __getitem__(self, bank_id: str) -> BankIngestionResult:
        return self.results[bank_id]

    @property
    def failed(self) -> list[BankIngestionResult]:
        return [r for r in self.results.values() if r.status == "failed"]

    @property
    def total_fetched(self) -> int:
        return sum(r.fetched for r in self.results.values())

    @property
    def total_inserted(self) -> int:
        return sum(r.inserted for r in self.results.values())


class IngestLogger:
    """Handles all logging for IngestTool with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def bank_skipped(self, bank: BankConfig, reason: str) -> None:
        self._logger.bind(bank=bank.id, reason=reason).warning(
            "[{}] Skipping {}: {}", bank.name, bank.id, reason
        )

    def fetch_start(self, bank: BankConfig, date_from: date, date_to: date) -> None:
        self._logger.bind(
            bank=bank.id, date_from=date_from.isoformat(), date_to=date_to.isoformat()
        ).info(
            "[{}] Fetching transactions from {} to {}", bank.name, date_from, date_to
        )

    def bank_complete(self, bank: BankConfig, result: BankIngestionResult) -> None:
        self._logger.bind(
            bank=bank.id,
            fetched=result.fetched,
            inserted=result.inserted,
            accounts=result.accounts,
        ).info(
            "[{}] Fetched {} transactions, {} new",
            bank.name,
            result.fetched,
            result.inserted,
        )

    def bank_failed(self, bank: BankConfig, error: Exception) -> None:
        self._logger.bind(bank=bank.id, error_type=type(error).__name__).error(
            "[{}] Ingestion failed: {}", bank.name, error
        )

    def run_summary(self, summary: IngestionSummary) -> None:
        self._logger.bind(
            banks=len(summary.results),
            failed=len(summary.failed),
            fetched=summary.total_fetched,
            inserted=summary.total_inserted,
        ).info(
            "Ingestion finished: {} banks, {} failed, {} fetched, {} new",
            len(summary.results),
            len(summary.failed),
            summary.total_fetched,
            summary.total_inserted,
        )


class IngestTool:
    """
    Ingests transactions for every configured bank into the store.

    Banks are processed one after another. A failure in one bank is logged
    and recorded while the others continue; only a run where every bank
    failed raises.
    """

    def __init__(
        self,
        banks: Sequence[BankConfig],
        db: DB,
        *,
        settings: IngestSettings | None = None,
        client_factory: ClientFactory | None = None,
        today: date | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the ingest tool.

        Args:
            banks: Bank configurations to ingest, in order
            db: Store for sessions and transactions
            settings: Lookback / overlap / page limit / timeout settings
            client_factory: Builds the API client for a bank (tests inject fakes)
            today: Fixed run date; defaults to the current UTC date per run
            now: Clock used for session expiry checks
        """
        self._banks = list(banks)
        self._db = db
        self._settings = settings or IngestSettings()
        self._client_factory = client_factory or self._default_client_factory
        self._today = today
        self._now = now or (lambda: datetime.now(UTC))
        self._logger = IngestLogger()

    def _default_client_factory(self, bank: BankConfig) -> EnableBankingClient:
        return EnableBankingClient.for_bank(
            bank, timeout_seconds=self._settings.request_timeout_seconds
        )

    async def run_ingestion(
        self, *, force_full_lookback: bool = False
    ) -> IngestionSummary:
        """
        Run one ingestion pass over all configured banks.

        Args:
            force_full_lookback: Ignore stored history and fetch the maximum
                lookback window for every bank

        Returns:
            IngestionSummary with one result per bank

        Raises:
            AllBanksFailedError: If every configured bank failed
        """
        today = self._today or self._now().date()
        planner = FetchPlanner(
            self._db,
            today=today,
            max_lookback_days=self._settings.max_lookback_days,
            overlap_days=self._settings.overlap_days,
        )

        summary = IngestionSummary()
        for bank in self._banks:
            result = BankIngestionResult(bank_id=bank.id, bank_name=bank.name)
            summary.results[bank.id] = result
            try:
                await self._ingest_bank(
                    bank,
                    planner,
                    result,
                    force_full_lookback=force_full_lookback,
                )
            except Exception as e:
                result.status = "failed"
                result.error = str(e)
                self._logger.bank_failed(bank, e)

        self._logger.run_summary(summary)

        if self._banks and len(summary.failed) == len(self._banks):
            raise AllBanksFailedError([bank.name for bank in self._banks])
        return summary

    async def _ingest_bank(
        self,
        bank: BankConfig,
        planner: FetchPlanner,
        result: BankIngestionResult,
        *,
        force_full_lookback: bool,
    ) -> None:
        session = self._db.get_session(bank.id)
        if session is None:
            self._skip(bank, result, f"no session, run 'auth {bank.id}' first")
            return
        if session.is_expired(self._now()):
            self._skip(bank, result, f"session expired, run 'auth {bank.id}'")
            return
        if not session.accounts:
            self._skip(bank, result, "session has no authorized accounts")
            return

        date_to = planner.date_to
        date_from = planner.plan_window(bank.id, force_full_lookback)
        result.date_from = date_from
        result.date_to = date_to
        self._logger.fetch_start(bank, date_from, date_to)

        reader = TransactionReader(
            self._client_factory(bank),
            source=bank.id,
            max_pages=self._settings.max_pages,
        )
        for account in session.accounts:
            fetch = await reader.fetch_with_date_correction(
                account.uid, date_from.isoformat(), date_to.isoformat()
            )
            result.accounts += 1
            result.fetched += len(fetch.transactions)
            result.page_limit_hit = result.page_limit_hit or fetch.page_limit_hit
            for txn in fetch.transactions:
                if self._db.insert_transaction(txn):
                    result.inserted += 1

        self._logger.bank_complete(bank, result)

    def _skip(self, bank: BankConfig, result: BankIngestionResult, reason: str) -> None:
        result.status = "skipped"
        result.reason = reason
        self._logger.bank_skipped(bank, reason)
