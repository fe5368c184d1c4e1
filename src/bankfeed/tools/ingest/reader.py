from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import json
import re
from typing import Any

import loguru
from loguru import logger
from pydantic import ValidationError

from bankfeed.adapters.clients.enable_banking import (
    EnableBankingClient,
    EnableBankingClientError,
    RawTransactionRecord,
)
from bankfeed.core.config import DEFAULT_MAX_PAGES
from bankfeed.models.transaction import NormalizedTransaction
from bankfeed.tools.ingest.identity import normalize_record

WRONG_PERIOD_STATUS = 422
WRONG_PERIOD_ERROR = "WRONG_TRANSACTIONS_PERIOD"

_DATE_FROM_IN_BODY = re.compile(r'"date_from"\s*:\s*"(\d{4}-\d{2}-\d{2})"')


@dataclass
class FetchResult:
    """Everything read for one account over one date window."""

    transactions: list[NormalizedTransaction] = field(default_factory=list)
    pages_fetched: int = 0
    page_limit_hit: bool = False
    dropped: int = 0
    date_from: str = ""


def _valid_iso_date(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    try:
        date.fromisoformat(value)
    except ValueError:
        return None
    return value


def corrected_date_from(error: EnableBankingClientError) -> str | None:
    """Return the earliest allowed date_from embedded in a wrong-period error.

    Only 422 / WRONG_TRANSACTIONS_PERIOD responses qualify; any other failure
    returns None.
    """
    try:
        payload = json.loads(error.body) if error.body else None
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, dict):
        is_wrong_period = (
            error.status_code == WRONG_PERIOD_STATUS
            or payload.get("error") == WRONG_PERIOD_ERROR
        )
        if not is_wrong_period:
            return None
        detail = payload.get("detail")
        if isinstance(detail, dict):
            corrected = _valid_iso_date(detail.get("date_from"))
            if corrected:
                return corrected
        return _valid_iso_date(payload.get("date_from"))

    if error.status_code != WRONG_PERIOD_STATUS:
        return None
    match = _DATE_FROM_IN_BODY.search(error.body)
    return _valid_iso_date(match.group(1)) if match else None


class ReaderLogger:
    """Handles all logging for TransactionReader with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def page_start(self, account_uid: str, page_num: int, cursor: str | None) -> None:
        cursor_label = cursor or "initial"
        self._logger.bind(
            account=account_uid, page=page_num, cursor=cursor_label
        ).debug(
            "Fetching page {} for account {} (cursor: {})",
            page_num,
            account_uid,
            cursor_label,
        )

    def page_complete(
        self, account_uid: str, page_num: int, record_count: int
    ) -> None:
        self._logger.bind(
            account=account_uid, page=page_num, records=record_count
        ).debug(
            "Page {} for account {}: {} records", page_num, account_uid, record_count
        )

    def record_dropped(self, account_uid: str, reason: str) -> None:
        self._logger.bind(account=account_uid, reason=reason).warning(
            "Dropping transaction record for account {}: {}", account_uid, reason
        )

    def page_limit_hit(
        self, account_uid: str, max_pages: int, record_count: int
    ) -> None:
        self._logger.bind(
            account=account_uid, max_pages=max_pages, records=record_count
        ).warning(
            "Page limit of {} reached for account {}; returning {} records so far",
            max_pages,
            account_uid,
            record_count,
        )

    def fetch_summary(self, account_uid: str, result: FetchResult) -> None:
        self._logger.bind(
            account=account_uid,
            records=len(result.transactions),
            pages=result.pages_fetched,
            dropped=result.dropped,
        ).info(
            "Fetched {} transactions for account {} across {} pages ({} dropped)",
            len(result.transactions),
            account_uid,
            result.pages_fetched,
            result.dropped,
        )

    def date_correction(
        self, account_uid: str, original: str, corrected: str
    ) -> None:
        self._logger.bind(
            account=account_uid, date_from=original, corrected_date_from=corrected
        ).warning(
            "date_from {} rejected for account {}, retrying once from {}",
            original,
            account_uid,
            corrected,
        )


class TransactionReader:
    """
    Reads an account's transaction listing page by page and normalizes every
    record into a NormalizedTransaction tagged with the bank's source id.
    """

    def __init__(
        self,
        client: EnableBankingClient,
        *,
        source: str,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        """
        Initialize the reader.

        Args:
            client: Authenticated Enable Banking client for the bank
            source: Bank configuration id stamped on every transaction
            max_pages: Hard ceiling on pages requested per fetch
        """
        self._client = client
        self._source = source
        self._max_pages = max_pages
        self._logger = ReaderLogger()

    async def fetch_all_transactions(
        self,
        account_uid: str,
        date_from: str,
        date_to: str,
    ) -> FetchResult:
        """
        Fetch every page of the listing for one account and window.

        A page with no records but a continuation key is not the end of the
        stream; only a missing key (or the page ceiling) stops the loop.

        Raises:
            EnableBankingClientError: On any failed page request
        """
        result = FetchResult(date_from=date_from)
        cursor: str | None = None

        while True:
            if result.pages_fetched >= self._max_pages:
                result.page_limit_hit = True
                self._logger.page_limit_hit(
                    account_uid, self._max_pages, len(result.transactions)
                )
                break

            self._logger.page_start(account_uid, result.pages_fetched + 1, cursor)
            page = await self._client.list_transactions_page(
                account_uid,
                date_from=date_from,
                date_to=date_to,
                continuation_key=cursor,
            )
            result.pages_fetched += 1
            self._logger.page_complete(
                account_uid, result.pages_fetched, len(page.transactions)
            )

            for item in page.transactions:
                txn = self._normalize(account_uid, item)
                if txn is None:
                    result.dropped += 1
                    continue
                result.transactions.append(txn)

            if not page.continuation_key:
                break
            cursor = page.continuation_key

        self._logger.fetch_summary(account_uid, result)
        return result

    async def fetch_with_date_correction(
        self,
        account_uid: str,
        date_from: str,
        date_to: str,
    ) -> FetchResult:
        """
        Fetch, retrying once from the API's corrected date_from when the
        requested window reaches too far into the past.

        The retry is single-shot: if it fails too, its error propagates.
        """
        try:
            return await self.fetch_all_transactions(account_uid, date_from, date_to)
        except EnableBankingClientError as e:
            corrected = corrected_date_from(e)
            if corrected is None:
                raise
            self._logger.date_correction(account_uid, date_from, corrected)

        return await self.fetch_all_transactions(account_uid, corrected, date_to)

    def _normalize(
        self, account_uid: str, item: dict[str, Any]
    ) -> NormalizedTransaction | None:
        try:
            record = RawTransactionRecord.parse(item)
        except ValidationError as e:
            self._logger.record_dropped(
                account_uid, f"invalid record ({e.error_count()} errors)"
            )
            return None

        txn = normalize_record(record, source=self._source)
        if txn is None:
            self._logger.record_dropped(
                account_uid,
                "missing or unparseable date/amount "
                f"(value_date={record.value_date!r}, "
                f"booking_date={record.booking_date!r}, "
                f"amount={record.transaction_amount.amount!r})",
            )
        return txn
