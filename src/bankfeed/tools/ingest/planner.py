from __future__ import annotations

from datetime import date, timedelta
from typing import Protocol

from bankfeed.core.config import DEFAULT_MAX_LOOKBACK_DAYS, DEFAULT_OVERLAP_DAYS


class LatestDateStore(Protocol):
    def find_latest_date(self, bank_id: str) -> date | None: ...


class FetchPlanner:
    """Chooses the start of the fetch window for each bank.

    `today` is fixed at construction so every bank and account in one run
    shares the same `date_to`.
    """

    def __init__(
        self,
        store: LatestDateStore,
        *,
        today: date,
        max_lookback_days: int = DEFAULT_MAX_LOOKBACK_DAYS,
        overlap_days: int = DEFAULT_OVERLAP_DAYS,
    ) -> None:
        self._store = store
        self._today = today
        self._max_lookback_days = max_lookback_days
        self._overlap_days = overlap_days

    @property
    def date_to(self) -> date:
        return self._today

    def full_lookback_start(self) -> date:
        return self._today - timedelta(days=self._max_lookback_days)

    def plan_window(self, bank_id: str, force_full_lookback: bool = False) -> date:
        """Return date_from for the bank.

        Anchors on the most recent stored transaction minus the overlap
        margin, which re-reads late-booked and backdated entries. Falls back
        to the full lookback when forced or when the bank has no history.
        """
        if force_full_lookback:
            return self.full_lookback_start()

        latest = self._store.find_latest_date(bank_id)
        if latest is None:
            return self.full_lookback_start()
        return latest - timedelta(days=self._overlap_days)
