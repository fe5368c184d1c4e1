from __future__ import annotations


class BankfeedError(Exception):
    """Base error for bankfeed failures."""


class ConfigError(BankfeedError):
    """Raised when configuration is missing or invalid."""


class AllBanksFailedError(BankfeedError):
    """Raised when every configured bank failed during one ingestion run."""

    def __init__(self, failed_banks: list[str]) -> None:
        self.failed_banks = list(failed_banks)
        super().__init__(f"All banks failed: {', '.join(self.failed_banks)}")
