"""Interactive bank authorization producing a stored session."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from urllib.parse import parse_qs, urlparse

import loguru
from loguru import logger

from bankfeed.adapters.clients.enable_banking import (
    EB_SESSION_VALIDITY,
    EnableBankingClient,
)
from bankfeed.adapters.db.facade import DB
from bankfeed.core.config import BankConfig
from bankfeed.core.errors import BankfeedError
from bankfeed.models.session import SessionAccount, SessionRecord

# Receives the consent URL, returns the redirect URL the browser landed on.
PromptFn = Callable[[str], str]


class AuthFlowError(BankfeedError):
    """Raised when the authorization flow cannot produce a usable session."""


class AuthFlowLogger:
    """Handles all logging for the authorization flow."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def started(self, bank: BankConfig, valid_until: datetime) -> None:
        self._logger.bind(bank=bank.id, valid_until=valid_until.isoformat()).info(
            "[{}] Starting authorization, access valid until {}",
            bank.name,
            valid_until.date(),
        )

    def session_saved(self, bank: BankConfig, record: SessionRecord) -> None:
        self._logger.bind(bank=bank.id, accounts=len(record.accounts)).info(
            "[{}] Session saved with {} account(s)", bank.name, len(record.accounts)
        )


def extract_auth_code(redirect_url: str) -> str:
    """Pull the `code` query parameter out of a pasted redirect URL."""
    query = parse_qs(urlparse(redirect_url.strip()).query)
    codes = query.get("code")
    if not codes or not codes[0]:
        raise AuthFlowError("No authorization code found in redirect URL.")
    return codes[0]


async def run_auth_flow(
    bank: BankConfig,
    client: EnableBankingClient,
    db: DB,
    prompt: PromptFn,
    now: datetime | None = None,
) -> SessionRecord:
    """
    Authorize access to a bank and persist the resulting session.

    Args:
        bank: Bank to authorize
        client: API client signed with the bank's application credentials
        db: Store receiving the session
        prompt: Shows the consent URL and returns the redirect URL
        now: Clock override for the access validity window

    Returns:
        The stored SessionRecord

    Raises:
        AuthFlowError: If no code is supplied or the session has no accounts
        EnableBankingClientError: If an API call fails
    """
    auth_logger = AuthFlowLogger()
    valid_until = (now or datetime.now(UTC)) + EB_SESSION_VALIDITY
    auth_logger.started(bank, valid_until)

    auth = await client.start_auth(
        aspsp_name=bank.name,
        aspsp_country=bank.country,
        redirect_url=bank.redirect_url,
        valid_until=valid_until,
    )
    code = extract_auth_code(prompt(auth.url))

    session = await client.create_session(code)
    if not session.accounts:
        raise AuthFlowError(f"No accounts were authorized for {bank.name}.")

    record = SessionRecord(
        bank_id=bank.id,
        session_id=session.session_id,
        valid_until=valid_until,
        accounts=[
            SessionAccount(uid=account.uid, account_number=account.account_number)
            for account in session.accounts
        ],
    )
    db.save_session(record)
    auth_logger.session_saved(bank, record)
    return record
