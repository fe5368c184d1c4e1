from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
from typing import Any, Literal, Self, cast

import httpx
import jwt
from pydantic import BaseModel, Field

from bankfeed.core.config import DEFAULT_REQUEST_TIMEOUT_SECONDS, BankConfig
from bankfeed.core.errors import BankfeedError

EB_API_BASE_URL = "https://api.enablebanking.com"
EB_JWT_ISSUER = "enablebanking.com"
EB_JWT_AUDIENCE = "api.enablebanking.com"
EB_JWT_TTL = timedelta(hours=1)
EB_SESSION_VALIDITY = timedelta(days=180)

CreditDebitIndicator = Literal["DBIT", "CRDT"]


class EnableBankingClientError(BankfeedError):
    """Error raised for a failed Enable Banking API call.

    `status_code` is None when no HTTP response was received (timeout or
    network failure).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def generate_jwt(app_id: str, private_key: str, *, now: datetime | None = None) -> str:
    """Sign a short-lived RS256 token identifying the application."""
    issued_at = now or datetime.now(UTC)
    payload = {
        "iss": EB_JWT_ISSUER,
        "aud": EB_JWT_AUDIENCE,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + EB_JWT_TTL).timestamp()),
    }
    return jwt.encode(
        payload,
        private_key,
        algorithm="RS256",
        headers={"kid": app_id, "typ": "JWT"},
    )


class EnableBankingBaseModel(BaseModel):
    """Shared base for Enable Banking response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class AmountModel(EnableBankingBaseModel):
    amount: str
    currency: str


class PartyModel(EnableBankingBaseModel):
    name: str | None = None


class AccountReferenceModel(EnableBankingBaseModel):
    iban: str | None = None
    other: dict[str, Any] | None = None

    @property
    def identifier(self) -> str | None:
        if self.iban:
            return self.iban
        if self.other and self.other.get("identification"):
            return str(self.other["identification"])
        return None


class RawTransactionRecord(EnableBankingBaseModel):
    """One transaction as returned by the account transactions listing."""

    entry_reference: str | None = None
    transaction_amount: AmountModel
    credit_debit_indicator: CreditDebitIndicator
    status: str = ""
    booking_date: str | None = None
    value_date: str | None = None
    transaction_date: str | None = None
    creditor: PartyModel | None = None
    debtor: PartyModel | None = None
    creditor_account: AccountReferenceModel | None = None
    debtor_account: AccountReferenceModel | None = None
    remittance_information: list[str] | None = None
    merchant_category_code: str | None = None
    bank_transaction_code: Any = None


class TransactionsPage(EnableBankingBaseModel):
    """One page of the listing.

    Records stay as raw dicts so a single malformed record can be dropped
    without failing the whole page.
    """

    transactions: list[dict[str, Any]] = Field(default_factory=list)
    continuation_key: str | None = None


class AuthResponse(EnableBankingBaseModel):
    url: str
    authorization_id: str | None = None


class SessionAccountModel(EnableBankingBaseModel):
    uid: str
    iban: str | None = None
    account_id: AccountReferenceModel | None = None

    @property
    def account_number(self) -> str | None:
        if self.iban:
            return self.iban
        if self.account_id is not None:
            return self.account_id.identifier
        return None


class SessionResponse(EnableBankingBaseModel):
    session_id: str
    accounts: list[SessionAccountModel] = Field(default_factory=list)


class EnableBankingClient:
    """Authenticated transport for the Enable Banking API, one per bank."""

    def __init__(
        self,
        *,
        app_id: str,
        private_key: str,
        base_url: str = EB_API_BASE_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._app_id = app_id
        self._private_key = private_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def for_bank(
        cls,
        bank: BankConfig,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> EnableBankingClient:
        return cls(
            app_id=bank.app_id,
            private_key=bank.private_key,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        # Tokens are short-lived, so a new one is signed for every request.
        token = generate_jwt(self._app_id, self._private_key)
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _parse_json_response(self, body: str, *, what: str) -> dict[str, Any]:
        """Parse a JSON object from a response body.

        Raises:
            EnableBankingClientError: If the body is not a JSON object
        """
        try:
            parsed = json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            raise EnableBankingClientError(
                f"Failed to parse {what} response as JSON: {e}: {body}",
                body=body,
            ) from e
        if not isinstance(parsed, dict):
            raise EnableBankingClientError(
                f"Unexpected {what} response shape: {body}", body=body
            )
        return cast(dict[str, Any], parsed)

    async def send(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send one authenticated request and return the parsed JSON body.

        Raises:
            EnableBankingClientError: On non-2xx status (with status code and
                body), timeout, or network failure
        """
        headers = self._auth_headers()
        if extra_headers:
            headers.update(extra_headers)
        what = f"{method} {path}"

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    json=body,
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise EnableBankingClientError(
                f"API {what} timed out after {self._timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise EnableBankingClientError(
                f"Network error calling API {what}: {e}"
            ) from e

        if not response.is_success:
            raise EnableBankingClientError(
                f"API {what} failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        return self._parse_json_response(response.text, what=what)

    # High-level APIs -----------------------------------------------------

    async def list_transactions_page(
        self,
        account_uid: str,
        *,
        date_from: str,
        date_to: str,
        continuation_key: str | None = None,
    ) -> TransactionsPage:
        """Fetch one page of an account's transaction listing."""
        params = {"date_from": date_from, "date_to": date_to}
        if continuation_key:
            params["continuation_key"] = continuation_key
        data = await self.send(
            "GET", f"/accounts/{account_uid}/transactions", params=params
        )
        return TransactionsPage.parse(data)

    async def start_auth(
        self,
        *,
        aspsp_name: str,
        aspsp_country: str,
        redirect_url: str,
        valid_until: datetime,
        state: str = "auth",
    ) -> AuthResponse:
        """Start user authorization and return the bank's consent URL."""
        payload: dict[str, Any] = {
            "access": {"valid_until": valid_until.isoformat()},
            "aspsp": {"name": aspsp_name, "country": aspsp_country},
            "state": state,
            "redirect_url": redirect_url,
            "psu_type": "personal",
        }
        return AuthResponse.parse(await self.send("POST", "/auth", body=payload))

    async def create_session(self, code: str) -> SessionResponse:
        """Exchange an authorization code for a session."""
        data = await self.send("POST", "/sessions", body={"code": code})
        return SessionResponse.parse(data)
