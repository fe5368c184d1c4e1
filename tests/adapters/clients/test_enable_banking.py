from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import json
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import httpx
import jwt
import pytest

from bankfeed.adapters.clients.enable_banking import (
    EnableBankingClient,
    EnableBankingClientError,
    RawTransactionRecord,
    generate_jwt,
)
from bankfeed.core.config import BankConfig

# Helper functions


def create_key_pair() -> tuple[str, bytes]:
    """Generate an RSA private key (PEM text) and its public key (PEM bytes)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


PRIVATE_KEY, PUBLIC_KEY = create_key_pair()


class RecordingHandler:
    """MockTransport handler that records requests and replies from a queue."""

    def __init__(self, responses: list[httpx.Response]) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responses.pop(0)


def create_client(handler: Any) -> EnableBankingClient:
    return EnableBankingClient(
        app_id="app-123",
        private_key=PRIVATE_KEY,
        transport=httpx.MockTransport(handler),
    )


def bearer_token(request: httpx.Request) -> str:
    return request.headers["Authorization"].removeprefix("Bearer ")


class TestGenerateJwt:
    def test_token_is_rs256_signed_with_app_id_as_kid(self) -> None:
        # act
        token = generate_jwt("app-123", PRIVATE_KEY)

        # assert
        header = jwt.get_unverified_header(token)
        assert header["alg"] == "RS256"
        assert header["kid"] == "app-123"
        claims = jwt.decode(
            token,
            PUBLIC_KEY,
            algorithms=["RS256"],
            audience="api.enablebanking.com",
            issuer="enablebanking.com",
        )
        assert claims["exp"] - claims["iat"] == 3600

    def test_issued_at_follows_clock(self) -> None:
        # input
        now = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)

        # act
        token = generate_jwt("app-123", PRIVATE_KEY, now=now)

        # assert
        claims = jwt.decode(
            token,
            PUBLIC_KEY,
            algorithms=["RS256"],
            audience="api.enablebanking.com",
            options={"verify_exp": False},
        )
        assert claims["iat"] == int(now.timestamp())


class TestSend:
    def test_signs_every_request(self) -> None:
        # setup
        handler = RecordingHandler(
            [httpx.Response(200, json={}), httpx.Response(200, json={})]
        )
        client = create_client(handler)

        # act
        asyncio.run(client.send("GET", "/aspsps"))
        asyncio.run(client.send("GET", "/aspsps"))

        # assert
        assert len(handler.requests) == 2
        for request in handler.requests:
            header = jwt.get_unverified_header(bearer_token(request))
            assert header["kid"] == "app-123"
            assert request.url.host == "api.enablebanking.com"

    def test_non_success_status_raises_with_status_and_body(self) -> None:
        # setup
        body = {"error": "WRONG_TRANSACTIONS_PERIOD", "detail": {"date_from": "x"}}
        handler = RecordingHandler([httpx.Response(422, json=body)])
        client = create_client(handler)

        # act & assert
        with pytest.raises(EnableBankingClientError) as exc_info:
            asyncio.run(client.send("GET", "/accounts/acc-1/transactions"))
        assert exc_info.value.status_code == 422
        assert json.loads(exc_info.value.body) == body
        assert "(422)" in str(exc_info.value)

    def test_timeout_raises_without_status(self) -> None:
        # setup
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = create_client(handler)

        # act & assert
        with pytest.raises(EnableBankingClientError, match="timed out") as exc_info:
            asyncio.run(client.send("GET", "/aspsps"))
        assert exc_info.value.status_code is None

    def test_network_error_raises_without_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = create_client(handler)

        with pytest.raises(EnableBankingClientError, match="Network error"):
            asyncio.run(client.send("GET", "/aspsps"))

    def test_non_json_body_raises(self) -> None:
        handler = RecordingHandler([httpx.Response(200, text="<html>")])
        client = create_client(handler)

        with pytest.raises(EnableBankingClientError, match="parse"):
            asyncio.run(client.send("GET", "/aspsps"))


class TestListTransactionsPage:
    def test_passes_window_and_continuation_key(self) -> None:
        # setup
        handler = RecordingHandler(
            [
                httpx.Response(
                    200,
                    json={
                        "transactions": [{"entry_reference": "R1"}],
                        "continuation_key": "next-1",
                    },
                )
            ]
        )
        client = create_client(handler)

        # act
        output = asyncio.run(
            client.list_transactions_page(
                "acc-1",
                date_from="2025-06-01",
                date_to="2025-06-15",
                continuation_key="cur-0",
            )
        )

        # assert
        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/accounts/acc-1/transactions"
        assert dict(request.url.params) == {
            "date_from": "2025-06-01",
            "date_to": "2025-06-15",
            "continuation_key": "cur-0",
        }
        assert output.continuation_key == "next-1"
        assert output.transactions == [{"entry_reference": "R1"}]

    def test_first_page_has_no_continuation_key(self) -> None:
        handler = RecordingHandler([httpx.Response(200, json={"transactions": []})])
        client = create_client(handler)

        output = asyncio.run(
            client.list_transactions_page(
                "acc-1", date_from="2025-06-01", date_to="2025-06-15"
            )
        )

        assert "continuation_key" not in handler.requests[0].url.params
        assert output.transactions == []
        assert output.continuation_key is None


class TestAuthCalls:
    def test_start_auth_posts_access_and_aspsp(self) -> None:
        # setup
        handler = RecordingHandler(
            [httpx.Response(200, json={"url": "https://bank/consent"})]
        )
        client = create_client(handler)
        valid_until = datetime(2025, 12, 12, tzinfo=UTC)

        # act
        output = asyncio.run(
            client.start_auth(
                aspsp_name="LHV",
                aspsp_country="EE",
                redirect_url="https://localhost:3000/callback",
                valid_until=valid_until,
            )
        )

        # assert
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/auth"
        assert json.loads(request.content) == {
            "access": {"valid_until": valid_until.isoformat()},
            "aspsp": {"name": "LHV", "country": "EE"},
            "state": "auth",
            "redirect_url": "https://localhost:3000/callback",
            "psu_type": "personal",
        }
        assert output.url == "https://bank/consent"

    def test_create_session_exchanges_code(self) -> None:
        # setup
        handler = RecordingHandler(
            [
                httpx.Response(
                    200,
                    json={
                        "session_id": "sess-1",
                        "accounts": [
                            {"uid": "acc-1", "account_id": {"iban": "EE12"}},
                            {"uid": "acc-2"},
                        ],
                    },
                )
            ]
        )
        client = create_client(handler)

        # act
        output = asyncio.run(client.create_session("code-xyz"))

        # assert
        assert json.loads(handler.requests[0].content) == {"code": "code-xyz"}
        assert output.session_id == "sess-1"
        assert [a.uid for a in output.accounts] == ["acc-1", "acc-2"]
        assert output.accounts[0].account_number == "EE12"
        assert output.accounts[1].account_number is None


class TestForBank:
    def test_uses_bank_credentials(self) -> None:
        # setup
        bank = BankConfig(
            id="lhv",
            name="LHV",
            country="EE",
            app_id="app-lhv",
            private_key=PRIVATE_KEY,
        )
        handler = RecordingHandler([httpx.Response(200, json={})])
        client = EnableBankingClient.for_bank(
            bank, transport=httpx.MockTransport(handler)
        )

        # act
        asyncio.run(client.send("GET", "/aspsps"))

        # assert
        header = jwt.get_unverified_header(bearer_token(handler.requests[0]))
        assert header["kid"] == "app-lhv"


class TestRawTransactionRecord:
    def test_parses_full_record(self) -> None:
        record = RawTransactionRecord.parse(
            {
                "entry_reference": "R1",
                "transaction_amount": {"amount": "5.00", "currency": "EUR"},
                "credit_debit_indicator": "CRDT",
                "status": "BOOK",
                "booking_date": "2025-06-10",
                "debtor": {"name": "Employer"},
                "debtor_account": {"iban": "EE99"},
                "remittance_information": ["Salary"],
                "bank_transaction_code": {"code": "RCDT"},
            }
        )

        assert record.debtor is not None
        assert record.debtor.name == "Employer"
        assert record.debtor_account is not None
        assert record.debtor_account.identifier == "EE99"
        assert record.value_date is None
