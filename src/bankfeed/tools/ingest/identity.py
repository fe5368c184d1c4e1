"""Identity hashing and counterparty extraction for raw bank records.

Pure functions: no I/O and no state.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
import hashlib
import re

from bankfeed.adapters.clients.enable_banking import RawTransactionRecord
from bankfeed.models.transaction import UNKNOWN_COUNTERPARTY, NormalizedTransaction

HASH_LENGTH = 24

# e.g. "OST 516737******6375 06.02.26 14:20 22.30 EUR (533626) Wolt Estonia EE"
_CARD_WITH_CODE = re.compile(r"\([0-9]+\)\s+(.+)")
# e.g. "516737******6375 04.02.26 STROOMI KESKUSE APTEEK 10315 TALLINN"
_CARD_NO_CODE = re.compile(
    r"[0-9]{6}\*+[0-9]{4}\s+[0-9]{2}\.[0-9]{2}\.[0-9]{2}\s+(.+)"
)
_POSTAL_SUFFIX = re.compile(r"\s+[0-9]{5}\s+[A-Za-z0-9_]+$")
_WHITESPACE = re.compile(r"\s+")


def joined_remittance(record: RawTransactionRecord) -> str:
    return " ".join(record.remittance_information or [])


def normalize_description(record: RawTransactionRecord) -> str:
    return _WHITESPACE.sub(" ", joined_remittance(record)).strip()


def resolved_date_text(record: RawTransactionRecord) -> str:
    """Value date if present, else booking date, else empty string."""
    return record.value_date or record.booking_date or ""


def compute_identity_hash(record: RawTransactionRecord) -> str:
    """Return the stable dedup key for a record.

    A bank-issued entry reference takes precedence over the description, so
    later edits to the remittance text do not create a new identity.
    """
    amount = record.transaction_amount
    base = (
        f"{resolved_date_text(record)}|{amount.amount}|{amount.currency}"
        f"|{record.credit_debit_indicator}"
    )
    if record.entry_reference:
        key = f"{base}|ref:{record.entry_reference}"
    else:
        key = f"{base}|{normalize_description(record)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def extract_counterparty(record: RawTransactionRecord) -> str:
    """Best-effort counterparty name; never empty."""
    direction = record.credit_debit_indicator
    if direction == "DBIT" and record.creditor and record.creditor.name:
        return record.creditor.name
    if direction == "CRDT" and record.debtor and record.debtor.name:
        return record.debtor.name

    desc = joined_remittance(record)

    with_code = _CARD_WITH_CODE.search(desc)
    if with_code:
        name = with_code.group(1).strip()
        if name:
            return name

    no_code = _CARD_NO_CODE.search(desc)
    if no_code:
        name = _POSTAL_SUFFIX.sub("", no_code.group(1)).strip()
        if name:
            return name

    return desc or UNKNOWN_COUNTERPARTY


def counterparty_account(record: RawTransactionRecord) -> str | None:
    if record.credit_debit_indicator == "DBIT":
        account = record.creditor_account
    else:
        account = record.debtor_account
    return account.identifier if account is not None else None


def parse_record_date(record: RawTransactionRecord) -> date | None:
    text = resolved_date_text(record)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_amount(record: RawTransactionRecord) -> Decimal | None:
    try:
        amount = Decimal(record.transaction_amount.amount.strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def normalize_record(
    record: RawTransactionRecord, *, source: str
) -> NormalizedTransaction | None:
    """Build the persisted form of a record.

    Returns None when the record has no usable date or amount.
    """
    txn_date = parse_record_date(record)
    amount = parse_amount(record)
    if txn_date is None or amount is None:
        return None

    return NormalizedTransaction(
        hash=compute_identity_hash(record),
        amount=amount,
        currency=record.transaction_amount.currency,
        direction=record.credit_debit_indicator,
        date=txn_date,
        counterparty_name=extract_counterparty(record),
        counterparty_account=counterparty_account(record),
        description=joined_remittance(record),
        status=record.status,
        entry_reference=record.entry_reference,
        merchant_category_code=record.merchant_category_code,
        source=source,
    )
