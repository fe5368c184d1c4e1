from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Literal

Direction = Literal["DBIT", "CRDT"]

UNKNOWN_COUNTERPARTY = "Unknown"


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """
    Transaction as persisted by bankfeed.

    Built from one Enable Banking transaction record. `hash` is the identity
    key; `source` is the id of the bank configuration the record came from.
    """

    hash: str
    amount: Decimal
    currency: str
    direction: Direction
    date: date
    counterparty_name: str
    counterparty_account: str | None
    description: str
    status: str
    entry_reference: str | None
    merchant_category_code: str | None
    source: str

    @property
    def is_debit(self) -> bool:
        return self.direction == "DBIT"
