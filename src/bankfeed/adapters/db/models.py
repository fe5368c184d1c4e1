from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy import (
    TIMESTAMP,
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

from bankfeed.models.session import SessionAccount, SessionRecord
from bankfeed.models.transaction import NormalizedTransaction

# Amounts are stored as integer millionths so that 3-decimal currencies
# (KWD, BHD, JOD, TND) survive a round trip exactly.
AMOUNT_SCALE = 6
_UNIT = Decimal(1).scaleb(-AMOUNT_SCALE)
_CENT = Decimal("0.01")


def to_units(amount: Decimal) -> int:
    return int(amount.quantize(_UNIT, rounding=ROUND_HALF_EVEN).scaleb(AMOUNT_SCALE))


def from_units(units: int) -> Decimal:
    """Decimal amount with at least two places and no trailing zeros beyond."""
    value = Decimal(units).scaleb(-AMOUNT_SCALE)
    cents = value.quantize(_CENT)
    if value == cents:
        return cents
    return value.normalize()


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class StoredTransaction(Base):
    """Ingested transaction, immutable once written.

    `hash` is the identity key; a second insert of the same hash violates the
    primary key and is treated as already known.
    """

    __tablename__ = "stored_transactions"

    hash: Mapped[str] = mapped_column(String(24), primary_key=True)
    source: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    amount_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    direction: Mapped[str] = mapped_column(String(4), nullable=False)  # DBIT | CRDT
    counterparty_name: Mapped[str] = mapped_column(String, nullable=False)
    counterparty_account: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default="")
    entry_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    merchant_category_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    @classmethod
    def from_normalized(cls, txn: NormalizedTransaction) -> StoredTransaction:
        return cls(
            hash=txn.hash,
            source=txn.source,
            date=txn.date,
            amount_units=to_units(txn.amount),
            currency=txn.currency,
            direction=txn.direction,
            counterparty_name=txn.counterparty_name,
            counterparty_account=txn.counterparty_account,
            description=txn.description,
            status=txn.status,
            entry_reference=txn.entry_reference,
            merchant_category_code=txn.merchant_category_code,
        )

    @property
    def amount(self) -> Decimal:
        return from_units(self.amount_units)


class BankSession(Base):
    """Enable Banking session authorized for one configured bank."""

    __tablename__ = "bank_sessions"

    bank_id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    accounts: Mapped[list[BankSessionAccount]] = relationship(
        "BankSessionAccount",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="BankSessionAccount.position",
    )

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            bank_id=self.bank_id,
            session_id=self.session_id,
            valid_until=self.valid_until,
            accounts=[
                SessionAccount(uid=acc.uid, account_number=acc.account_number)
                for acc in self.accounts
            ],
        )


class BankSessionAccount(Base):
    """Account authorized within a bank session."""

    __tablename__ = "bank_session_accounts"

    bank_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("bank_sessions.bank_id", ondelete="CASCADE"),
        primary_key=True,
    )
    uid: Mapped[str] = mapped_column(String, primary_key=True)
    account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    session: Mapped[BankSession] = relationship(
        "BankSession", back_populates="accounts"
    )
