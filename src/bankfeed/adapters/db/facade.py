from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import case, create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from bankfeed.adapters.db.models import (
    Base,
    BankSession,
    BankSessionAccount,
    StoredTransaction,
    from_units,
)
from bankfeed.models.session import SessionRecord
from bankfeed.models.transaction import NormalizedTransaction


@dataclass
class PeriodTotals:
    total_spent: Decimal
    total_received: Decimal
    currency: str | None
    transaction_count: int


@dataclass
class CounterpartyTotal:
    name: str
    total: Decimal


class DB:
    """Database service layer for sessions and ingested transactions."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///bankfeed.db")
        """
        self._url = url
        self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    # Transactions --------------------------------------------------------

    def insert_transaction(self, txn: NormalizedTransaction) -> bool:
        """Insert a transaction in its own transaction.

        Returns:
            True if stored, False if a transaction with the same hash already
            exists (uniqueness conflict).
        """
        try:
            with self.session() as session:  # type: Session
                session.add(StoredTransaction.from_normalized(txn))
        except IntegrityError:
            return False
        return True

    def find_latest_date(self, bank_id: str) -> date | None:
        """Most recent stored transaction date for a bank, or None."""
        with self.session() as session:  # type: Session
            return session.execute(
                select(func.max(StoredTransaction.date)).where(
                    StoredTransaction.source == bank_id
                )
            ).scalar_one_or_none()

    def list_transactions(
        self,
        *,
        source: str | None = None,
        start: date | None = None,
        end: date | None = None,
        direction: str | None = None,
    ) -> list[StoredTransaction]:
        """List stored transactions, newest first.

        Args:
            source: Only transactions from this bank id
            start: Inclusive lower date bound
            end: Exclusive upper date bound
            direction: "DBIT" or "CRDT"
        """
        stmt = select(StoredTransaction)
        if source is not None:
            stmt = stmt.where(StoredTransaction.source == source)
        if start is not None:
            stmt = stmt.where(StoredTransaction.date >= start)
        if end is not None:
            stmt = stmt.where(StoredTransaction.date < end)
        if direction is not None:
            stmt = stmt.where(StoredTransaction.direction == direction)
        stmt = stmt.order_by(
            StoredTransaction.date.desc(), StoredTransaction.amount_units.desc()
        )

        with self.session() as session:  # type: Session
            rows = list(session.execute(stmt).scalars())
            for row in rows:
                session.expunge(row)
            return rows

    def period_totals(
        self,
        *,
        start: date,
        end: date,
        direction: str | None = None,
    ) -> PeriodTotals | None:
        """Spent / received totals for [start, end), or None when empty."""
        units = StoredTransaction.amount_units
        spent = func.sum(case((StoredTransaction.direction == "DBIT", units), else_=0))
        received = func.sum(
            case((StoredTransaction.direction == "CRDT", units), else_=0)
        )
        stmt = select(spent, received, func.count()).where(
            StoredTransaction.date >= start, StoredTransaction.date < end
        )
        if direction is not None:
            stmt = stmt.where(StoredTransaction.direction == direction)

        with self.session() as session:  # type: Session
            total_spent, total_received, count = session.execute(stmt).one()
            if not count:
                return None
            currency_stmt = (
                select(StoredTransaction.currency)
                .where(StoredTransaction.date >= start, StoredTransaction.date < end)
                .order_by(StoredTransaction.date, StoredTransaction.hash)
                .limit(1)
            )
            if direction is not None:
                currency_stmt = currency_stmt.where(
                    StoredTransaction.direction == direction
                )
            currency = session.execute(currency_stmt).scalar_one_or_none()

        return PeriodTotals(
            total_spent=from_units(int(total_spent or 0)),
            total_received=from_units(int(total_received or 0)),
            currency=currency,
            transaction_count=int(count),
        )

    def top_counterparties(
        self,
        *,
        start: date,
        end: date,
        limit: int,
        direction: str = "DBIT",
    ) -> list[CounterpartyTotal]:
        """Counterparties with the largest totals in [start, end)."""
        total = func.sum(StoredTransaction.amount_units).label("total")
        stmt = (
            select(StoredTransaction.counterparty_name, total)
            .where(
                StoredTransaction.date >= start,
                StoredTransaction.date < end,
                StoredTransaction.direction == direction,
            )
            .group_by(StoredTransaction.counterparty_name)
            .order_by(total.desc(), StoredTransaction.counterparty_name)
            .limit(limit)
        )
        with self.session() as session:  # type: Session
            rows = session.execute(stmt).all()
        return [
            CounterpartyTotal(name=name, total=from_units(int(units)))
            for name, units in rows
        ]

    # Sessions ------------------------------------------------------------

    def get_session(self, bank_id: str) -> SessionRecord | None:
        """Stored session for a bank, or None if the bank was never authorized."""
        with self.session() as session:  # type: Session
            row = session.execute(
                select(BankSession)
                .options(selectinload(BankSession.accounts))
                .where(BankSession.bank_id == bank_id)
            ).scalar_one_or_none()
            return row.to_record() if row is not None else None

    def save_session(self, record: SessionRecord) -> None:
        """Insert or replace the session stored for `record.bank_id`."""
        with self.session() as session:  # type: Session
            existing = session.get(BankSession, record.bank_id)
            if existing is not None:
                session.delete(existing)
                session.flush()
            session.add(
                BankSession(
                    bank_id=record.bank_id,
                    session_id=record.session_id,
                    valid_until=record.valid_until,
                    accounts=[
                        BankSessionAccount(
                            uid=account.uid,
                            account_number=account.account_number,
                            position=position,
                        )
                        for position, account in enumerate(record.accounts)
                    ],
                )
            )


@contextmanager
def open_db(url: str, *, create_schema: bool = True) -> Iterator[DB]:
    """Scoped store handle: built on entry, engine disposed on exit."""
    db = DB(url)
    try:
        if create_schema:
            db.create_schema()
        yield db
    finally:
        db.dispose()
