from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

from bankfeed.adapters.db.facade import DB, open_db
from bankfeed.adapters.db.models import from_units, to_units
from bankfeed.models.session import SessionAccount, SessionRecord
from bankfeed.models.transaction import Direction, NormalizedTransaction

# Helper functions


def create_txn(
    hash_: str,
    *,
    amount: str = "10.00",
    day: date = date(2025, 6, 10),
    direction: Direction = "DBIT",
    source: str = "lhv",
    counterparty: str = "Shop",
    currency: str = "EUR",
) -> NormalizedTransaction:
    return NormalizedTransaction(
        hash=hash_,
        amount=Decimal(amount),
        currency=currency,
        direction=direction,
        date=day,
        counterparty_name=counterparty,
        counterparty_account=None,
        description=f"{counterparty} purchase",
        status="BOOK",
        entry_reference=None,
        merchant_category_code=None,
        source=source,
    )


class TestAmountUnits:
    def test_round_trip_keeps_two_decimals(self) -> None:
        assert to_units(Decimal("12.34")) == 12_340_000
        assert from_units(12_340_000) == Decimal("12.34")

    def test_round_trip_keeps_three_decimals(self) -> None:
        assert to_units(Decimal("12.345")) == 12_345_000
        assert str(from_units(12_345_000)) == "12.345"

    def test_whole_amounts_read_back_with_two_places(self) -> None:
        assert str(from_units(to_units(Decimal("120")))) == "120.00"


class TestInsertTransaction:
    def test_first_insert_stores_row(self, db: DB) -> None:
        # act
        output = db.insert_transaction(create_txn("h1", amount="12.34"))

        # assert
        assert output is True
        rows = db.list_transactions()
        assert len(rows) == 1
        assert rows[0].hash == "h1"
        assert rows[0].amount == Decimal("12.34")
        assert rows[0].date == date(2025, 6, 10)

    def test_three_decimal_amount_is_stored_exactly(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", amount="12.345", currency="KWD"))
        db.insert_transaction(create_txn("h2", amount="0.005", currency="KWD"))

        # act
        rows = db.list_transactions(source="lhv")
        totals = db.period_totals(start=date(2025, 6, 1), end=date(2025, 7, 1))

        # assert
        assert [row.amount for row in rows] == [Decimal("12.345"), Decimal("0.005")]
        assert totals is not None
        assert totals.total_spent == Decimal("12.35")

    def test_duplicate_hash_is_reported_not_raised(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", amount="1.00"))

        # act
        output = db.insert_transaction(create_txn("h1", amount="2.00"))

        # assert
        assert output is False
        rows = db.list_transactions()
        assert len(rows) == 1
        assert rows[0].amount == Decimal("1.00")

    def test_store_stays_usable_after_conflict(self, db: DB) -> None:
        db.insert_transaction(create_txn("h1"))
        db.insert_transaction(create_txn("h1"))

        assert db.insert_transaction(create_txn("h2")) is True
        assert len(db.list_transactions()) == 2


class TestFindLatestDate:
    def test_returns_none_without_history(self, db: DB) -> None:
        assert db.find_latest_date("lhv") is None

    def test_returns_max_date_for_bank_only(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", day=date(2025, 6, 1)))
        db.insert_transaction(create_txn("h2", day=date(2025, 6, 14)))
        db.insert_transaction(create_txn("h3", day=date(2025, 6, 20), source="swed"))

        # act & assert
        assert db.find_latest_date("lhv") == date(2025, 6, 14)
        assert db.find_latest_date("swed") == date(2025, 6, 20)


class TestListTransactions:
    def test_filters_by_window_and_direction(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", day=date(2025, 5, 31)))
        db.insert_transaction(create_txn("h2", day=date(2025, 6, 1)))
        db.insert_transaction(create_txn("h3", day=date(2025, 6, 30)))
        db.insert_transaction(create_txn("h4", day=date(2025, 7, 1)))
        db.insert_transaction(
            create_txn("h5", day=date(2025, 6, 5), direction="CRDT")
        )

        # act
        output = db.list_transactions(
            start=date(2025, 6, 1), end=date(2025, 7, 1), direction="DBIT"
        )

        # assert
        assert [row.hash for row in output] == ["h3", "h2"]


class TestAggregates:
    def test_period_totals_split_spent_and_received(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", amount="10.50"))
        db.insert_transaction(create_txn("h2", amount="4.25"))
        db.insert_transaction(create_txn("h3", amount="100.00", direction="CRDT"))

        # act
        output = db.period_totals(start=date(2025, 6, 1), end=date(2025, 7, 1))

        # assert
        assert output is not None
        assert output.total_spent == Decimal("14.75")
        assert output.total_received == Decimal("100.00")
        assert output.currency == "EUR"
        assert output.transaction_count == 3

    def test_period_totals_empty_is_none(self, db: DB) -> None:
        db.insert_transaction(create_txn("h1", amount="1.00", direction="CRDT"))

        output = db.period_totals(
            start=date(2025, 6, 1), end=date(2025, 7, 1), direction="DBIT"
        )

        assert output is None

    def test_top_counterparties_by_debit_total(self, db: DB) -> None:
        # setup
        db.insert_transaction(create_txn("h1", amount="5.00", counterparty="Rimi"))
        db.insert_transaction(create_txn("h2", amount="7.00", counterparty="Rimi"))
        db.insert_transaction(create_txn("h3", amount="20.00", counterparty="Bolt"))
        db.insert_transaction(create_txn("h4", amount="1.00", counterparty="Wolt"))
        db.insert_transaction(
            create_txn("h5", amount="999.00", counterparty="Job", direction="CRDT")
        )

        # act
        output = db.top_counterparties(
            start=date(2025, 6, 1), end=date(2025, 7, 1), limit=2
        )

        # assert
        assert [(cp.name, cp.total) for cp in output] == [
            ("Bolt", Decimal("20.00")),
            ("Rimi", Decimal("12.00")),
        ]


class TestSessions:
    def test_missing_session_is_none(self, db: DB) -> None:
        assert db.get_session("lhv") is None

    def test_save_and_load_session_with_accounts(self, db: DB) -> None:
        # input
        record = SessionRecord(
            bank_id="lhv",
            session_id="sess-1",
            valid_until=datetime(2025, 12, 12, tzinfo=UTC),
            accounts=[
                SessionAccount(uid="acc-2", account_number="EE02"),
                SessionAccount(uid="acc-1"),
            ],
        )

        # act
        db.save_session(record)
        output = db.get_session("lhv")

        # assert
        assert output is not None
        assert output.session_id == "sess-1"
        assert [a.uid for a in output.accounts] == ["acc-2", "acc-1"]
        assert output.accounts[0].account_number == "EE02"
        assert not output.is_expired(datetime(2025, 6, 1, tzinfo=UTC))
        assert output.is_expired(datetime(2026, 1, 1, tzinfo=UTC))

    def test_save_replaces_existing_session(self, db: DB) -> None:
        # setup
        db.save_session(
            SessionRecord(
                bank_id="lhv",
                session_id="old",
                valid_until=datetime(2025, 1, 1, tzinfo=UTC),
                accounts=[SessionAccount(uid="acc-old")],
            )
        )

        # act
        db.save_session(
            SessionRecord(
                bank_id="lhv",
                session_id="new",
                valid_until=datetime(2025, 12, 1, tzinfo=UTC),
                accounts=[SessionAccount(uid="acc-new")],
            )
        )

        # assert
        output = db.get_session("lhv")
        assert output is not None
        assert output.session_id == "new"
        assert [a.uid for a in output.accounts] == ["acc-new"]


class TestOpenDb:
    def test_creates_schema_and_yields_usable_store(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'bankfeed.db'}"

        with open_db(url) as db:
            assert db.insert_transaction(create_txn("h1")) is True

        with open_db(url) as db:
            assert db.find_latest_date("lhv") == date(2025, 6, 10)
