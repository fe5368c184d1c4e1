"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from bankfeed.adapters.db.facade import DB


@pytest.fixture
def db() -> Iterator[DB]:
    """In-memory database with the schema created."""
    database = DB("sqlite:///:memory:")
    database.create_schema()
    yield database
    database.dispose()
