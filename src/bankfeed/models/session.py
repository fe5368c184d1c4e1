from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(frozen=True, slots=True)
class SessionAccount:
    uid: str
    account_number: str | None = None


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Authorized Enable Banking session for one configured bank."""

    bank_id: str
    session_id: str
    valid_until: datetime
    accounts: list[SessionAccount] = field(default_factory=list)

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or datetime.now(UTC)
        valid_until = self.valid_until
        # SQLite drops tzinfo on the way back; stored values are always UTC.
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=UTC)
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        return valid_until < current
