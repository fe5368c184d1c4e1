from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any

from bankfeed.core.errors import ConfigError

DEFAULT_REDIRECT_URL = "https://localhost:3000/callback"
DEFAULT_DATABASE_URL = "sqlite:///bankfeed.db"

DEFAULT_MAX_LOOKBACK_DAYS = 365
DEFAULT_OVERLAP_DAYS = 7
DEFAULT_MAX_PAGES = 100
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

_REQUIRED_BANK_FIELDS = ("id", "name", "country", "appId")


@dataclass(frozen=True, slots=True)
class BankConfig:
    """One bank (ASPSP) connection configured for ingestion."""

    id: str
    name: str
    country: str
    app_id: str
    private_key: str = field(repr=False)
    redirect_url: str = DEFAULT_REDIRECT_URL


@dataclass(frozen=True, slots=True)
class IngestSettings:
    max_lookback_days: int = DEFAULT_MAX_LOOKBACK_DAYS
    overlap_days: int = DEFAULT_OVERLAP_DAYS
    max_pages: int = DEFAULT_MAX_PAGES
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Process configuration loaded at startup."""

    banks: list[BankConfig]
    database_url: str = DEFAULT_DATABASE_URL
    telegram_bot_token: str | None = field(default=None, repr=False)
    telegram_chat_id: str | None = None
    dashboard_url: str = ""
    log_level: str = "INFO"
    ingest: IngestSettings = field(default_factory=IngestSettings)

    def find_bank(self, bank_id: str) -> BankConfig:
        for bank in self.banks:
            if bank.id == bank_id:
                return bank
        available = ", ".join(bank.id for bank in self.banks)
        raise ConfigError(f"Unknown bank {bank_id!r}. Available: {available}")

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _optional_env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _positive_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _positive_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _redacted(entry: dict[str, Any]) -> str:
    safe = {k: v for k, v in entry.items() if k != "privateKey"}
    return json.dumps(safe, sort_keys=True)


def _resolve_private_key(entry: dict[str, Any]) -> str:
    private_key = entry.get("privateKey")
    if private_key:
        return str(private_key)
    key_path = entry.get("privateKeyPath")
    if key_path:
        try:
            return Path(str(key_path)).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                f"Cannot read private key for bank {entry.get('id')!r}: {e}"
            ) from e
    raise ConfigError(f"Bank config missing required fields: {_redacted(entry)}")


def parse_banks(raw: str) -> list[BankConfig]:
    """Parse the BANKS JSON array into bank configs.

    Each entry needs `id`, `name`, `country`, `appId` and either `privateKey`
    (PEM text) or `privateKeyPath`. `redirectUrl` is optional.
    """
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"BANKS env var is not valid JSON: {e}") from e

    if not isinstance(parsed, list) or not parsed:
        raise ConfigError("BANKS env var must be a non-empty JSON array")

    banks: list[BankConfig] = []
    seen: set[str] = set()
    for entry in parsed:
        if not isinstance(entry, dict):
            raise ConfigError("BANKS entries must be JSON objects")
        if any(not entry.get(name) for name in _REQUIRED_BANK_FIELDS):
            raise ConfigError(
                f"Bank config missing required fields: {_redacted(entry)}"
            )
        bank_id = str(entry["id"])
        if bank_id in seen:
            raise ConfigError(f"Duplicate bank id in BANKS: {bank_id!r}")
        seen.add(bank_id)
        banks.append(
            BankConfig(
                id=bank_id,
                name=str(entry["name"]),
                country=str(entry["country"]),
                app_id=str(entry["appId"]),
                private_key=_resolve_private_key(entry),
                redirect_url=str(entry.get("redirectUrl") or DEFAULT_REDIRECT_URL),
            )
        )
    return banks


def load_app_config_from_env() -> AppConfig:
    """Load app config from env and validate startup requirements."""
    banks = parse_banks(_require_env("BANKS"))

    ingest = IngestSettings(
        max_lookback_days=_positive_int_env(
            "BANKFEED_MAX_LOOKBACK_DAYS", DEFAULT_MAX_LOOKBACK_DAYS
        ),
        overlap_days=_positive_int_env("BANKFEED_OVERLAP_DAYS", DEFAULT_OVERLAP_DAYS),
        max_pages=_positive_int_env("BANKFEED_MAX_PAGES", DEFAULT_MAX_PAGES),
        request_timeout_seconds=_positive_float_env(
            "BANKFEED_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
    )

    return AppConfig(
        banks=banks,
        database_url=os.environ.get("DATABASE_URL", "").strip()
        or DEFAULT_DATABASE_URL,
        telegram_bot_token=_optional_env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_optional_env("TELEGRAM_CHAT_ID"),
        dashboard_url=os.environ.get("DASHBOARD_URL", "").strip(),
        log_level=os.environ.get("BANKFEED_LOG_LEVEL", "INFO").strip().upper()
        or "INFO",
        ingest=ingest,
    )
