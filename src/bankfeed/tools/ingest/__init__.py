"""Transaction ingestion package."""

from bankfeed.tools.ingest.identity import (
    compute_identity_hash,
    extract_counterparty,
    normalize_record,
)
from bankfeed.tools.ingest.ingest_tool import (
    BankIngestionResult,
    IngestionSummary,
    IngestTool,
)
from bankfeed.tools.ingest.planner import FetchPlanner
from bankfeed.tools.ingest.reader import (
    FetchResult,
    TransactionReader,
    corrected_date_from,
)

__all__ = [
    # Identity & extraction
    "compute_identity_hash",
    "extract_counterparty",
    "normalize_record",
    # Reader
    "TransactionReader",
    "FetchResult",
    "corrected_date_from",
    # Planner
    "FetchPlanner",
    # Orchestrator
    "IngestTool",
    "IngestionSummary",
    "BankIngestionResult",
]
