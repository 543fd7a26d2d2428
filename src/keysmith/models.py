from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

KEY_ACTIVE = "active"
KEY_INACTIVE = "inactive"
KEY_UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class CostRecord:
    """
    CostRecord represents a single cost entry ingested
    from the provider's cost report.
    """

    incurred_at: "datetime"
    # dollars, already converted from the upstream cents
    amount: "Decimal"
    currency: "str"
    description: "str"


@dataclass(frozen=True, slots=True)
class Assignment:
    """
    Assignment binds a caller identity to the credential
    it was handed out.
    """

    caller_id: "str"
    credential: "str"
    issued_at: "datetime"


@dataclass(slots=True)
class IngestionCursor:
    # start time of the last successful ingestion run
    last_run_at: "datetime | None" = None
    # canonical RFC3339 (UTC, "Z" suffix) upper bound of ingested data
    last_queried_through: "str | None" = None

    def clear(self) -> "None":
        self.last_run_at = None
        self.last_queried_through = None


@dataclass(frozen=True, slots=True)
class KeyInfo:
    key: "str"
    status: "str"
    total_cost: "Decimal"
    assigned_callers: "list[str]" = field(default_factory=list)
    created_at: "datetime | None" = None


@dataclass(frozen=True, slots=True)
class CostTotals:
    total: "Decimal"
    # (credential, subtotal) for every credential with a nonzero subtotal
    by_key: "list[tuple[str, Decimal]]"
    currency: "str" = "USD"


@dataclass(frozen=True, slots=True)
class KeyCosts:
    api_key: "str"
    costs: "list[CostRecord]"
    total: "Decimal"


@dataclass(frozen=True, slots=True)
class RefreshResult:
    """
    RefreshResult is the outcome of a refresh attempt. A throttled
    attempt is not an error: refreshed is False and timestamp carries
    the previous run time.
    """

    refreshed: "bool"
    message: "str"
    timestamp: "datetime"
    records_added: "int" = 0

    @property
    def too_soon(self) -> "bool":
        return not self.refreshed


@dataclass(frozen=True, slots=True)
class IngestionReport:
    pages_processed: "int"
    records_added: "int"
    amount_added: "Decimal"
    # cursor value after the run, None if nothing was observed
    queried_through: "str | None"


@dataclass(frozen=True, slots=True)
class CostBucket:
    """
    CostBucket is one time bucket of the upstream cost report. Results
    are kept as raw dicts; the ingestion pipeline converts them.
    """

    starting_at: "str"
    ending_at: "str"
    results: "list[dict]"


@dataclass(frozen=True, slots=True)
class CostReportPage:
    buckets: "list[CostBucket]"
    has_more: "bool"
    next_page: "str | None" = None


@dataclass(frozen=True, slots=True)
class UpstreamApiKey:
    id: "str"
    name: "str"
    status: "str"
    created_at: "str"
    workspace_id: "str | None" = None


@dataclass(frozen=True, slots=True)
class Workspace:
    id: "str"
    name: "str"
    created_at: "str"
    archived_at: "str | None" = None
