from datetime import datetime
from decimal import Decimal
from typing import Iterable

import structlog

from keysmith.attribution import AttributionStrategy, broadcast_to_active
from keysmith.models import CostRecord, CostTotals, KeyCosts
from keysmith.timestamps import parse_rfc3339

logger = structlog.get_logger()

REPORT_CURRENCY = "USD"


def normalize_currency(code: "str | None") -> "str":
    """
    upper-cases an ISO currency code, defaulting to USD when the
    upstream omits it.
    """
    code = (code or "").strip().upper()
    return code or REPORT_CURRENCY


def in_window(
    incurred_at: "datetime",
    start: "datetime | None",
    end: "datetime | None",
) -> "bool":
    if start is not None and incurred_at < start:
        return False
    if end is not None and incurred_at > end:
        return False
    return True


def parse_window(
    start_date: "str | None",
    end_date: "str | None",
) -> "tuple[datetime | None, datetime | None]":
    """
    parses optional RFC3339 window boundaries. A boundary that fails
    to parse places no constraint on its side of the window.
    """
    start = parse_rfc3339(start_date)
    end = parse_rfc3339(end_date)
    if start_date and start is None:
        logger.warning("cost_window_start_ignored", value=start_date)
    if end_date and end is None:
        logger.warning("cost_window_end_ignored", value=end_date)
    return start, end


class CostLedger:
    """
    CostLedger is the append-only log of ingested cost records plus
    the per-credential index derived from it.

    Every record goes into the global ledger. Copies go into the
    per-key index of whichever credentials the attribution strategy
    picks at the time of recording (by default all active keys).
    Records are never mutated or removed, except by reset().
    """

    def __init__(self, attribution: "AttributionStrategy" = broadcast_to_active) -> "None":
        self._attribution = attribution
        self._records: "list[CostRecord]" = []
        self._by_key: "dict[str, list[CostRecord]]" = {}

    def record(self, record: "CostRecord", active_keys: "Iterable[str]") -> "None":
        self._records.append(record)
        for key in self._attribution(record, active_keys):
            self._by_key.setdefault(key, []).append(record)

    def records(self) -> "list[CostRecord]":
        return list(self._records)

    def indexed_keys(self) -> "list[str]":
        return sorted(self._by_key)

    def records_for(self, credential: "str") -> "list[CostRecord]":
        return list(self._by_key.get(credential, []))

    def key_total(self, credential: "str") -> "Decimal":
        return sum(
            (r.amount for r in self._by_key.get(credential, [])),
            Decimal("0"),
        )

    def total(
        self,
        start: "datetime | None" = None,
        end: "datetime | None" = None,
    ) -> "CostTotals":
        """
        sums the global ledger within the inclusive window and
        lists per-key subtotals that are nonzero.
        """
        total = sum(
            (r.amount for r in self._records if in_window(r.incurred_at, start, end)),
            Decimal("0"),
        )

        by_key: "list[tuple[str, Decimal]]" = []
        for key in sorted(self._by_key):
            subtotal = sum(
                (
                    r.amount
                    for r in self._by_key[key]
                    if in_window(r.incurred_at, start, end)
                ),
                Decimal("0"),
            )
            if subtotal != 0:
                by_key.append((key, subtotal))

        return CostTotals(total=total, by_key=by_key, currency=REPORT_CURRENCY)

    def for_key(
        self,
        credential: "str",
        start: "datetime | None" = None,
        end: "datetime | None" = None,
    ) -> "KeyCosts":
        costs = [
            r
            for r in self._by_key.get(credential, [])
            if in_window(r.incurred_at, start, end)
        ]
        return KeyCosts(
            api_key=credential,
            costs=costs,
            total=sum((r.amount for r in costs), Decimal("0")),
        )

    def reset(self) -> "None":
        self._records.clear()
        self._by_key.clear()

    def restore(
        self,
        records: "list[CostRecord]",
        by_key: "dict[str, list[CostRecord]]",
    ) -> "None":
        self._records = list(records)
        self._by_key = {k: list(v) for k, v in by_key.items()}
