import threading
from datetime import datetime, timedelta
from typing import Callable

import structlog

from keysmith.errors import AdminKeyMissingError
from keysmith.key_pool import KeyPool
from keysmith.ledger import CostLedger
from keysmith.models import (
    Assignment,
    CostRecord,
    CostTotals,
    IngestionCursor,
    KeyCosts,
    KeyInfo,
)
from keysmith.timestamps import format_rfc3339, parse_rfc3339, utc_now

logger = structlog.get_logger()


class ManagerState:
    """
    ManagerState: Is the single owner of all mutable state, the key
    pool, the cost ledger, the ingestion cursor and the admin key.

    Every method takes the same lock, so concurrent callers observe
    whole transitions and never an interleaving. Nothing here blocks
    on I/O, which keeps the lock hold times short; the ingestion
    pipeline only comes in to read its inputs and to commit a page.
    Reads hand back copies.
    """

    def __init__(
        self,
        pool: "KeyPool | None" = None,
        ledger: "CostLedger | None" = None,
        clock: "Callable[[], datetime]" = utc_now,
    ) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._pool = pool or KeyPool()
        self._ledger = ledger or CostLedger()
        self._cursor = IngestionCursor()
        self._admin_key: "str | None" = None
        self._clock = clock

    def now(self) -> "datetime":
        return self._clock()

    # key pool

    def add_key(self, credential: "str") -> "None":
        with self._lock:
            self._pool.add(credential, self._clock())

    def remove_key(self, credential: "str") -> "None":
        with self._lock:
            self._pool.remove(credential)

    def assign(self, caller_id: "str") -> "tuple[str, bool]":
        """
        returns the caller's credential and whether it was newly issued.
        """
        with self._lock:
            is_new = self._pool.assignment_for(caller_id) is None
            return self._pool.assign(caller_id, self._clock()), is_new

    def key_info(self, credential: "str") -> "KeyInfo":
        with self._lock:
            return self._key_info(credential)

    def list_active(self) -> "list[KeyInfo]":
        with self._lock:
            return [self._key_info(k) for k in self._pool.active()]

    def assignment_history(self) -> "list[Assignment]":
        with self._lock:
            return self._pool.assignment_history()

    def active_count(self) -> "int":
        with self._lock:
            return len(self._pool.active())

    def _key_info(self, credential: "str") -> "KeyInfo":
        return KeyInfo(
            key=credential,
            status=self._pool.status(credential),
            total_cost=self._ledger.key_total(credential),
            assigned_callers=self._pool.callers_for(credential),
            created_at=self._pool.created_at(credential),
        )

    # admin key

    def set_admin_key(self, admin_key: "str") -> "None":
        with self._lock:
            self._admin_key = admin_key

    def admin_key(self) -> "str | None":
        with self._lock:
            return self._admin_key

    def require_admin_key(self) -> "str":
        with self._lock:
            if not self._admin_key:
                raise AdminKeyMissingError("Admin API key not configured")
            return self._admin_key

    # ledger

    def total_costs(
        self,
        start: "datetime | None" = None,
        end: "datetime | None" = None,
    ) -> "CostTotals":
        with self._lock:
            return self._ledger.total(start, end)

    def key_costs(
        self,
        credential: "str",
        start: "datetime | None" = None,
        end: "datetime | None" = None,
    ) -> "KeyCosts":
        with self._lock:
            return self._ledger.for_key(credential, start, end)

    def all_costs(self) -> "list[CostRecord]":
        with self._lock:
            return self._ledger.records()

    # ingestion cursor

    def cursor(self) -> "IngestionCursor":
        with self._lock:
            return IngestionCursor(
                last_run_at=self._cursor.last_run_at,
                last_queried_through=self._cursor.last_queried_through,
            )

    def ingestion_start(self, default_lookback: "timedelta") -> "str":
        """
        returns the starting_at boundary for the next run: where the
        last run left off, or the default lookback window.
        """
        with self._lock:
            if self._cursor.last_queried_through:
                return self._cursor.last_queried_through
            return format_rfc3339(self._clock() - default_lookback)

    def commit_page(self, records: "list[CostRecord]", ending_at: "str | None") -> "int":
        """
        applies one fetched page: records go into the ledger and the
        cursor moves up to ending_at. The cursor never moves backwards.
        Returns the number of records added.
        """
        with self._lock:
            active = self._pool.active()
            for record in records:
                self._ledger.record(record, active)

            if ending_at is not None:
                current = parse_rfc3339(self._cursor.last_queried_through)
                candidate = parse_rfc3339(ending_at)
                if candidate is not None and (current is None or candidate > current):
                    self._cursor.last_queried_through = format_rfc3339(candidate)

            return len(records)

    def finish_run(self, started_at: "datetime") -> "None":
        with self._lock:
            self._cursor.last_run_at = started_at

    def check_cooldown(self, cooldown: "timedelta") -> "datetime | None":
        """
        returns the previous run time if the cooldown window has not
        elapsed yet, None if a run may proceed. A last run time in the
        future is corrupt state; it is cleared rather than trusted.
        """
        with self._lock:
            last_run_at = self._cursor.last_run_at
            if last_run_at is None:
                return None

            now = self._clock()
            if last_run_at > now:
                logger.warning(
                    "last_run_at_in_future_cleared",
                    last_run_at=last_run_at.isoformat(),
                    now=now.isoformat(),
                )
                self._cursor.last_run_at = None
                return None

            if now - last_run_at < cooldown:
                return last_run_at
            return None

    def reset_costs(self) -> "None":
        """
        clears the ledger, the per-key index and the cursor together.
        """
        with self._lock:
            self._ledger.reset()
            self._cursor.clear()

    # persistence

    def export(self) -> "dict":
        """
        returns a consistent snapshot of the pool, the ledger and the
        cursor as plain python objects; see keysmith.persistence for the
        encoding. The admin key is left out, it comes from configuration.
        """
        with self._lock:
            return {
                "active": {k: self._pool.created_at(k) for k in self._pool.active()},
                "historical": {
                    k: self._pool.created_at(k) for k in self._pool.historical()
                },
                "assignments": self._pool.assignment_history(),
                "records": self._ledger.records(),
                "by_key": {
                    k: self._ledger.records_for(k) for k in self._ledger.indexed_keys()
                },
                "cursor": IngestionCursor(
                    last_run_at=self._cursor.last_run_at,
                    last_queried_through=self._cursor.last_queried_through,
                ),
            }

    def load(self, snapshot: "dict") -> "None":
        with self._lock:
            self._pool.restore(
                snapshot["active"],
                snapshot["historical"],
                snapshot["assignments"],
            )
            self._ledger.restore(snapshot["records"], snapshot["by_key"])
            cursor: "IngestionCursor" = snapshot["cursor"]
            self._cursor = IngestionCursor(
                last_run_at=cursor.last_run_at,
                last_queried_through=cursor.last_queried_through,
            )
