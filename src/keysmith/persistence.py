import json
import os
import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import structlog

from keysmith.models import Assignment, CostRecord, IngestionCursor
from keysmith.state import ManagerState

logger = structlog.get_logger()

SNAPSHOT_VERSION = 1


def _dt(value: "datetime | None") -> "str | None":
    return value.isoformat() if value is not None else None


def _parse_dt(value: "str | None") -> "datetime | None":
    return datetime.fromisoformat(value) if value else None


def _encode_record(record: "CostRecord") -> "dict":
    return {
        "incurred_at": record.incurred_at.isoformat(),
        "amount": str(record.amount),
        "currency": record.currency,
        "description": record.description,
    }


def _decode_record(data: "dict") -> "CostRecord":
    return CostRecord(
        incurred_at=datetime.fromisoformat(data["incurred_at"]),
        amount=Decimal(data["amount"]),
        currency=data["currency"],
        description=data.get("description", ""),
    )


def encode_snapshot(snapshot: "dict") -> "dict":
    """
    turns ManagerState.export() output into JSON-safe data. Decimals
    and timestamps are written as strings so nothing loses precision.
    """
    cursor: "IngestionCursor" = snapshot["cursor"]
    return {
        "version": SNAPSHOT_VERSION,
        "active": {k: _dt(v) for k, v in snapshot["active"].items()},
        "historical": {k: _dt(v) for k, v in snapshot["historical"].items()},
        "assignments": [
            {
                "caller_id": a.caller_id,
                "credential": a.credential,
                "issued_at": a.issued_at.isoformat(),
            }
            for a in snapshot["assignments"]
        ],
        "records": [_encode_record(r) for r in snapshot["records"]],
        "by_key": {
            k: [_encode_record(r) for r in records]
            for k, records in snapshot["by_key"].items()
        },
        "cursor": {
            "last_run_at": _dt(cursor.last_run_at),
            "last_queried_through": cursor.last_queried_through,
        },
    }


def decode_snapshot(data: "dict") -> "dict":
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version: {version!r}")

    cursor = data.get("cursor") or {}
    return {
        "active": {k: _parse_dt(v) for k, v in data.get("active", {}).items()},
        "historical": {k: _parse_dt(v) for k, v in data.get("historical", {}).items()},
        "assignments": [
            Assignment(
                caller_id=a["caller_id"],
                credential=a["credential"],
                issued_at=datetime.fromisoformat(a["issued_at"]),
            )
            for a in data.get("assignments", [])
        ],
        "records": [_decode_record(r) for r in data.get("records", [])],
        "by_key": {
            k: [_decode_record(r) for r in records]
            for k, records in data.get("by_key", {}).items()
        },
        "cursor": IngestionCursor(
            last_run_at=_parse_dt(cursor.get("last_run_at")),
            last_queried_through=cursor.get("last_queried_through"),
        ),
    }


class StateStore:
    """
    StateStore keeps a JSON snapshot of the manager state on disk.
    Writes go to a temporary file that replaces the snapshot in one
    step, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: "str | Path") -> "None":
        self._path = Path(path)

    @property
    def path(self) -> "Path":
        return self._path

    def save(self, state: "ManagerState") -> "None":
        payload = encode_snapshot(state.export())
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("state_saved", path=str(self._path))

    def load(self, state: "ManagerState") -> "bool":
        """
        loads the snapshot into state. Returns False when no snapshot
        exists yet.
        """
        if not self._path.exists():
            logger.info("state_snapshot_missing", path=str(self._path))
            return False

        with self._path.open(encoding="utf-8") as f:
            data = json.load(f)

        state.load(decode_snapshot(data))
        logger.info("state_loaded", path=str(self._path))
        return True
