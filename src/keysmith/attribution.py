from typing import Callable, Iterable

from keysmith.models import CostRecord

# maps an ingested record to the credentials whose per-key index
# receives a copy of it
AttributionStrategy = Callable[[CostRecord, Iterable[str]], Iterable[str]]


def broadcast_to_active(
    record: "CostRecord",
    active_keys: "Iterable[str]",
) -> "list[str]":
    """
    attributes every record to every active credential. The cost
    report is grouped by workspace, and workspaces are not mapped
    to credentials, so each active key sees the full cost stream.
    """
    return list(active_keys)
