import random
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from keysmith.key_pool import KeyPool
from keysmith.models import CostBucket, CostReportPage
from keysmith.state import ManagerState

START = datetime(2025, 8, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """
    a settable clock so cooldowns and timestamps are deterministic.
    """

    def __init__(self, now: "datetime" = START) -> "None":
        self.now = now

    def __call__(self) -> "datetime":
        return self.now

    def advance(self, seconds: "float") -> "None":
        self.now += timedelta(seconds=seconds)


class SleepRecorder:
    """
    stands in for asyncio.sleep and records requested delays.
    """

    def __init__(self) -> "None":
        self.delays: "list[float]" = []

    async def __call__(self, delay: "float") -> "None":
        self.delays.append(delay)


class FakeSource:
    """
    A cost report source that replays a scripted list of outcomes:
    each entry is either a CostReportPage or an exception to raise.
    """

    def __init__(self, outcomes: "list[object]") -> "None":
        self._outcomes = list(outcomes)
        self.calls: "list[tuple[str, str, str | None]]" = []

    async def fetch_cost_report_page(
        self,
        admin_key: "str",
        starting_at: "str",
        page: "str | None" = None,
    ) -> "CostReportPage":
        self.calls.append((admin_key, starting_at, page))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> "None":
        pass


def make_page(
    results: "list[dict]",
    starting_at: "str" = "2025-08-01T00:00:00Z",
    ending_at: "str" = "2025-08-02T00:00:00Z",
    has_more: "bool" = False,
    next_page: "str | None" = None,
) -> "CostReportPage":
    return CostReportPage(
        buckets=[CostBucket(starting_at=starting_at, ending_at=ending_at, results=results)],
        has_more=has_more,
        next_page=next_page,
    )


def usd(amount: "str", description: "str" = "x") -> "dict":
    return {"currency": "USD", "amount": amount, "description": description}


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def clock() -> "FakeClock":
    return FakeClock()


@pytest.fixture()
def sleeps() -> "SleepRecorder":
    return SleepRecorder()


@pytest.fixture()
def state(clock: "FakeClock") -> "ManagerState":
    return ManagerState(pool=KeyPool(rng=random.Random(7)), clock=clock)
