import random
from datetime import datetime, timedelta, timezone

import pytest

from keysmith.errors import AlreadyExistsError, NoKeysAvailableError, NotFoundError
from keysmith.key_pool import KeyPool
from keysmith.models import Assignment

T0 = datetime(2025, 8, 1, tzinfo=timezone.utc)


def _pool(*keys: "str") -> "KeyPool":
    pool = KeyPool(rng=random.Random(42))
    for key in keys:
        pool.add(key, T0)
    return pool


class TestKeyPoolMembership:
    def test_add_makes_key_active(self) -> "None":
        pool = _pool("k1")
        assert pool.active() == ["k1"]
        assert pool.status("k1") == "active"
        assert pool.created_at("k1") == T0

    def test_add_duplicate_raises(self) -> "None":
        pool = _pool("k1")
        with pytest.raises(AlreadyExistsError):
            pool.add("k1", T0)

    def test_retired_key_cannot_be_re_added(self) -> "None":
        pool = _pool("k1")
        pool.remove("k1")
        with pytest.raises(AlreadyExistsError):
            pool.add("k1", T0)
        assert pool.status("k1") == "inactive"

    def test_remove_moves_key_to_historical_once(self) -> "None":
        pool = _pool("k1", "k2")
        pool.remove("k1")

        assert pool.active() == ["k2"]
        assert pool.historical() == ["k1"]
        with pytest.raises(NotFoundError):
            pool.remove("k1")

    def test_remove_unknown_raises(self) -> "None":
        pool = _pool()
        with pytest.raises(NotFoundError):
            pool.remove("nope")

    def test_status_unknown_for_unseen_key(self) -> "None":
        assert _pool("k1").status("other") == "unknown"


class TestKeyPoolAssign:
    def test_assign_without_keys_raises(self) -> "None":
        pool = _pool()
        with pytest.raises(NoKeysAvailableError):
            pool.assign("node-a", T0)

    def test_assign_is_stable_per_caller(self) -> "None":
        pool = _pool("k1", "k2", "k3")
        first = pool.assign("node-a", T0)
        for i in range(20):
            assert pool.assign("node-a", T0 + timedelta(seconds=i)) == first

        # the original issue time is kept
        assignment = pool.assignment_for("node-a")
        assert assignment == Assignment("node-a", first, T0)

    def test_assign_keeps_retired_credential(self) -> "None":
        pool = _pool("k1", "k2")
        credential = pool.assign("node-a", T0)
        pool.remove(credential)
        assert pool.assign("node-a", T0) == credential

    def test_assign_only_picks_active_keys(self) -> "None":
        pool = _pool("k1", "k2", "k3")
        pool.remove("k2")
        picked = {pool.assign(f"node-{i}", T0) for i in range(60)}
        assert picked == {"k1", "k3"}

    def test_assign_spreads_callers_over_keys(self) -> "None":
        pool = _pool("k1", "k2", "k3")
        counts = {"k1": 0, "k2": 0, "k3": 0}
        for i in range(300):
            counts[pool.assign(f"node-{i}", T0)] += 1
        assert all(count > 50 for count in counts.values())

    def test_many_callers_share_a_key(self) -> "None":
        pool = _pool("k1")
        pool.assign("node-a", T0)
        pool.assign("node-b", T0 + timedelta(seconds=1))
        assert pool.callers_for("k1") == ["node-a", "node-b"]


class TestKeyPoolHistory:
    def test_history_sorted_by_issue_time(self) -> "None":
        pool = _pool("k1")
        pool.assign("node-z", T0 + timedelta(seconds=5))
        pool.assign("node-a", T0 + timedelta(seconds=10))
        pool.assign("node-m", T0)

        history = pool.assignment_history()
        assert [a.caller_id for a in history] == ["node-m", "node-z", "node-a"]

    def test_restore_rejects_overlapping_sets(self) -> "None":
        pool = KeyPool()
        with pytest.raises(ValueError):
            pool.restore({"k1": T0}, {"k1": T0}, [])
