"""Unit tests for the bucket table."""

from __future__ import annotations

import pytest

from tokengate.core.buckets import BucketTable
from tokengate.core.models import Bucket, ConfigurationError, InvalidStateError, LimitDefinition


def _limit(limit_id: str, interval: int, tokens: int) -> LimitDefinition:
    return LimitDefinition(id=limit_id, interval_seconds=interval, tokens_per_interval=tokens)


@pytest.fixture()
def table(two_limits: list[LimitDefinition]) -> BucketTable:
    t = BucketTable()
    t.load_config(two_limits)
    return t


class TestLoadConfig:
    def test_builds_one_bucket_per_definition(self, table: BucketTable) -> None:
        assert len(table) == 2
        assert "ID1" in table
        assert "ID2" in table
        snap = table.get("ID1")
        assert snap is not None
        assert snap.capacity == 10
        assert snap.interval_millis == 5000
        assert snap.token_count is None

    def test_does_not_start(self, table: BucketTable) -> None:
        assert not table.started
        assert table.earliest_refill_at() is None

    def test_empty_raises(self) -> None:
        t = BucketTable()
        with pytest.raises(ConfigurationError):
            t.load_config([])
        assert len(t) == 0

    def test_malformed_entry_leaves_table_empty(self, table: BucketTable) -> None:
        with pytest.raises(ConfigurationError):
            table.load_config([_limit("ok", 1, 1), {"id": "raw"}])  # type: ignore[list-item]
        assert len(table) == 0
        with pytest.raises(InvalidStateError, match="No configuration"):
            table.start(0)

    def test_duplicate_ids_last_wins(self) -> None:
        t = BucketTable()
        t.load_config([_limit("a", 1, 1), _limit("a", 2, 5)])
        assert len(t) == 1
        snap = t.get("a")
        assert snap is not None
        assert snap.capacity == 5
        t.start(0)
        assert t.earliest_refill_at() == 2000

    def test_reload_replaces_wholesale_and_stops(self, table: BucketTable) -> None:
        table.start(0)
        table.load_config([_limit("ID3", 1, 1)])
        assert not table.started
        assert "ID1" not in table
        assert "ID3" in table
        assert table.earliest_refill_at() is None


class TestStartStop:
    def test_start_fills_and_pins_phase(self, table: BucketTable) -> None:
        table.start(1_000)
        assert table.started
        one = table.get("ID1")
        two = table.get("ID2")
        assert one is not None and two is not None
        assert one.token_count == 10
        assert one.next_refill_at_millis == 6_000
        assert two.token_count == 100
        assert two.next_refill_at_millis == 11_000
        assert table.earliest_refill_at() == 6_000

    def test_start_without_config(self) -> None:
        with pytest.raises(InvalidStateError, match="No configuration loaded"):
            BucketTable().start(0)

    def test_start_twice(self, table: BucketTable) -> None:
        table.start(0)
        with pytest.raises(InvalidStateError, match="already started"):
            table.start(0)

    def test_stop_is_idempotent_and_keeps_buckets(self, table: BucketTable) -> None:
        table.start(0)
        table.stop()
        table.stop()
        assert not table.started
        assert len(table) == 2

    def test_restart_reinitializes(self, table: BucketTable) -> None:
        table.start(0)
        for _ in range(10):
            table.allow("ID1")
        table.stop()
        table.start(50_000)
        snap = table.get("ID1")
        assert snap is not None
        assert snap.token_count == 10
        assert snap.next_refill_at_millis == 55_000

    def test_equal_intervals_refill_in_lockstep(self) -> None:
        t = BucketTable()
        t.load_config([_limit("a", 3, 1), _limit("b", 3, 1)])
        t.start(0)
        t.refill_due(3_000)
        a, b = t.get("a"), t.get("b")
        assert a is not None and b is not None
        assert a.next_refill_at_millis == b.next_refill_at_millis == 6_000


class TestAllow:
    def test_fails_closed_when_stopped(self, table: BucketTable) -> None:
        assert not table.allow("ID1")
        table.start(0)
        table.stop()
        assert not table.allow("ID1")

    def test_unknown_id(self, table: BucketTable) -> None:
        table.start(0)
        assert not table.allow("nobody")

    def test_exact_budget(self, table: BucketTable) -> None:
        table.start(0)
        results = [table.allow("ID1") for _ in range(11)]
        assert results == [True] * 10 + [False]

    def test_zero_capacity_always_denies(self) -> None:
        t = BucketTable()
        t.load_config([_limit("none", 1, 0)])
        t.start(0)
        assert not t.allow("none")

    def test_independent_buckets(self, table: BucketTable) -> None:
        table.start(0)
        for _ in range(15):
            table.allow("ID1")
        snap = table.get("ID2")
        assert snap is not None
        assert snap.token_count == 100
        assert snap.next_refill_at_millis == 10_000


class TestRefillDue:
    def test_nothing_due(self, table: BucketTable) -> None:
        table.start(0)
        assert table.refill_due(4_999) == 0
        assert table.earliest_refill_at() == 5_000

    def test_due_at_exact_instant(self, table: BucketTable) -> None:
        table.start(0)
        for _ in range(12):
            table.allow("ID1")
        assert table.refill_due(5_000) == 1
        snap = table.get("ID1")
        assert snap is not None
        assert snap.token_count == 10
        assert snap.next_refill_at_millis == 10_000

    def test_only_due_buckets_refill(self, table: BucketTable) -> None:
        table.start(0)
        table.allow("ID2")
        table.refill_due(6_000)
        snap = table.get("ID2")
        assert snap is not None
        assert snap.token_count == 99
        assert table.earliest_refill_at() == 10_000

    def test_overdue_bucket_catches_up_once_per_interval(self, table: BucketTable) -> None:
        table.start(0)
        # 23s later ID1 (5s) missed four intervals, ID2 (10s) missed two.
        assert table.refill_due(23_000) == 6
        one, two = table.get("ID1"), table.get("ID2")
        assert one is not None and two is not None
        assert one.next_refill_at_millis == 25_000
        assert two.next_refill_at_millis == 30_000
        assert table.earliest_refill_at() == 25_000

    def test_refill_resets_regardless_of_deficit(self, table: BucketTable) -> None:
        table.start(0)
        for _ in range(1_000):
            table.allow("ID1")
        table.refill_due(5_000)
        results = [table.allow("ID1") for _ in range(11)]
        assert results == [True] * 10 + [False]

    def test_earliest_empty_table(self) -> None:
        assert BucketTable().earliest_refill_at() is None

    def test_failed_refill_keeps_bucket_scheduled(
        self, table: BucketTable, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        table.start(0)

        def broken(bucket: Bucket) -> None:
            raise RuntimeError("transient")

        with monkeypatch.context() as m:
            m.setattr(Bucket, "refill", broken)
            with pytest.raises(RuntimeError):
                table.refill_due(5_000)

        assert table.earliest_refill_at() == 5_000
        assert table.refill_due(5_000) == 1
        snap = table.get("ID1")
        assert snap is not None
        assert snap.next_refill_at_millis == 10_000
        assert table.earliest_refill_at() == 10_000

    def test_unstarted_bucket_cannot_be_scheduled(self) -> None:
        bucket = Bucket.from_definition(_limit("a", 1, 1))
        with pytest.raises(InvalidStateError, match="not been started"):
            BucketTable()._push(bucket)
