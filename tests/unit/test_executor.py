"""Tests for kubediag.analyst.executor — bounded fan-out and fault isolation."""

from __future__ import annotations

import threading
import time

import pytest

from kubediag.analyst.executor import DEFAULT_CONCURRENCY, MAX_CONCURRENCY, BoundedExecutor, clamp_concurrency
from kubediag.analyst.store import ResultStore
from kubediag.errors import AnalyzerError
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure

_CONFIG = AnalyzerConfig(client=None)


class _Unit:
    """Test unit: optional hook, fixed results, optional exception."""

    def __init__(
        self,
        name: str,
        results: list[AnalysisResult] | None = None,
        exc: Exception | None = None,
        hook=None,
    ) -> None:
        self.name = name
        self._results = results or []
        self._exc = exc
        self._hook = hook

    def run(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        if self._hook is not None:
            self._hook()
        if self._exc is not None:
            raise self._exc
        return list(self._results)


def _result(kind: str, name: str = "x") -> AnalysisResult:
    return AnalysisResult(kind=kind, name=name, failures=[Failure(text=f"{kind} broken")])


class _InFlight:
    """Counts concurrently running hooks and remembers the peak."""

    def __init__(self, seconds: float = 0.02) -> None:
        self._lock = threading.Lock()
        self.hold = lambda: time.sleep(seconds)
        self.current = 0
        self.peak = 0

    def __call__(self) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
        self.hold()
        with self._lock:
            self.current -= 1


class TestClampConcurrency:
    @pytest.mark.parametrize(
        ("limit", "expected"),
        [(0, DEFAULT_CONCURRENCY), (-5, DEFAULT_CONCURRENCY), (1, 1), (100, 100)],
    )
    def test_in_range_and_fallback(self, limit: int, expected: int) -> None:
        assert clamp_concurrency(limit) == expected

    def test_above_ceiling_is_capped(self) -> None:
        assert clamp_concurrency(1000) == MAX_CONCURRENCY


class TestBoundedExecutorConcurrency:
    def test_limit_one_serializes(self) -> None:
        tracker = _InFlight()
        store = ResultStore()
        units = [_Unit(f"u{i}", hook=tracker) for i in range(5)]

        BoundedExecutor(store).run(units, _CONFIG, 1)

        assert tracker.peak == 1

    def test_exactly_limit_units_in_flight(self) -> None:
        limit = 3
        barrier = threading.Barrier(limit, timeout=5)
        tracker = _InFlight()
        tracker.hold = barrier.wait

        def hook() -> None:
            # Passes only once `limit` units are running together.
            tracker()

        store = ResultStore()
        units = [_Unit(f"u{i}", hook=hook) for i in range(limit * 2)]

        BoundedExecutor(store).run(units, _CONFIG, limit)

        assert store.errors == []
        assert tracker.peak == limit

    def test_never_exceeds_limit(self) -> None:
        tracker = _InFlight()
        store = ResultStore()
        units = [_Unit(f"u{i}", hook=tracker) for i in range(20)]

        BoundedExecutor(store).run(units, _CONFIG, 4)

        assert 1 <= tracker.peak <= 4

    def test_run_blocks_until_all_recorded(self) -> None:
        store = ResultStore()
        units = [_Unit(f"u{i}", results=[_result("Pod", f"p{i}")], hook=lambda: time.sleep(0.01)) for i in range(8)]

        BoundedExecutor(store).run(units, _CONFIG, 3)

        assert sorted(r.name for r in store.results) == [f"p{i}" for i in range(8)]

    def test_empty_units_is_noop(self) -> None:
        store = ResultStore()
        BoundedExecutor(store, collect_stats=True).run([], _CONFIG, 5)
        assert len(store) == 0
        assert store.stats == []


class TestBoundedExecutorFaults:
    def test_failing_unit_does_not_affect_siblings(self) -> None:
        store = ResultStore()
        units = [
            _Unit("Pod", results=[_result("Pod")]),
            _Unit("Node", exc=RuntimeError("boom")),
            _Unit("Deployment", results=[_result("Deployment")]),
        ]

        BoundedExecutor(store).run(units, _CONFIG, 10)

        assert sorted(r.kind for r in store.results) == ["Deployment", "Pod"]
        assert store.errors == ["[Node] boom"]

    def test_partial_results_are_merged(self) -> None:
        store = ResultStore()
        partial = [_result("Pod", "a"), _result("Pod", "b")]
        units = [_Unit("Pod", exc=AnalyzerError("listing events failed", partial_results=partial))]

        BoundedExecutor(store).run(units, _CONFIG, 2)

        assert [r.name for r in store.results] == ["a", "b"]
        assert store.errors == ["[Pod] listing events failed"]

    def test_every_failure_is_recorded_once(self) -> None:
        store = ResultStore()
        units = [_Unit(f"u{i}", exc=ValueError(f"bad {i}")) for i in range(6)]

        BoundedExecutor(store).run(units, _CONFIG, 2)

        assert sorted(store.errors) == sorted(f"[u{i}] bad {i}" for i in range(6))


class TestBoundedExecutorStats:
    def test_stats_collected_when_enabled(self) -> None:
        store = ResultStore()
        units = [_Unit("Pod"), _Unit("Node", exc=RuntimeError("x"))]

        BoundedExecutor(store, collect_stats=True).run(units, _CONFIG, 2)

        assert sorted(s.analyzer for s in store.stats) == ["Node", "Pod"]
        assert all(s.duration_seconds >= 0 for s in store.stats)

    def test_stats_not_collected_by_default(self) -> None:
        store = ResultStore()
        BoundedExecutor(store).run([_Unit("Pod")], _CONFIG, 2)
        assert store.stats == []
