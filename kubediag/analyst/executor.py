"""Bounded concurrent executor for analyzer units.

Runs any collection of named units (built-in analyzers and custom analyzer
plugins alike) on OS threads, with at most ``limit`` units in flight.

Launch policy:
  - A slot is acquired on the submitting thread before each unit starts;
    submission blocks while all slots are taken.
  - A slot is released only after the unit's outcome (results, error and
    timing) has been written to the ResultStore.
  - ``run`` returns once every launched unit has recorded its outcome.

There is no per-unit timeout and no cancellation: a unit that never
returns holds its slot for the rest of the run.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol, runtime_checkable

from kubediag.analyst.store import ResultStore
from kubediag.errors import AnalyzerError
from kubediag.models.analysis import AnalysisResult, AnalysisStats, AnalyzerConfig
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import analyzer_duration_seconds, analyzer_runs_total

_logger = get_logger("executor")

DEFAULT_CONCURRENCY: int = 10
MAX_CONCURRENCY: int = 100


@runtime_checkable
class WorkUnit(Protocol):
    """One named, independent unit of analysis work."""

    name: str

    def run(self, config: AnalyzerConfig) -> list[AnalysisResult]: ...


def clamp_concurrency(limit: int) -> int:
    """Map a configured limit onto the allowed range.

    Non-positive values fall back to the default; values above the ceiling
    are capped so a bad setting cannot flood the host or the API server.
    """
    if limit <= 0:
        return DEFAULT_CONCURRENCY
    return min(limit, MAX_CONCURRENCY)


class BoundedExecutor:
    """Fans units out over a thread pool gated by a counting semaphore.

    A unit that raises never affects its siblings: the exception becomes a
    single ``"[<name>] <error>"`` entry in the store's error log. Results
    attached to an ``AnalyzerError`` are still merged.
    """

    def __init__(self, store: ResultStore, *, collect_stats: bool = False) -> None:
        self._store = store
        self._collect_stats = collect_stats

    def run(self, units: Sequence[WorkUnit], config: AnalyzerConfig, limit: int) -> None:
        """Execute *units* and block until each one has recorded its outcome."""
        if not units:
            return

        concurrency = clamp_concurrency(limit)
        slots = threading.BoundedSemaphore(concurrency)
        futures: list[Future[None]] = []

        _logger.debug("executor_started", units=len(units), concurrency=concurrency)

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="kubediag-unit") as pool:
            for unit in units:
                slots.acquire()
                try:
                    futures.append(pool.submit(self._execute, unit, config, slots))
                except BaseException:
                    slots.release()
                    raise
            wait(futures)

        for future in futures:
            # _execute records every unit exception itself; anything left
            # here is a bug in the recording path.
            exc = future.exception()
            if exc is not None:
                _logger.error("executor_unit_recording_failed", error=str(exc))

        _logger.debug("executor_finished", units=len(units))

    def _execute(self, unit: WorkUnit, config: AnalyzerConfig, slots: threading.BoundedSemaphore) -> None:
        try:
            _logger.debug("analyzer_launched", analyzer=unit.name)
            start = time.monotonic()
            results: list[AnalysisResult] = []
            error: str | None = None
            try:
                results = list(unit.run(config))
            except AnalyzerError as exc:
                results = exc.partial_results
                error = f"[{unit.name}] {exc}"
            except Exception as exc:
                error = f"[{unit.name}] {exc}"
            elapsed = time.monotonic() - start

            stat = AnalysisStats(analyzer=unit.name, duration_seconds=elapsed) if self._collect_stats else None
            self._store.record(results, error=error, stat=stat)

            outcome = "error" if error is not None else "success"
            analyzer_runs_total.labels(analyzer=unit.name, outcome=outcome).inc()
            analyzer_duration_seconds.labels(analyzer=unit.name).observe(elapsed)
            if error is not None:
                _logger.debug("analyzer_completed_with_errors", analyzer=unit.name, error=error)
            else:
                _logger.debug("analyzer_completed", analyzer=unit.name, results=len(results))
        finally:
            slots.release()
