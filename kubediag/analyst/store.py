"""Thread-safe accumulator for analysis results, error strings and stats."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from kubediag.models.analysis import AnalysisResult, AnalysisStats


class ResultStore:
    """Collects outcomes from concurrently running analyzer units.

    A single lock guards all three containers. It is held only while
    appending, never while a unit runs, and every ``record`` call lands as
    one atomic write so sibling units never observe a half-recorded outcome.
    Append order across units is unspecified.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: list[AnalysisResult] = []
        self._errors: list[str] = []
        self._stats: list[AnalysisStats] = []

    def record(
        self,
        results: Iterable[AnalysisResult] = (),
        error: str | None = None,
        stat: AnalysisStats | None = None,
    ) -> None:
        """Atomically append one unit's results, error and stat."""
        results = list(results)
        with self._lock:
            self._results.extend(results)
            if error is not None:
                self._errors.append(error)
            if stat is not None:
                self._stats.append(stat)

    def add_error(self, error: str) -> None:
        with self._lock:
            self._errors.append(error)

    @property
    def results(self) -> list[AnalysisResult]:
        """Snapshot of the results list. The result objects themselves are shared."""
        with self._lock:
            return list(self._results)

    @property
    def errors(self) -> list[str]:
        with self._lock:
            return list(self._errors)

    @property
    def stats(self) -> list[AnalysisStats]:
        with self._lock:
            return list(self._stats)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
