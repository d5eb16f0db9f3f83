"""Filter resolution: which analyzers a run should execute.

Precedence is strict:
  1. Explicit filters (given on the command line), even a single one,
     fully override the configured active filters. Unknown names are
     reported in the error log; the valid names still run.
  2. Active filters from configuration. Unknown names are skipped
     silently, since they were not typed by the user.
  3. With neither, every core analyzer runs.

A name repeated in the chosen list is submitted once, at its first
position; running the same analyzer twice would only duplicate its
results.
"""

from __future__ import annotations

from collections.abc import Sequence

from kubediag.analyst.store import ResultStore
from kubediag.analyzers.base import Analyzer, AnalyzerRegistry
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import filter_unknown_total

_logger = get_logger("analyzer_selector")


def unknown_filter_message(name: str) -> str:
    return f'"{name}" filter does not exist. Please run kubediag filters list.'


def select_analyzers(
    registry: AnalyzerRegistry,
    explicit_filters: Sequence[str],
    active_filters: Sequence[str],
    store: ResultStore,
) -> list[Analyzer]:
    """Resolve filters to analyzers, recording unknown explicit names in *store*."""
    if not explicit_filters and not active_filters:
        _logger.debug("filters_none_selected", analyzers=registry.core_names())
        return registry.core()

    selected: list[Analyzer] = []
    seen: set[str] = set()

    if explicit_filters:
        _logger.debug("filters_explicit", filters=list(explicit_filters))
        for name in explicit_filters:
            analyzer = registry.get(name)
            if analyzer is None:
                filter_unknown_total.inc()
                store.add_error(unknown_filter_message(name))
                continue
            if name not in seen:
                seen.add(name)
                selected.append(analyzer)
        return selected

    _logger.debug("filters_active", filters=list(active_filters))
    for name in active_filters:
        analyzer = registry.get(name)
        if analyzer is not None and name not in seen:
            seen.add(name)
            selected.append(analyzer)
    return selected
