"""Prometheus metrics for kubediag.

A CLI run is short-lived, so metrics are exported by writing the default
registry to a node-exporter textfile rather than served over HTTP.
"""

from __future__ import annotations

from pathlib import Path

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, write_to_textfile

# Analyzer metrics
analyzer_runs_total = Counter(
    "kubediag_analyzer_runs_total",
    "Total analyzer and plugin executions",
    ["analyzer", "outcome"],
)

analyzer_duration_seconds = Histogram(
    "kubediag_analyzer_duration_seconds",
    "Analyzer wall-clock duration in seconds",
    ["analyzer"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

filter_unknown_total = Counter(
    "kubediag_filter_unknown_total",
    "Explicit filter names that matched no analyzer",
)

plugin_client_errors_total = Counter(
    "kubediag_plugin_client_errors_total",
    "Custom analyzer plugins whose connection could not be built",
)

# Explanation metrics
explanation_cache_hits_total = Counter(
    "kubediag_explanation_cache_hits_total",
    "Explanations served from the cache",
)

explanation_cache_misses_total = Counter(
    "kubediag_explanation_cache_misses_total",
    "Explanations that required a provider call",
)

cache_errors_total = Counter(
    "kubediag_cache_errors_total",
    "Cache load, decode or store failures",
    ["operation"],
)

provider_requests_total = Counter(
    "kubediag_provider_requests_total",
    "Completion requests sent to AI providers",
    ["provider", "outcome"],
)


def write_metrics(path: str | Path, registry: CollectorRegistry = REGISTRY) -> None:
    """Write *registry* in the Prometheus text format to *path*, atomically.

    Raises OSError when the file cannot be written.
    """
    write_to_textfile(str(path), registry)
