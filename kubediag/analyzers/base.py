"""Analyzer base class and registry.

Every built-in analyzer inherits from Analyzer and inspects one category
of cluster resource. The AnalyzerRegistry separates the *core* battery
(run when no filter is given) from *additional* analyzers that only run
when named by a filter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator

from kubediag.errors import AnalyzerError
from kubediag.kube.client import ClusterClient
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig


def require_client(config: AnalyzerConfig) -> ClusterClient:
    if config.client is None:
        raise AnalyzerError("no cluster client configured")
    return config.client


def list_kwargs(config: AnalyzerConfig) -> dict[str, str]:
    """Keyword arguments for a ``list_*`` call honouring the label selector."""
    if config.label_selector:
        return {"label_selector": config.label_selector}
    return {}


class Analyzer(ABC):
    """Abstract base class for all built-in analyzers.

    Subclasses MUST define class-level attributes:
        name        -- filter name, e.g. "Pod"
        description -- one line shown by ``kubediag filters list``

    ``analyze`` MUST be read-only and MUST NOT keep mutable state between
    calls: it runs concurrently with every other analyzer.
    Raise ``AnalyzerError`` with ``partial_results`` to report a failure
    after some results were already gathered.
    """

    name: str
    description: str = ""

    @abstractmethod
    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        """Inspect the cluster and return one result per unhealthy object."""

    def run(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        return self.analyze(config)


class AnalyzerRegistry:
    """Name -> analyzer lookup split into core and additional sets."""

    def __init__(self) -> None:
        self._core: dict[str, Analyzer] = {}
        self._additional: dict[str, Analyzer] = {}

    def register(self, analyzer: Analyzer, *, core: bool = True) -> None:
        """Add *analyzer*; a later registration under the same name wins."""
        self._core.pop(analyzer.name, None)
        self._additional.pop(analyzer.name, None)
        if core:
            self._core[analyzer.name] = analyzer
        else:
            self._additional[analyzer.name] = analyzer

    def get(self, name: str) -> Analyzer | None:
        return self._core.get(name) or self._additional.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._core or name in self._additional

    def __iter__(self) -> Iterator[Analyzer]:
        for name in self.all_names():
            analyzer = self.get(name)
            if analyzer is not None:
                yield analyzer

    def core(self) -> list[Analyzer]:
        """Core analyzers in name order."""
        return [self._core[name] for name in sorted(self._core)]

    def core_names(self) -> list[str]:
        return sorted(self._core)

    def additional_names(self) -> list[str]:
        return sorted(self._additional)

    def all_names(self) -> list[str]:
        return sorted({*self._core, *self._additional})
