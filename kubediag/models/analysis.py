"""Analysis data structures shared by analyzers, the executor and the explainer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubediag.kube.client import ClusterClient


class AnalysisStatus(StrEnum):
    """Overall outcome of a run."""

    OK = "OK"
    PROBLEM_DETECTED = "ProblemDetected"


@dataclass(frozen=True)
class SensitiveMatch:
    """A literal substring that must not leave the process unmasked.

    ``masked`` replaces ``unmasked`` before a prompt is sent to a provider
    and is swapped back in the provider's answer.
    """

    unmasked: str
    masked: str


@dataclass
class Failure:
    """One human-readable problem found on a resource."""

    text: str
    sensitive: list[SensitiveMatch] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Findings for one inspected entity.

    ``kind`` doubles as the report key and the prompt-template selector.
    ``details`` stays empty until the explanation step fills it in.
    """

    kind: str
    name: str = ""
    failures: list[Failure] = field(default_factory=list)
    details: str = ""
    parent_object: str = ""

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class AnalysisStats:
    """Wall-clock duration of one executed analyzer or plugin."""

    analyzer: str
    duration_seconds: float


@dataclass(frozen=True)
class AnalyzerConfig:
    """Immutable input handed to every analyzer unit.

    Units may run concurrently, so nothing reachable from here may be
    mutated by a unit.
    """

    client: ClusterClient | None
    namespace: str = ""
    label_selector: str = ""
    openapi_schema: dict[str, object] | None = None
