"""Exception hierarchy for kubediag.

Errors attributable to a single unit of concurrent work (one analyzer, one
plugin) are caught by the executor and recorded in the run's error log.
Only errors about global preconditions escape ``create_analysis`` and
only remote-provider errors escape ``get_ai_results``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubediag.models.analysis import AnalysisResult


class KubeDiagError(Exception):
    """Base class for every error raised by kubediag."""


# ---------------------------------------------------------------------------
# Fatal construction errors
# ---------------------------------------------------------------------------


class ClusterClientError(KubeDiagError):
    """The Kubernetes client could not be configured."""


class ProviderConfigError(KubeDiagError):
    """Explanations were requested but no usable AI provider is configured."""


class CacheConfigError(KubeDiagError):
    """The configured cache backend is unknown or cannot be opened."""


# ---------------------------------------------------------------------------
# Task-level errors
# ---------------------------------------------------------------------------


class AnalyzerError(KubeDiagError):
    """Raised by an analyzer that failed part-way through.

    Results gathered before the failure may be attached; the executor
    still merges them into the report.
    """

    def __init__(self, message: str, partial_results: list[AnalysisResult] | None = None) -> None:
        super().__init__(message)
        self.partial_results: list[AnalysisResult] = list(partial_results or [])


class PluginConnectionError(KubeDiagError):
    """A custom analyzer plugin's connection descriptor is unusable."""


class PluginError(KubeDiagError):
    """A custom analyzer plugin reported an error.

    ``result`` holds whatever the plugin returned alongside the error. It is
    never merged into the report.
    """

    def __init__(self, message: str, result: AnalysisResult | None = None) -> None:
        super().__init__(message)
        self.result = result


# ---------------------------------------------------------------------------
# Remote completion errors
# ---------------------------------------------------------------------------


class ProviderError(KubeDiagError):
    """A completion request to an AI provider failed.

    ``status_code`` is set when the provider answered with an HTTP error.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExplanationError(KubeDiagError):
    """Base class for errors that abort the explanation step."""

    def __init__(self, provider: str, cause: Exception) -> None:
        super().__init__(self._format(provider, cause))
        self.provider = provider
        self.cause = cause

    @staticmethod
    def _format(provider: str, cause: Exception) -> str:
        return f"failed while calling AI provider {provider}: {cause}"


class QuotaExhaustedError(ExplanationError):
    """The provider rejected the request because a rate or usage quota ran out.

    Retrying later may succeed.
    """

    @staticmethod
    def _format(provider: str, cause: Exception) -> str:
        return f"exhausted API quota for AI provider {provider}: {cause}"


class ProviderCallError(ExplanationError):
    """Any other provider failure."""
