"""Custom analyzer plugins.

A plugin is an external service configured under ``custom_analyzers``::

    {"name": "cert-checker", "connection": {"url": "localhost", "port": 8085}}

Each plugin runs as one unit on the shared BoundedExecutor, so a plugin
that fails to connect, errors, or returns garbage costs only its own entry
in the error log.

Wire protocol: ``POST <url>:<port>/v1/analyze`` with an empty JSON body.
The response is ``{"result": {...}, "error": "..."}``; ``result`` carries
``kind``, ``name``, ``error`` (a list of ``{"text", "sensitive"}``),
``details`` and ``parentObject``. A non-empty ``error`` always wins: any
result sent alongside it is discarded.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

import httpx
from pydantic import ValidationError

from kubediag.analyst.executor import BoundedExecutor
from kubediag.analyst.store import ResultStore
from kubediag.errors import PluginConnectionError, PluginError
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure, SensitiveMatch
from kubediag.models.config import PluginConnection, PluginSpec
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import plugin_client_errors_total

_logger = get_logger("custom_analyzers")

_PLUGIN_TIMEOUT_SECONDS: float = 30.0
_ANALYZE_PATH: str = "/v1/analyze"


class PluginConnector(Protocol):
    def run(self) -> AnalysisResult: ...

    def close(self) -> None: ...


ClientFactory = Callable[[str, PluginConnection], PluginConnector]


def _base_url(connection: PluginConnection) -> httpx.URL:
    raw = connection.url.strip()
    if not raw or any(ch.isspace() for ch in raw):
        raise PluginConnectionError(f"invalid plugin url {connection.url!r}")
    if "://" not in raw:
        raw = f"http://{raw}"
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as exc:
        raise PluginConnectionError(f"invalid plugin url {connection.url!r}: {exc}") from exc
    if not url.host:
        raise PluginConnectionError(f"invalid plugin url {connection.url!r}: missing host")
    return url.copy_with(port=connection.port, path="/")


def parse_plugin_result(payload: object) -> AnalysisResult:
    """Convert a plugin's ``result`` object into an AnalysisResult."""
    if not isinstance(payload, dict):
        raise PluginError(f"plugin result must be an object, got {type(payload).__name__}")

    failures: list[Failure] = []
    for item in payload.get("error", []) or []:
        if not isinstance(item, dict) or not isinstance(item.get("text"), str):
            continue
        matches = [
            SensitiveMatch(unmasked=str(s.get("unmasked", "")), masked=str(s.get("masked", "")))
            for s in item.get("sensitive", []) or []
            if isinstance(s, dict)
        ]
        failures.append(Failure(text=item["text"], sensitive=matches))

    return AnalysisResult(
        kind=str(payload.get("kind", "") or ""),
        name=str(payload.get("name", "") or ""),
        failures=failures,
        details=str(payload.get("details", "") or ""),
        parent_object=str(payload.get("parentObject", "") or ""),
    )


class PluginClient:
    """Synchronous HTTP connection to one plugin.

    Construction validates the connection descriptor and raises
    PluginConnectionError when it is unusable.
    """

    def __init__(self, name: str, connection: PluginConnection, timeout: float = _PLUGIN_TIMEOUT_SECONDS) -> None:
        self._name = name
        self._client = httpx.Client(base_url=_base_url(connection), timeout=timeout)

    def run(self) -> AnalysisResult:
        """Ask the plugin to analyze. Raises PluginError on any failure."""
        try:
            response = self._client.post(_ANALYZE_PATH, json={})
        except httpx.HTTPError as exc:
            raise PluginError(str(exc)) from exc

        if response.is_error:
            raise PluginError(f"plugin request failed with status code: {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise PluginError(f"response body not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise PluginError("response body is not a JSON object")

        result = parse_plugin_result(body.get("result", {}))
        error = body.get("error")
        if error:
            raise PluginError(str(error), result=result)
        return result

    def close(self) -> None:
        self._client.close()


class PluginUnit:
    """Adapts one PluginSpec to the executor's WorkUnit interface."""

    def __init__(self, spec: PluginSpec, client_factory: ClientFactory = PluginClient) -> None:
        self.name = spec.name
        self._spec = spec
        self._client_factory = client_factory

    def run(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        try:
            client = self._client_factory(self._spec.name, self._spec.connection)
        except PluginConnectionError as exc:
            plugin_client_errors_total.inc()
            raise PluginError(f"client creation error: {exc}") from exc

        try:
            result = client.run()
        finally:
            client.close()

        if not result.kind:
            # Single-purpose plugins may leave kind empty.
            result.kind = self._spec.name
        return [result]


def parse_plugin_specs(entries: Sequence[object], store: ResultStore) -> list[PluginSpec]:
    """Validate raw ``custom_analyzers`` entries one by one.

    A malformed entry adds one error-log line and is skipped.
    """
    specs: list[PluginSpec] = []
    for index, entry in enumerate(entries):
        try:
            specs.append(PluginSpec.model_validate(entry))
        except ValidationError as exc:
            label = entry.get("name") if isinstance(entry, dict) else None
            errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
            store.add_error(f"[custom_analyzers] invalid entry {label or f'#{index}'}: {errors}")
    return specs


class CustomPluginRunner:
    """Runs configured plugins with their own concurrency limit."""

    def __init__(
        self,
        executor: BoundedExecutor,
        limit: int,
        client_factory: ClientFactory = PluginClient,
    ) -> None:
        self._executor = executor
        self._limit = limit
        self._client_factory = client_factory

    def run(self, specs: Sequence[PluginSpec]) -> None:
        if not specs:
            _logger.debug("custom_analyzers_none_found")
            return
        _logger.debug("custom_analyzers_found", names=[s.name for s in specs])
        units = [PluginUnit(spec, self._client_factory) for spec in specs]
        self._executor.run(units, AnalyzerConfig(client=None), self._limit)
