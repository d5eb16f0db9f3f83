"""A04 Node — core analyzer.

Reports nodes that are not Ready and nodes under memory, disk or PID
pressure. Nodes are cluster scoped: namespace filters do not apply.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, CoreV1Api

from kubediag.analyzers.base import Analyzer, list_kwargs, require_client
from kubediag.llm.redaction import sensitive
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure

# Conditions that are unhealthy when their status is "True".
_PRESSURE_CONDITIONS: frozenset[str] = frozenset(
    {"MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable"}
)


async def _list_nodes(api: ApiClient, config: AnalyzerConfig) -> list[Any]:
    response = await CoreV1Api(api).list_node(**list_kwargs(config))
    return list(response.items or [])


def node_failures(node: Any) -> list[Failure]:
    name = node.metadata.name
    conditions = (node.status.conditions if node.status else None) or []
    texts: list[str] = []
    for condition in conditions:
        unhealthy = (condition.type == "Ready" and condition.status != "True") or (
            condition.type in _PRESSURE_CONDITIONS and condition.status == "True"
        )
        if not unhealthy:
            continue
        text = f"{name} has condition of type {condition.type}, reason {condition.reason}"
        if condition.message:
            text += f": {condition.message}"
        texts.append(text)
    masks = sensitive(name)
    return [Failure(text=text, sensitive=list(masks)) for text in texts]


class NodeAnalyzer(Analyzer):
    name = "Node"
    description = "Nodes that are not Ready or report resource pressure"

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        client = require_client(config)
        nodes = client.request(lambda api: _list_nodes(api, config))
        results: list[AnalysisResult] = []
        for node in nodes:
            failures = node_failures(node)
            if failures:
                results.append(AnalysisResult(kind=self.name, name=node.metadata.name, failures=failures))
        return results
