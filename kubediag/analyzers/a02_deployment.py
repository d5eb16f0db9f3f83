"""A02 Deployment — core analyzer.

Reports deployments whose ready replica count differs from the desired
count.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, AppsV1Api

from kubediag.analyzers.base import Analyzer, list_kwargs, require_client
from kubediag.llm.redaction import sensitive
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure


async def _list_deployments(api: ApiClient, config: AnalyzerConfig) -> list[Any]:
    apps = AppsV1Api(api)
    if config.namespace:
        response = await apps.list_namespaced_deployment(config.namespace, **list_kwargs(config))
    else:
        response = await apps.list_deployment_for_all_namespaces(**list_kwargs(config))
    return list(response.items or [])


def deployment_failures(deployment: Any) -> list[Failure]:
    meta = deployment.metadata
    desired = deployment.spec.replicas if deployment.spec and deployment.spec.replicas is not None else 1
    ready = (deployment.status.ready_replicas or 0) if deployment.status else 0
    if ready == desired:
        return []
    return [
        Failure(
            text=f"Deployment {meta.namespace}/{meta.name} has {desired} replicas but {ready} are ready",
            sensitive=sensitive(meta.name, meta.namespace or ""),
        )
    ]


class DeploymentAnalyzer(Analyzer):
    name = "Deployment"
    description = "Deployments with fewer ready replicas than desired"

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        client = require_client(config)
        deployments = client.request(lambda api: _list_deployments(api, config))
        results: list[AnalysisResult] = []
        for deployment in deployments:
            failures = deployment_failures(deployment)
            if failures:
                results.append(
                    AnalysisResult(
                        kind=self.name,
                        name=f"{deployment.metadata.namespace}/{deployment.metadata.name}",
                        failures=failures,
                    )
                )
        return results
