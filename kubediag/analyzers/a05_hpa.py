"""A05 HorizontalPodAutoScaler — additional analyzer, run only when filtered.

Reports autoscalers pinned at their replica ceiling and autoscalers whose
scale target does not exist.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, AppsV1Api, AutoscalingV1Api
from kubernetes_asyncio.client.exceptions import ApiException

from kubediag.analyzers.base import Analyzer, list_kwargs, require_client
from kubediag.llm.redaction import sensitive
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure

_READERS: dict[str, str] = {
    "Deployment": "read_namespaced_deployment",
    "StatefulSet": "read_namespaced_stateful_set",
    "ReplicaSet": "read_namespaced_replica_set",
}


async def _collect(api: ApiClient, config: AnalyzerConfig) -> tuple[list[Any], set[tuple[str, str]]]:
    autoscaling = AutoscalingV1Api(api)
    apps = AppsV1Api(api)
    if config.namespace:
        response = await autoscaling.list_namespaced_horizontal_pod_autoscaler(config.namespace, **list_kwargs(config))
    else:
        response = await autoscaling.list_horizontal_pod_autoscaler_for_all_namespaces(**list_kwargs(config))

    missing: set[tuple[str, str]] = set()
    for hpa in response.items or []:
        ref = hpa.spec.scale_target_ref
        reader = _READERS.get(ref.kind)
        if reader is None:
            continue
        try:
            await getattr(apps, reader)(ref.name, hpa.metadata.namespace)
        except ApiException as exc:
            if exc.status != 404:
                raise
            missing.add((hpa.metadata.namespace, hpa.metadata.name))
    return list(response.items or []), missing


def hpa_failures(hpa: Any, target_missing: bool = False) -> list[Failure]:
    meta = hpa.metadata
    ref = hpa.spec.scale_target_ref
    masks = sensitive(meta.name, ref.name, meta.namespace or "")
    texts: list[str] = []
    if target_missing:
        texts.append(f"HorizontalPodAutoscaler uses {ref.kind}/{ref.name} as ScaleTargetRef which does not exist.")
    current = (hpa.status.current_replicas or 0) if hpa.status else 0
    if hpa.spec.max_replicas and current >= hpa.spec.max_replicas:
        texts.append(
            f"HorizontalPodAutoscaler {meta.name} is running at its maximum of {hpa.spec.max_replicas} replicas"
        )
    return [Failure(text=text, sensitive=list(masks)) for text in texts]


class HorizontalPodAutoscalerAnalyzer(Analyzer):
    name = "HorizontalPodAutoScaler"
    description = "Autoscalers at their ceiling or pointing at missing targets"

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        client = require_client(config)
        autoscalers, missing = client.request(lambda api: _collect(api, config))
        results: list[AnalysisResult] = []
        for hpa in autoscalers:
            key = (hpa.metadata.namespace, hpa.metadata.name)
            failures = hpa_failures(hpa, key in missing)
            if failures:
                results.append(AnalysisResult(kind=self.name, name=f"{key[0]}/{key[1]}", failures=failures))
        return results
