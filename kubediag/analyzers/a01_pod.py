"""A01 Pod — core analyzer.

Reports pods that cannot be scheduled, containers stuck in a failing
waiting state, containers that were OOM killed, and running containers
that never became ready.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, CoreV1Api

from kubediag.analyzers.base import Analyzer, list_kwargs, require_client
from kubediag.llm.redaction import sensitive
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure

# Waiting reasons that mean the container will not start without intervention.
_FAILING_WAIT_REASONS: frozenset[str] = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "InvalidImageName",
        "CreateContainerConfigError",
        "CreateContainerError",
        "RunContainerError",
    }
)


async def _list_pods(api: ApiClient, config: AnalyzerConfig) -> list[Any]:
    v1 = CoreV1Api(api)
    if config.namespace:
        response = await v1.list_namespaced_pod(config.namespace, **list_kwargs(config))
    else:
        response = await v1.list_pod_for_all_namespaces(**list_kwargs(config))
    return list(response.items or [])


def _container_failures(pod_name: str, statuses: list[Any], phase: str) -> list[str]:
    texts: list[str] = []
    for status in statuses:
        state = status.state
        last = status.last_state
        waiting = state.waiting if state is not None else None

        if waiting is not None and waiting.reason in _FAILING_WAIT_REASONS:
            terminated = last.terminated if last is not None else None
            if waiting.reason == "CrashLoopBackOff" and terminated is not None:
                texts.append(
                    f"the last termination reason is {terminated.reason} container={status.name} pod={pod_name}"
                )
            elif waiting.message:
                texts.append(waiting.message)
            else:
                texts.append(f"container {status.name} is waiting: {waiting.reason}")
            continue

        if last is not None and last.terminated is not None and last.terminated.reason == "OOMKilled":
            texts.append(
                f"container {status.name} in pod {pod_name} was OOMKilled (restarts={status.restart_count or 0})"
            )
            continue

        running = state.running if state is not None else None
        if phase == "Running" and running is not None and not status.ready:
            texts.append(f"container {status.name} in pod {pod_name} is running but not ready")
    return texts


def pod_failures(pod: Any) -> list[Failure]:
    """Return the failures found on one V1Pod."""
    meta = pod.metadata
    status = pod.status
    if status is None:
        return []

    texts: list[str] = []
    phase = status.phase or ""

    if phase == "Pending":
        for condition in status.conditions or []:
            if condition.type == "PodScheduled" and condition.reason == "Unschedulable" and condition.message:
                texts.append(condition.message)

    statuses = list(status.init_container_statuses or []) + list(status.container_statuses or [])
    texts.extend(_container_failures(meta.name, statuses, phase))

    masks = sensitive(meta.name, meta.namespace or "")
    return [Failure(text=text, sensitive=list(masks)) for text in texts]


def _owner(pod: Any) -> str:
    for ref in pod.metadata.owner_references or []:
        return f"{ref.kind}/{ref.name}"
    return ""


class PodAnalyzer(Analyzer):
    """Inspects every pod in scope."""

    name = "Pod"
    description = "Unschedulable pods and failing, OOM killed or unready containers"

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        client = require_client(config)
        pods = client.request(lambda api: _list_pods(api, config))

        results: list[AnalysisResult] = []
        for pod in pods:
            failures = pod_failures(pod)
            if not failures:
                continue
            results.append(
                AnalysisResult(
                    kind=self.name,
                    name=f"{pod.metadata.namespace}/{pod.metadata.name}",
                    failures=failures,
                    parent_object=_owner(pod),
                )
            )
        return results
