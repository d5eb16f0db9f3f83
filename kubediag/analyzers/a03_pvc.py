"""A03 PersistentVolumeClaim — core analyzer.

Pending claims are explained with the most recent ``ProvisioningFailed``
event when one exists; lost claims name the volume they were bound to.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, CoreV1Api

from kubediag.analyzers.base import Analyzer, list_kwargs, require_client
from kubediag.llm.redaction import sensitive
from kubediag.models.analysis import AnalysisResult, AnalyzerConfig, Failure


async def _collect(api: ApiClient, config: AnalyzerConfig) -> tuple[list[Any], dict[tuple[str, str], str]]:
    v1 = CoreV1Api(api)
    if config.namespace:
        claims = await v1.list_namespaced_persistent_volume_claim(config.namespace, **list_kwargs(config))
    else:
        claims = await v1.list_persistent_volume_claim_for_all_namespaces(**list_kwargs(config))

    messages: dict[tuple[str, str], str] = {}
    for claim in claims.items or []:
        if claim.status is None or claim.status.phase != "Pending":
            continue
        events = await v1.list_namespaced_event(
            claim.metadata.namespace,
            field_selector=f"involvedObject.name={claim.metadata.name},involvedObject.kind=PersistentVolumeClaim",
        )
        failed = [e for e in events.items or [] if e.reason == "ProvisioningFailed" and e.message]
        if failed:
            messages[(claim.metadata.namespace, claim.metadata.name)] = failed[-1].message
    return list(claims.items or []), messages


def claim_failures(claim: Any, provisioning_message: str = "") -> list[Failure]:
    meta = claim.metadata
    phase = claim.status.phase if claim.status else ""
    masks = sensitive(meta.name, meta.namespace or "")
    if phase == "Pending":
        text = provisioning_message or f"PersistentVolumeClaim {meta.name} is Pending"
        return [Failure(text=text, sensitive=masks)]
    if phase == "Lost":
        volume = claim.spec.volume_name if claim.spec else ""
        return [
            Failure(
                text=f"PersistentVolumeClaim {meta.name} lost its bound volume {volume}".rstrip(),
                sensitive=masks,
            )
        ]
    return []


class PersistentVolumeClaimAnalyzer(Analyzer):
    name = "PersistentVolumeClaim"
    description = "Claims stuck in Pending or that lost their volume"

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        client = require_client(config)
        claims, messages = client.request(lambda api: _collect(api, config))
        results: list[AnalysisResult] = []
        for claim in claims:
            key = (claim.metadata.namespace, claim.metadata.name)
            failures = claim_failures(claim, messages.get(key, ""))
            if failures:
                results.append(AnalysisResult(kind=self.name, name=f"{key[0]}/{key[1]}", failures=failures))
        return results
