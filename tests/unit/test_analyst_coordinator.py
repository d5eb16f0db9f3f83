"""Tests for kubediag.analyst.coordinator — AnalysisRun lifecycle."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from kubediag.analyst.coordinator import AnalysisOptions, AnalysisRun, create_analysis, resolve_provider
from kubediag.analyzers.base import Analyzer, AnalyzerRegistry
from kubediag.cache.store import FileCache
from kubediag.errors import ClusterClientError, ProviderConfigError
from kubediag.llm.client import NoOpClient, OpenAICompatibleClient
from kubediag.models.analysis import AnalysisResult, AnalysisStatus, AnalyzerConfig, Failure
from kubediag.models.config import AIConfig, AIProvider, KubeDiagConfig, PluginConnection


class _StaticAnalyzer(Analyzer):
    def __init__(self, name: str, failures: list[str] | None = None, exc: Exception | None = None) -> None:
        self.name = name
        self._failures = failures or []
        self._exc = exc
        self.seen: list[AnalyzerConfig] = []

    def analyze(self, config: AnalyzerConfig) -> list[AnalysisResult]:
        self.seen.append(config)
        if self._exc is not None:
            raise self._exc
        if not self._failures:
            return []
        failures = [Failure(text) for text in self._failures]
        return [AnalysisResult(kind=self.name, name=f"default/{self.name.lower()}", failures=failures)]


def _registry(*analyzers: Analyzer, additional: tuple[Analyzer, ...] = ()) -> AnalyzerRegistry:
    registry = AnalyzerRegistry()
    for analyzer in analyzers:
        registry.register(analyzer)
    for analyzer in additional:
        registry.register(analyzer, core=False)
    return registry


def _cluster() -> MagicMock:
    client = MagicMock()
    client.host = "https://k8s.local"
    client.fetch_openapi_schema.return_value = {"swagger": "2.0"}
    return client


def _connect(client: MagicMock | None = None) -> AsyncMock:
    return AsyncMock(return_value=client or _cluster())


def _noop_config() -> KubeDiagConfig:
    return KubeDiagConfig(ai=AIConfig(providers=[AIProvider(name="noop")], default_provider="noop"))


# ---------------------------------------------------------------------------
# resolve_provider
# ---------------------------------------------------------------------------


class TestResolveProvider:
    def test_backend_wins(self) -> None:
        ai = AIConfig(providers=[AIProvider(name="openai"), AIProvider(name="ollama")], default_provider="openai")
        assert resolve_provider(ai, "ollama").name == "ollama"

    def test_default_provider(self) -> None:
        ai = AIConfig(providers=[AIProvider(name="openai"), AIProvider(name="ollama")], default_provider="ollama")
        assert resolve_provider(ai).name == "ollama"

    def test_falls_back_to_openai(self) -> None:
        ai = AIConfig(providers=[AIProvider(name="ollama"), AIProvider(name="openai")])
        assert resolve_provider(ai).name == "openai"

    def test_no_providers(self) -> None:
        with pytest.raises(ProviderConfigError):
            resolve_provider(AIConfig())

    def test_named_provider_missing(self) -> None:
        with pytest.raises(ProviderConfigError, match="azure"):
            resolve_provider(AIConfig(providers=[AIProvider(name="openai")]), "azure")


# ---------------------------------------------------------------------------
# create_analysis
# ---------------------------------------------------------------------------


class TestCreateAnalysis:
    @pytest.mark.asyncio
    async def test_cluster_client_failure_is_fatal(self, tmp_path: Path) -> None:
        connect = AsyncMock(side_effect=ClusterClientError("no kubeconfig"))
        with pytest.raises(ClusterClientError):
            await create_analysis(KubeDiagConfig(), AnalysisOptions(), cache=FileCache(tmp_path), connect_fn=connect)

    @pytest.mark.asyncio
    async def test_without_explain_needs_no_provider(self, tmp_path: Path) -> None:
        run = await create_analysis(
            KubeDiagConfig(), AnalysisOptions(), registry=_registry(), cache=FileCache(tmp_path), connect_fn=_connect()
        )
        assert run.provider_name == ""
        await run.close()

    @pytest.mark.asyncio
    async def test_explain_without_provider_is_fatal(self, tmp_path: Path) -> None:
        with pytest.raises(ProviderConfigError):
            await create_analysis(
                KubeDiagConfig(), AnalysisOptions(explain=True), cache=FileCache(tmp_path), connect_fn=_connect()
            )

    @pytest.mark.asyncio
    async def test_no_cache_disables_cache(self, tmp_path: Path) -> None:
        cache = FileCache(tmp_path)
        run = await create_analysis(
            KubeDiagConfig(), AnalysisOptions(no_cache=True), registry=_registry(), cache=cache, connect_fn=_connect()
        )
        assert cache.is_disabled()
        await run.close()

    @pytest.mark.asyncio
    async def test_http_headers_merged_into_provider(self, tmp_path: Path) -> None:
        config = KubeDiagConfig(
            ai=AIConfig(providers=[AIProvider(name="openai", custom_headers={"X-A": "1"})], default_provider="openai")
        )
        run = await create_analysis(
            config,
            AnalysisOptions(explain=True, http_headers={"X-B": "2"}),
            registry=_registry(),
            cache=FileCache(tmp_path),
            connect_fn=_connect(),
        )
        try:
            assert isinstance(run._ai_client, OpenAICompatibleClient)
            assert run._ai_client._client.headers["X-A"] == "1"
            assert run._ai_client._client.headers["X-B"] == "2"
        finally:
            await run.close()


# ---------------------------------------------------------------------------
# AnalysisRun
# ---------------------------------------------------------------------------


class TestAnalysisRun:
    @pytest.mark.asyncio
    async def test_full_run_with_explanations(self, tmp_path: Path) -> None:
        registry = _registry(
            _StaticAnalyzer("Pod", ["back-off pulling image"]),
            _StaticAnalyzer("Node"),
            _StaticAnalyzer("Deployment", exc=RuntimeError("forbidden")),
        )
        run = await create_analysis(
            _noop_config(),
            AnalysisOptions(explain=True, with_stats=True),
            registry=registry,
            cache=FileCache(tmp_path),
            connect_fn=_connect(),
        )
        async with run:
            await asyncio.to_thread(run.run_analysis)
            await run.get_ai_results()
            report = run.report()

        assert report.provider == "noop"
        assert report.status == AnalysisStatus.PROBLEM_DETECTED
        assert report.problems == 1
        assert report.errors == ["[Deployment] forbidden"]
        assert report.results[0].details.startswith("I am a noop response to the prompt")
        assert sorted(s.analyzer for s in report.stats) == ["Deployment", "Node", "Pod"]

    def test_healthy_cluster_reports_ok(self, tmp_path: Path) -> None:
        registry = _registry(_StaticAnalyzer("Pod"))
        run = AnalysisRun(KubeDiagConfig(), AnalysisOptions(), _cluster(), FileCache(tmp_path), registry=registry)
        run.run_analysis()
        report = run.report()
        assert report.status == AnalysisStatus.OK
        assert report.problems == 0
        assert report.stats == []

    def test_analyzer_config_carries_scope(self, tmp_path: Path) -> None:
        analyzer = _StaticAnalyzer("Pod")
        cluster = _cluster()
        options = AnalysisOptions(namespace="prod", label_selector="app=web", with_doc=True)
        run = AnalysisRun(KubeDiagConfig(), options, cluster, FileCache(tmp_path), registry=_registry(analyzer))

        run.run_analysis()

        seen = analyzer.seen[0]
        assert seen.client is cluster
        assert seen.namespace == "prod"
        assert seen.label_selector == "app=web"
        assert seen.openapi_schema == {"swagger": "2.0"}

    def test_doc_fetch_failure_is_logged_not_fatal(self, tmp_path: Path) -> None:
        cluster = _cluster()
        cluster.fetch_openapi_schema.side_effect = RuntimeError("404")
        analyzer = _StaticAnalyzer("Pod", ["x"])
        run = AnalysisRun(
            KubeDiagConfig(), AnalysisOptions(with_doc=True), cluster, FileCache(tmp_path), registry=_registry(analyzer)
        )

        run.run_analysis()

        assert run.errors == ["[KubernetesDoc] 404"]
        assert len(run.results) == 1
        assert analyzer.seen[0].openapi_schema is None

    def test_explicit_filters_and_unknown_names(self, tmp_path: Path) -> None:
        hpa = _StaticAnalyzer("HorizontalPodAutoScaler", ["at max"])
        pod = _StaticAnalyzer("Pod", ["crash"])
        run = AnalysisRun(
            _noop_config(),
            AnalysisOptions(filters=["HorizontalPodAutoScaler", "Ingress"]),
            _cluster(),
            FileCache(tmp_path),
            registry=_registry(pod, additional=(hpa,)),
        )

        run.run_analysis()

        assert [r.kind for r in run.results] == ["HorizontalPodAutoScaler"]
        assert pod.seen == []
        assert run.errors == ['"Ingress" filter does not exist. Please run kubediag filters list.']

    def test_active_filters_from_config(self, tmp_path: Path) -> None:
        node = _StaticAnalyzer("Node", ["not ready"])
        pod = _StaticAnalyzer("Pod", ["crash"])
        config = KubeDiagConfig()
        config.analysis.active_filters = ["Node"]
        run = AnalysisRun(config, AnalysisOptions(), _cluster(), FileCache(tmp_path), registry=_registry(pod, node))

        run.run_analysis()

        assert [r.kind for r in run.results] == ["Node"]

    def test_custom_analysis(self, tmp_path: Path) -> None:
        config = KubeDiagConfig(
            custom_analyzers=[
                {"name": "cert-checker", "connection": {"url": "localhost", "port": 8085}},
                {"name": "BAD"},
            ]
        )

        class _Fake:
            def __init__(self, name: str, connection: PluginConnection) -> None:
                self.name = name

            def run(self) -> AnalysisResult:
                return AnalysisResult(kind="", name="default/web", failures=[Failure("certificate expired")])

            def close(self) -> None:
                pass

        run = AnalysisRun(
            config, AnalysisOptions(), None, FileCache(tmp_path), registry=_registry(), plugin_client_factory=_Fake
        )
        assert run.custom_analyzers_available()

        run.run_custom_analysis()

        assert [(r.kind, r.name) for r in run.results] == [("cert-checker", "default/web")]
        assert len(run.errors) == 1
        assert run.errors[0].startswith("[custom_analyzers] invalid entry BAD")

    def test_no_custom_analyzers(self, tmp_path: Path) -> None:
        run = AnalysisRun(KubeDiagConfig(), AnalysisOptions(), None, FileCache(tmp_path), registry=_registry())
        assert not run.custom_analyzers_available()

    @pytest.mark.asyncio
    async def test_get_ai_results_requires_explain(self, tmp_path: Path) -> None:
        run = AnalysisRun(KubeDiagConfig(), AnalysisOptions(), None, FileCache(tmp_path), registry=_registry())
        with pytest.raises(ProviderConfigError):
            await run.get_ai_results()

    @pytest.mark.asyncio
    async def test_language_option_overrides_config(self, tmp_path: Path) -> None:
        run = AnalysisRun(
            _noop_config(),
            AnalysisOptions(language="spanish"),
            _cluster(),
            FileCache(tmp_path),
            registry=_registry(_StaticAnalyzer("Pod", ["crash"])),
            ai_client=NoOpClient(),
        )
        await asyncio.to_thread(run.run_analysis)
        await run.get_ai_results()
        assert "spanish" in run.results[0].details

    @pytest.mark.asyncio
    async def test_close_closes_ai_client_and_cache(self, tmp_path: Path) -> None:
        ai_client = MagicMock()
        ai_client.aclose = AsyncMock()
        cache = MagicMock()
        cache.close = AsyncMock()
        run = AnalysisRun(KubeDiagConfig(), AnalysisOptions(), None, cache, registry=_registry(), ai_client=ai_client)

        await run.close()

        ai_client.aclose.assert_awaited_once()
        cache.close.assert_awaited_once()


class TestPromptConfiguration:
    @pytest.mark.asyncio
    async def test_unrenderable_prompt_is_fatal_with_explain(self, tmp_path: Path) -> None:
        config = _noop_config()
        config.ai.prompts = {"Pod": 'Reply as JSON {"error": "..."} about {failures}'}
        with pytest.raises(ProviderConfigError, match="Pod"):
            await create_analysis(
                config,
                AnalysisOptions(explain=True),
                registry=_registry(),
                cache=FileCache(tmp_path),
                connect_fn=_connect(),
            )

    @pytest.mark.asyncio
    async def test_prompts_ignored_without_explain(self, tmp_path: Path) -> None:
        config = _noop_config()
        config.ai.prompts = {"Pod": 'Reply as JSON {"error": "..."} about {failures}'}
        run = await create_analysis(
            config, AnalysisOptions(), registry=_registry(), cache=FileCache(tmp_path), connect_fn=_connect()
        )
        assert run.provider_name == ""
        await run.close()
