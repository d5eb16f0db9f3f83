"""Analysis coordinator — one diagnostic run from filters to explained report.

``create_analysis`` checks every global precondition up front (cluster
client, cache backend, AI provider when explanations are requested) and
raises before any analyzer runs. After that nothing attributable to a
single analyzer or plugin can abort the run: failures land in the error
log and the report is always produced.

Typical use::

    run = await create_analysis(config, AnalysisOptions(explain=True))
    try:
        await asyncio.to_thread(run.run_analysis)
        if run.custom_analyzers_available():
            await asyncio.to_thread(run.run_custom_analysis)
        await run.get_ai_results(anonymize=True)
        report = run.report()
    finally:
        await run.close()

``run_analysis`` and ``run_custom_analysis`` block until every unit has
finished and must not be called on an event-loop thread, because built-in
analyzers open their own event loop per API call.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from kubediag.analyst.executor import BoundedExecutor
from kubediag.analyst.plugins import ClientFactory, CustomPluginRunner, PluginClient, parse_plugin_specs
from kubediag.analyst.selector import select_analyzers
from kubediag.analyst.store import ResultStore
from kubediag.analyzers import AnalyzerRegistry, build_registry
from kubediag.cache.store import Cache, get_cache
from kubediag.errors import ProviderConfigError
from kubediag.kube.client import ClusterClient, connect
from kubediag.llm.client import CompletionClient, new_client
from kubediag.llm.explainer import ExplanationPipeline
from kubediag.llm.prompts import build_prompt_map
from kubediag.models.analysis import AnalysisResult, AnalysisStats, AnalyzerConfig
from kubediag.models.config import DEFAULT_PROVIDER, AIConfig, AIProvider, KubeDiagConfig
from kubediag.models.report import AnalysisReport
from kubediag.observability.logging import get_logger

_logger = get_logger("analyst_coordinator")


@dataclass
class AnalysisOptions:
    """Per-invocation settings, usually straight from the command line.

    ``None`` for ``language`` or ``max_concurrency`` means "use the
    configured value".
    """

    backend: str = ""
    language: str | None = None
    filters: list[str] = field(default_factory=list)
    namespace: str = ""
    label_selector: str = ""
    no_cache: bool = False
    explain: bool = False
    max_concurrency: int | None = None
    with_doc: bool = False
    with_stats: bool = False
    http_headers: dict[str, str] = field(default_factory=dict)


def resolve_provider(ai: AIConfig, backend: str = "") -> AIProvider:
    """Pick the provider to use: explicit backend > configured default > openai.

    Raises ProviderConfigError when none is configured or the chosen one is
    missing.
    """
    if not ai.providers:
        raise ProviderConfigError("AI provider not specified in configuration. Please run kubediag auth")

    name = backend or ai.default_provider or DEFAULT_PROVIDER
    provider = ai.find(name)
    if provider is None:
        raise ProviderConfigError(f"AI provider {name} not specified in configuration. Please run kubediag auth")
    return provider


class AnalysisRun:
    """Owns the ResultStore of one run; borrows the cluster client."""

    def __init__(
        self,
        config: KubeDiagConfig,
        options: AnalysisOptions,
        client: ClusterClient | None,
        cache: Cache,
        *,
        registry: AnalyzerRegistry | None = None,
        ai_client: CompletionClient | None = None,
        prompts: dict[str, str] | None = None,
        plugin_client_factory: ClientFactory = PluginClient,
    ) -> None:
        self._config = config
        self._options = options
        self._client = client
        self._cache = cache
        self._registry = registry if registry is not None else build_registry()
        self._ai_client = ai_client
        if prompts is None and ai_client is not None:
            prompts = build_prompt_map(config.ai.prompts)
        self._prompts = prompts or {}
        self._plugin_client_factory = plugin_client_factory

        self._store = ResultStore()
        self._executor = BoundedExecutor(self._store, collect_stats=options.with_stats)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def language(self) -> str:
        return self._options.language or self._config.analysis.language

    @property
    def max_concurrency(self) -> int:
        if self._options.max_concurrency is not None:
            return self._options.max_concurrency
        return self._config.analysis.max_concurrency

    @property
    def provider_name(self) -> str:
        return self._ai_client.name if self._ai_client is not None else ""

    @property
    def results(self) -> list[AnalysisResult]:
        return self._store.results

    @property
    def errors(self) -> list[str]:
        return self._store.errors

    @property
    def stats(self) -> list[AnalysisStats]:
        return self._store.stats

    # ------------------------------------------------------------------
    # Built-in analyzers
    # ------------------------------------------------------------------

    def run_analysis(self) -> None:
        """Run the selected built-in analyzers and wait for all of them."""
        openapi_schema: dict[str, object] | None = None
        if self._options.with_doc and self._client is not None:
            _logger.debug("kubernetes_docs_fetching")
            try:
                openapi_schema = self._client.fetch_openapi_schema()
            except Exception as exc:
                self._store.add_error(f"[KubernetesDoc] {exc}")

        analyzer_config = AnalyzerConfig(
            client=self._client,
            namespace=self._options.namespace,
            label_selector=self._options.label_selector,
            openapi_schema=openapi_schema,
        )

        analyzers = select_analyzers(
            self._registry,
            self._options.filters,
            self._config.analysis.active_filters,
            self._store,
        )
        self._executor.run(analyzers, analyzer_config, self.max_concurrency)
        _logger.debug(
            "analysis_finished",
            analyzers=len(analyzers),
            results=len(self._store),
            errors=len(self._store.errors),
        )

    # ------------------------------------------------------------------
    # Custom analyzer plugins
    # ------------------------------------------------------------------

    def custom_analyzers_available(self) -> bool:
        return bool(self._config.custom_analyzers)

    def run_custom_analysis(self) -> None:
        """Run every configured plugin and wait for all of them."""
        specs = parse_plugin_specs(self._config.custom_analyzers, self._store)
        runner = CustomPluginRunner(
            self._executor,
            self._config.analysis.custom_analyzer_concurrency,
            client_factory=self._plugin_client_factory,
        )
        runner.run(specs)

    # ------------------------------------------------------------------
    # Explanations
    # ------------------------------------------------------------------

    async def get_ai_results(self, anonymize: bool = False) -> None:
        """Explain every failed result in place.

        Raises QuotaExhaustedError or ProviderCallError; already explained
        results keep their details.
        """
        if self._ai_client is None:
            raise ProviderConfigError("explanations were not enabled for this analysis")
        pipeline = ExplanationPipeline(self._ai_client, self._cache, self.language, self._prompts)
        await pipeline.explain(self._store.results, anonymize=anonymize)

    # ------------------------------------------------------------------
    # Report and lifecycle
    # ------------------------------------------------------------------

    def report(self) -> AnalysisReport:
        return AnalysisReport.build(
            results=self._store.results,
            errors=self._store.errors,
            stats=self._store.stats,
            provider=self.provider_name,
        )

    async def close(self) -> None:
        """Close the AI client connection and the cache. The cluster client is borrowed."""
        if self._ai_client is not None:
            await self._ai_client.aclose()
        await self._cache.close()

    async def __aenter__(self) -> AnalysisRun:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


async def create_analysis(
    config: KubeDiagConfig,
    options: AnalysisOptions,
    *,
    registry: AnalyzerRegistry | None = None,
    cache: Cache | None = None,
    connect_fn: Callable[[str, str], Awaitable[ClusterClient]] = connect,
) -> AnalysisRun:
    """Build an AnalysisRun, raising on any global precondition failure.

    Raises ClusterClientError, CacheConfigError or ProviderConfigError.
    """
    client = await connect_fn(config.kube.kubeconfig, config.kube.context)
    _logger.debug("kubernetes_client_ready", host=client.host)

    if cache is None:
        cache = get_cache(config.cache, disabled=options.no_cache)
    elif options.no_cache:
        cache.disable()

    _logger.debug(
        "analysis_configured",
        filters=options.filters,
        language=options.language or config.analysis.language,
        namespace=options.namespace or None,
        label_selector=options.label_selector or None,
        explain=options.explain,
        max_concurrency=options.max_concurrency,
        with_doc=options.with_doc,
        with_stats=options.with_stats,
    )

    if not options.explain:
        return AnalysisRun(config, options, client, cache, registry=registry)

    prompts = build_prompt_map(config.ai.prompts)
    provider = resolve_provider(config.ai, options.backend)
    if options.http_headers:
        provider = provider.model_copy(
            update={"custom_headers": {**provider.custom_headers, **options.http_headers}}
        )
    ai_client = new_client(provider)
    _logger.debug("ai_client_ready", provider=provider.name, base_url=provider.base_url, model=provider.model)

    return AnalysisRun(
        config,
        options,
        client,
        cache,
        registry=registry,
        ai_client=ai_client,
        prompts=prompts,
    )
