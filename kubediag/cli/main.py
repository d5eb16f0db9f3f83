"""kubediag command-line interface.

Commands:
    kubediag analyze [--filter NAME ...] [--explain]   Diagnose the cluster.
    kubediag filters list                              Show active and unused filters.
    kubediag filters add NAME...                       Activate filters.
    kubediag filters remove NAME...                    Deactivate filters.
    kubediag cache purge                               Drop cached explanations.
    kubediag version                                   Print version and exit.

Reports go to stdout; structured logs go to stderr. Text output is
colourised for readability.
"""

from __future__ import annotations

import asyncio

import click

from kubediag import __version__
from kubediag.analyst.coordinator import AnalysisOptions, create_analysis
from kubediag.analyzers import build_registry
from kubediag.cache.store import get_cache
from kubediag.config import load_config, save_active_filters
from kubediag.errors import KubeDiagError
from kubediag.models.analysis import AnalysisStatus
from kubediag.models.config import KubeDiagConfig
from kubediag.models.report import AnalysisReport
from kubediag.observability.logging import setup_logging
from kubediag.observability.metrics import write_metrics

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_STATUS_COLORS: dict[str, str] = {
    AnalysisStatus.OK: "green",
    AnalysisStatus.PROBLEM_DETECTED: "red",
}


def _styled_status(status: str) -> str:
    return click.style(status, fg=_STATUS_COLORS.get(status, "white"), bold=True)


def _split_names(values: tuple[str, ...]) -> list[str]:
    """Accept both ``--filter A --filter B`` and ``--filter A,B``."""
    names: list[str] = []
    for value in values:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        key, sep, header_value = value.partition(":")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY:VALUE, got: {value!r}", param_hint="--http-header")
        headers[key.strip()] = header_value.strip()
    return headers


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="KUBEDIAG_CONFIG",
    metavar="PATH",
    help="JSON config file.  Defaults to ~/.config/kubediag/config.json.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Emit debug logs on stderr.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """kubediag — Kubernetes diagnostics with optional AI explanations."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except KubeDiagError as exc:
        raise click.ClickException(str(exc)) from exc
    if verbose:
        config.log.level = "debug"
    setup_logging(config.log.level)
    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = config


# ---------------------------------------------------------------------------
# kubediag version
# ---------------------------------------------------------------------------


@cli.command("version")
def cmd_version() -> None:
    """Print the kubediag version and exit."""
    click.echo(f"kubediag {__version__}")


# ---------------------------------------------------------------------------
# kubediag analyze
# ---------------------------------------------------------------------------


async def _analyze(config: KubeDiagConfig, options: AnalysisOptions, anonymize: bool) -> AnalysisReport:
    run = await create_analysis(config, options)
    try:
        await asyncio.to_thread(run.run_analysis)
        if run.custom_analyzers_available():
            await asyncio.to_thread(run.run_custom_analysis)
        if options.explain:
            await run.get_ai_results(anonymize=anonymize)
        return run.report()
    finally:
        await run.close()


@cli.command("analyze")
@click.option("--filter", "-f", "filters", multiple=True, metavar="NAME", help="Analyzer to run; repeatable.")
@click.option("--namespace", "-n", default="", metavar="NS", help="Namespace to analyze.  Omit for all.")
@click.option("--selector", "-L", "label_selector", default="", metavar="SELECTOR", help="Label selector.")
@click.option("--language", "-l", default=None, help="Language of the explanations.")
@click.option("--backend", "-b", default="", help="AI provider to use.  Defaults to the configured one.")
@click.option("--explain", "-e", is_flag=True, default=False, help="Ask the AI provider to explain failures.")
@click.option("--anonymize", "-a", is_flag=True, default=False, help="Mask sensitive values sent to the provider.")
@click.option("--no-cache", "-c", is_flag=True, default=False, help="Neither read nor write cached explanations.")
@click.option(
    "--max-concurrency",
    "-m",
    type=click.IntRange(min=0),
    default=None,
    help="Analyzers run at once (clamped to 100; 0 means the default).",
)
@click.option("--with-doc", "-d", is_flag=True, default=False, help="Fetch the cluster's API documentation.")
@click.option("--with-stats", "-s", is_flag=True, default=False, help="Report per-analyzer durations.")
@click.option("--http-header", "http_headers", multiple=True, metavar="KEY:VALUE", help="Extra provider header.")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Report format.",
)
@click.option(
    "--metrics-file",
    default=None,
    metavar="PATH",
    type=click.Path(dir_okay=False),
    help="Write Prometheus metrics for this run to PATH (textfile format).",
)
@click.pass_context
def cmd_analyze(
    ctx: click.Context,
    filters: tuple[str, ...],
    namespace: str,
    label_selector: str,
    language: str | None,
    backend: str,
    explain: bool,
    anonymize: bool,
    no_cache: bool,
    max_concurrency: int | None,
    with_doc: bool,
    with_stats: bool,
    http_headers: tuple[str, ...],
    output: str,
    metrics_file: str | None,
) -> None:
    """Run the analyzers against the current cluster and print a report.

    Example:

        kubediag analyze --filter Pod --namespace default --explain
    """
    config: KubeDiagConfig = ctx.obj["config"]
    options = AnalysisOptions(
        backend=backend,
        language=language,
        filters=_split_names(filters),
        namespace=namespace,
        label_selector=label_selector,
        no_cache=no_cache,
        explain=explain,
        max_concurrency=max_concurrency,
        with_doc=with_doc,
        with_stats=with_stats,
        http_headers=_parse_headers(http_headers),
    )

    try:
        report = asyncio.run(_analyze(config, options, anonymize))
    except KubeDiagError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        if metrics_file:
            _export_metrics(metrics_file)

    if output == "json":
        click.echo(report.model_dump_json(by_alias=True, indent=2))
        return
    _print_report(report)


def _export_metrics(path: str) -> None:
    try:
        write_metrics(path)
    except OSError as exc:
        click.echo(click.style(f"cannot write metrics file {path}: {exc}", fg="yellow"), err=True)


def _print_report(report: AnalysisReport) -> None:
    """Pretty-print an AnalysisReport."""
    if report.provider:
        click.echo(click.style("AI Provider:", bold=True) + f" {report.provider}")
        click.echo("")

    if report.errors:
        click.echo(click.style(f"Errors ({len(report.errors)}):", bold=True, fg="yellow"))
        for error in report.errors:
            click.echo(click.style(f"  - {error}", fg="yellow"))
        click.echo("")

    if not report.results:
        click.echo(click.style("No problems detected", fg="green"))
    for index, result in enumerate(report.results):
        parent = f"({result.parent_object})" if result.parent_object else ""
        click.echo(f"{index}: {click.style(result.kind, bold=True)} {click.style(result.name, fg='cyan')}{parent}")
        for failure in result.error:
            click.echo(click.style(f"- Error: {failure.text}", fg="red"))
        if result.details:
            click.echo(click.style(result.details, fg="green"))

    if report.stats:
        click.echo("")
        click.echo(click.style("Statistics:", bold=True))
        for stat in report.stats:
            click.echo(f"  {stat.analyzer}: {stat.duration_seconds:.3f}s")

    click.echo("")
    click.echo(f"Status: {_styled_status(report.status)}  problems={report.problems}")


# ---------------------------------------------------------------------------
# kubediag filters
# ---------------------------------------------------------------------------


@cli.group("filters")
def cmd_filters() -> None:
    """Manage which analyzers run when no --filter is given."""


def _effective_active(config: KubeDiagConfig, core_names: list[str]) -> list[str]:
    return list(config.analysis.active_filters) or list(core_names)


@cmd_filters.command("list")
@click.pass_context
def cmd_filters_list(ctx: click.Context) -> None:
    """Show active and unused analyzers."""
    config: KubeDiagConfig = ctx.obj["config"]
    registry = build_registry()
    active = _effective_active(config, registry.core_names())

    click.echo(click.style("Active:", bold=True))
    for name in sorted(active):
        marker = "" if name in registry else click.style("  (unknown)", fg="red")
        click.echo(click.style(f"> {name}", fg="green") + marker)

    unused = [name for name in registry.all_names() if name not in active]
    if unused:
        click.echo(click.style("Unused:", bold=True))
        for name in unused:
            click.echo(click.style(f"> {name}", fg="red"))


@cmd_filters.command("add")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def cmd_filters_add(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Add NAMES to the active filters."""
    config: KubeDiagConfig = ctx.obj["config"]
    registry = build_registry()
    requested = _split_names(names)

    unknown = [name for name in requested if name not in registry]
    if unknown:
        raise click.ClickException(f"filter(s) {', '.join(unknown)} do not exist. Please run kubediag filters list.")

    active = _effective_active(config, registry.core_names())
    already = [name for name in requested if name in active]
    if already:
        raise click.ClickException(f"filter(s) {', '.join(already)} already active")

    save_active_filters(active + requested, ctx.obj["config_path"])
    click.echo(f"Filter(s) {', '.join(requested)} added")


@cmd_filters.command("remove")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def cmd_filters_remove(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Remove NAMES from the active filters."""
    config: KubeDiagConfig = ctx.obj["config"]
    registry = build_registry()
    requested = _split_names(names)

    active = _effective_active(config, registry.core_names())
    missing = [name for name in requested if name not in active]
    if missing:
        raise click.ClickException(f"filter(s) {', '.join(missing)} are not active")

    save_active_filters([name for name in active if name not in requested], ctx.obj["config_path"])
    click.echo(f"Filter(s) {', '.join(requested)} removed")


# ---------------------------------------------------------------------------
# kubediag cache
# ---------------------------------------------------------------------------


@cli.group("cache")
def cmd_cache() -> None:
    """Manage cached explanations."""


async def _purge(config: KubeDiagConfig) -> int:
    cache = get_cache(config.cache)
    try:
        return await cache.purge()
    finally:
        await cache.close()


@cmd_cache.command("purge")
@click.pass_context
def cmd_cache_purge(ctx: click.Context) -> None:
    """Delete every cached explanation."""
    config: KubeDiagConfig = ctx.obj["config"]
    try:
        removed = asyncio.run(_purge(config))
    except KubeDiagError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Removed {removed} cached explanation(s)")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
