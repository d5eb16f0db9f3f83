"""Configuration loading.

Scalars come from ``KUBEDIAG_*`` environment variables. Structured settings
(AI providers, prompt overrides, active filters, custom analyzers, cache
backend) come from an optional JSON file named by ``KUBEDIAG_CONFIG``,
defaulting to ``~/.config/kubediag/config.json``. Environment variables win
over the file for every scalar they cover.

Numeric values are clamped to their allowed range rather than rejected.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import ValidationError

from kubediag.errors import KubeDiagError
from kubediag.models.config import (
    AIConfig,
    AIProvider,
    AnalysisConfig,
    CacheConfig,
    KubeConfig,
    KubeDiagConfig,
    LogConfig,
)
from kubediag.observability.logging import get_logger

_logger = get_logger("config")

_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})
_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error", "critical"})
_VALID_CACHE_BACKENDS: frozenset[str] = frozenset({"file", "sqlite"})

_CONCURRENCY_MIN: int = 0  # 0 means "use the executor default"
_CONCURRENCY_MAX: int = 100


class ConfigError(KubeDiagError):
    """The config file exists but cannot be parsed."""


def default_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "kubediag" / "config.json"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            _logger.warning("config_invalid_int", variable=name, value=raw, default=default)
            value = default
    return max(minimum, min(maximum, value))


def _env_list(name: str) -> list[str] | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def _parse_ai(raw: object) -> AIConfig:
    if not isinstance(raw, dict):
        return AIConfig()
    providers: list[AIProvider] = []
    for entry in raw.get("providers", []) or []:
        try:
            providers.append(AIProvider.model_validate(entry))
        except ValidationError as exc:
            _logger.warning("config_invalid_provider", error=str(exc))
    prompts_raw = raw.get("prompts", {}) or {}
    prompts = {str(k): str(v) for k, v in prompts_raw.items()} if isinstance(prompts_raw, dict) else {}
    return AIConfig(
        providers=providers,
        default_provider=str(raw.get("default_provider", "") or ""),
        prompts=prompts,
    )


def load_config(path: str | Path | None = None) -> KubeDiagConfig:
    """Build a KubeDiagConfig from the config file and the environment."""
    config_path = Path(path) if path else Path(os.environ.get("KUBEDIAG_CONFIG") or default_config_path())
    data = _read_file(config_path)

    ai = _parse_ai(data.get("ai"))

    cache_raw = data.get("cache", {})
    cache_file = cache_raw if isinstance(cache_raw, dict) else {}
    backend = os.environ.get("KUBEDIAG_CACHE_BACKEND") or str(cache_file.get("backend", "file"))
    backend = backend.lower()
    if backend not in _VALID_CACHE_BACKENDS:
        _logger.warning("config_invalid_cache_backend", backend=backend)
        backend = "file"
    cache = CacheConfig(
        backend=backend,
        path=os.environ.get("KUBEDIAG_CACHE_PATH") or str(cache_file.get("path", "") or ""),
    )

    kube = KubeConfig(
        kubeconfig=os.environ.get("KUBEDIAG_KUBECONFIG") or os.environ.get("KUBECONFIG", ""),
        context=os.environ.get("KUBEDIAG_KUBECONTEXT", ""),
    )

    active_filters = _env_list("KUBEDIAG_ACTIVE_FILTERS")
    if active_filters is None:
        raw_filters = data.get("active_filters", []) or []
        active_filters = [str(f) for f in raw_filters] if isinstance(raw_filters, list) else []

    analysis = AnalysisConfig(
        language=os.environ.get("KUBEDIAG_LANGUAGE", "english") or "english",
        max_concurrency=_env_int("KUBEDIAG_MAX_CONCURRENCY", 10, _CONCURRENCY_MIN, _CONCURRENCY_MAX),
        custom_analyzer_concurrency=_env_int(
            "KUBEDIAG_CUSTOM_ANALYZER_CONCURRENCY", 10, _CONCURRENCY_MIN, _CONCURRENCY_MAX
        ),
        active_filters=active_filters,
    )

    level = os.environ.get("KUBEDIAG_LOG_LEVEL", "warning").lower()
    if _env_bool("KUBEDIAG_VERBOSE", False):
        level = "debug"
    if level not in _VALID_LOG_LEVELS:
        level = "warning"

    custom_raw = data.get("custom_analyzers", []) or []

    return KubeDiagConfig(
        ai=ai,
        cache=cache,
        kube=kube,
        analysis=analysis,
        log=LogConfig(level=level),
        custom_analyzers=list(custom_raw) if isinstance(custom_raw, list) else [],
    )


def save_active_filters(filters: list[str], path: str | Path | None = None) -> None:
    """Persist the active filter list into the config file."""
    config_path = Path(path) if path else Path(os.environ.get("KUBEDIAG_CONFIG") or default_config_path())
    data = _read_file(config_path)
    data["active_filters"] = sorted(set(filters))
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
