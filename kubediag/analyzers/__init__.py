"""Analyzer auto-registration and public API.

Auto-discovers all Analyzer subclasses from the a*.py files in this package.
Core analyzers form the default battery run when no filter is selected.
Additional analyzers run only when a filter names them.

Usage::

    from kubediag.analyzers import build_registry

    registry = build_registry()
    registry.core_names()   # ['Deployment', 'Node', 'PersistentVolumeClaim', 'Pod']
"""

from __future__ import annotations

import importlib
import inspect
import pkgutil
from pathlib import Path

from kubediag.analyzers.base import Analyzer, AnalyzerRegistry
from kubediag.observability.logging import get_logger

__all__ = [
    "Analyzer",
    "AnalyzerRegistry",
    "build_registry",
    "discover_analyzers",
]

_logger = get_logger("analyzer_registry")

_CORE_ANALYZERS: frozenset[str] = frozenset(
    {
        "Pod",
        "Deployment",
        "PersistentVolumeClaim",
        "Node",
    }
)

_ADDITIONAL_ANALYZERS: frozenset[str] = frozenset(
    {
        "HorizontalPodAutoScaler",
    }
)


def discover_analyzers() -> list[type[Analyzer]]:
    """Discover all Analyzer subclasses from a*.py modules in this package.

    Modules are processed lexicographically by filename so the returned
    order is deterministic. Returns classes, not instances.
    """
    package_path = Path(__file__).parent
    analyzer_classes: list[type[Analyzer]] = []
    seen: set[str] = set()

    for module_info in sorted(pkgutil.iter_modules([str(package_path)]), key=lambda m: m.name):
        if not module_info.name.startswith("a") or not module_info.name[1:2].isdigit():
            continue
        module_name = f"kubediag.analyzers.{module_info.name}"
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            _logger.error("analyzer_module_import_failed", module=module_name, error=str(exc))
            continue

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, Analyzer)
                and obj is not Analyzer
                and not inspect.isabstract(obj)
                and hasattr(obj, "name")
                and obj.name not in seen
            ):
                analyzer_classes.append(obj)
                seen.add(obj.name)

    _logger.debug("analyzer_discovery_complete", total=len(analyzer_classes), names=sorted(seen))
    return analyzer_classes


def build_registry() -> AnalyzerRegistry:
    """Construct a registry holding every discovered analyzer.

    Analyzers missing from both the core and additional sets are registered
    as additional so they never join the default battery by accident.
    """
    registry = AnalyzerRegistry()
    for analyzer_cls in discover_analyzers():
        name = analyzer_cls.name
        if name not in _CORE_ANALYZERS and name not in _ADDITIONAL_ANALYZERS:
            _logger.warning("analyzer_unknown_set", analyzer=name)
        registry.register(analyzer_cls(), core=name in _CORE_ANALYZERS)
    return registry
