"""Configuration models.

Scalar settings are plain dataclasses filled from ``KUBEDIAG_*`` environment
variables. Entries that come from the JSON config file (AI providers and
custom analyzer plugins) are pydantic models so that each entry can be
validated on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator

# Lowercase RFC 1123 subdomain, as required for custom analyzer names.
_RFC1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

DEFAULT_PROVIDER: str = "openai"


class AIProvider(BaseModel):
    """One configured completion backend."""

    name: str = Field(..., min_length=1, description="Provider name, e.g. ``openai`` or ``ollama``.")
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    custom_headers: dict[str, str] = Field(default_factory=dict)


class PluginConnection(BaseModel):
    """Where a custom analyzer plugin listens."""

    url: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)


class PluginSpec(BaseModel):
    """A custom analyzer plugin entry from the ``custom_analyzers`` list."""

    name: str
    connection: PluginConnection

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        """Names double as result kinds, so they must be RFC 1123 subdomains."""
        if not _RFC1123_SUBDOMAIN.match(value):
            raise ValueError(f"custom analyzer name must be a lowercase RFC 1123 subdomain, got: {value!r}")
        return value


@dataclass
class AIConfig:
    providers: list[AIProvider] = field(default_factory=list)
    default_provider: str = ""
    prompts: dict[str, str] = field(default_factory=dict)

    def find(self, name: str) -> AIProvider | None:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None


@dataclass
class CacheConfig:
    backend: str = "file"  # "file" | "sqlite"
    path: str = ""  # empty = backend default under the user cache dir


@dataclass
class KubeConfig:
    kubeconfig: str = ""
    context: str = ""


@dataclass
class AnalysisConfig:
    language: str = "english"
    max_concurrency: int = 10
    custom_analyzer_concurrency: int = 10
    active_filters: list[str] = field(default_factory=list)


@dataclass
class LogConfig:
    level: str = "warning"


@dataclass
class KubeDiagConfig:
    """Top-level configuration value, passed explicitly to every component."""

    ai: AIConfig = field(default_factory=AIConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    kube: KubeConfig = field(default_factory=KubeConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    log: LogConfig = field(default_factory=LogConfig)
    # Raw entries; validated one by one when plugins are run so that a
    # malformed entry only costs that one plugin.
    custom_analyzers: list[object] = field(default_factory=list)
