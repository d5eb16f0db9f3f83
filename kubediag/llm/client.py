"""Completion clients for AI providers.

Every provider except ``noop`` is reached through the OpenAI-compatible
``/chat/completions`` endpoint (OpenAI itself, Ollama, LocalAI, vLLM,
Azure-style gateways). HTTP failures surface as ProviderError with a
message of the form ``error, status code: <code>, message: <body>`` so
callers can classify them. Prompts for the ``customrest`` provider are
wrapped in a JSON envelope by the explanation pipeline before sending.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from kubediag.errors import ProviderError
from kubediag.models.config import AIProvider
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import provider_requests_total

_logger = get_logger("llm_client")

NOOP_PROVIDER_NAME: str = "noop"
CUSTOM_REST_PROVIDER_NAME: str = "customrest"
_ERROR_BODY_MAX_CHARS: int = 200


class CompletionClient(ABC):
    """A provider that turns a prompt into a completion."""

    name: str

    @abstractmethod
    async def get_completion(self, prompt: str) -> str:
        """Return the provider's completion. Raises ProviderError on failure."""

    async def aclose(self) -> None:  # noqa: B027
        """Release connections. Safe to call more than once."""


class OpenAICompatibleClient(CompletionClient):
    """Wraps an OpenAI-compatible chat completion API.

    Uses a persistent httpx.AsyncClient connection pool. The caller is
    responsible for calling aclose() when the run ends.
    """

    def __init__(self, provider: AIProvider, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.name = provider.name
        self._provider = provider
        headers = dict(provider.custom_headers)
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(provider.timeout_seconds),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers=headers,
            transport=transport,
        )

    async def get_completion(self, prompt: str) -> str:
        payload = {
            "model": self._provider.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._provider.temperature,
            "max_tokens": self._provider.max_tokens,
            "stream": False,
        }
        url = f"{self._provider.base_url.rstrip('/')}/chat/completions"

        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            provider_requests_total.labels(provider=self.name, outcome="timeout").inc()
            raise ProviderError(f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            provider_requests_total.labels(provider=self.name, outcome="unavailable").inc()
            raise ProviderError(f"provider unreachable: {exc}") from exc

        if response.is_error:
            provider_requests_total.labels(provider=self.name, outcome=str(response.status_code)).inc()
            raise ProviderError(
                f"error, status code: {response.status_code}, message: {response.text[:_ERROR_BODY_MAX_CHARS]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            provider_requests_total.labels(provider=self.name, outcome="malformed").inc()
            raise ProviderError(f"unexpected response structure: {exc}") from exc

        if not isinstance(content, str):
            provider_requests_total.labels(provider=self.name, outcome="malformed").inc()
            raise ProviderError("response content is not a string")

        provider_requests_total.labels(provider=self.name, outcome="success").inc()
        _logger.debug("completion_received", provider=self.name, chars=len(content))
        return content

    async def aclose(self) -> None:
        await self._client.aclose()


class NoOpClient(CompletionClient):
    """Echoes the prompt back; useful offline and in tests."""

    name = NOOP_PROVIDER_NAME

    async def get_completion(self, prompt: str) -> str:
        return f"I am a noop response to the prompt {prompt}"


def new_client(provider: AIProvider, transport: httpx.AsyncBaseTransport | None = None) -> CompletionClient:
    if provider.name == NOOP_PROVIDER_NAME:
        return NoOpClient()
    return OpenAICompatibleClient(provider, transport=transport)
