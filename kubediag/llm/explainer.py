"""Explanation pipeline — cache-or-compute LLM explanations for failed results.

For each result with failures:
  1. Join the failure texts (masked first when anonymizing) into the
     input key.
  2. Fingerprint (provider, language, input key) into a cache key.
  3. Serve a cached answer when one exists and decodes; otherwise render
     the prompt for the result's kind and call the provider.
  4. Store the fresh answer (best effort), unmask it, and assign it to
     ``result.details``.

Results are handled one at a time against a single, quota-limited provider
connection. A provider failure aborts the remaining results; results
already explained keep their details.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, Sequence

from kubediag.cache.store import Cache, cache_key
from kubediag.errors import ExplanationError, ProviderCallError, QuotaExhaustedError
from kubediag.llm.client import CUSTOM_REST_PROVIDER_NAME, CompletionClient
from kubediag.llm.prompts import build_prompt_map, render_prompt, render_raw_prompt
from kubediag.llm.redaction import Redactor
from kubediag.models.analysis import AnalysisResult
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import (
    cache_errors_total,
    explanation_cache_hits_total,
    explanation_cache_misses_total,
)

_logger = get_logger("explainer")

_QUOTA_MARKER: str = "status code: 429"
_QUOTA_STATUS: int = 429


def classify_provider_error(provider: str, exc: Exception) -> ExplanationError:
    """Map a raw provider failure onto the quota or generic error kind."""
    status = getattr(exc, "status_code", None)
    if status == _QUOTA_STATUS or _QUOTA_MARKER in str(exc):
        return QuotaExhaustedError(provider, exc)
    return ProviderCallError(provider, exc)


def encode_response(response: str) -> str:
    return base64.b64encode(response.encode("utf-8")).decode("ascii")


def decode_response(payload: str) -> str:
    """Reverse encode_response. Raises ValueError on a corrupt payload."""
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(str(exc)) from exc


class ExplanationPipeline:
    """Attaches provider explanations to analysis results."""

    def __init__(
        self,
        client: CompletionClient,
        cache: Cache,
        language: str,
        prompts: Mapping[str, str] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._language = language
        self._prompts = dict(prompts) if prompts is not None else build_prompt_map()

    async def explain(self, results: Sequence[AnalysisResult], anonymize: bool = False) -> None:
        """Set ``details`` on every result that has failures.

        Raises QuotaExhaustedError or ProviderCallError when the provider
        fails; nothing else escapes.
        """
        if not results:
            return

        _logger.debug("explanation_started", results=len(results), anonymize=anonymize)
        for result in results:
            if not result.failures:
                continue

            texts: list[str] = []
            for failure in result.failures:
                text = failure.text
                if anonymize:
                    text = Redactor(failure.sensitive).mask(text)
                texts.append(text)

            response = await self._explain_failures(result.kind, " ".join(texts))

            if anonymize:
                response = Redactor.from_failures(result.failures).unmask(response)

            result.details = response

    async def _explain_failures(self, kind: str, input_key: str) -> str:
        key = cache_key(self._client.name, self._language, input_key)

        cached = await self._load_cached(key)
        if cached is not None:
            explanation_cache_hits_total.inc()
            _logger.debug("explanation_cache_hit", kind=kind, key=key)
            return cached
        explanation_cache_misses_total.inc()

        prompt = render_prompt(self._prompts, kind, self._language, input_key)
        if self._client.name == CUSTOM_REST_PROVIDER_NAME:
            prompt = render_raw_prompt(self._language, input_key, prompt)
        try:
            response = await self._client.get_completion(prompt)
        except Exception as exc:
            error = classify_provider_error(self._client.name, exc)
            _logger.error("explanation_provider_failed", provider=self._client.name, error=str(exc))
            raise error from exc

        try:
            await self._cache.store(key, encode_response(response))
        except Exception as exc:
            cache_errors_total.labels(operation="store").inc()
            _logger.warning("explanation_cache_store_failed", key=key, error=str(exc))
        return response

    async def _load_cached(self, key: str) -> str | None:
        """Return the decoded cached response, or None to fall through to the provider."""
        if self._cache.is_disabled():
            return None
        try:
            if not await self._cache.exists(key):
                return None
            payload = await self._cache.load(key)
        except Exception as exc:
            cache_errors_total.labels(operation="load").inc()
            _logger.warning("explanation_cache_load_failed", key=key, error=str(exc))
            return None

        if not payload:
            return None
        try:
            return decode_response(payload)
        except ValueError as exc:
            cache_errors_total.labels(operation="decode").inc()
            _logger.warning("explanation_cache_decode_failed", key=key, error=str(exc))
            return None
