"""Tests for kubediag.llm.client and kubediag.llm.prompts."""

from __future__ import annotations

import json

import httpx
import pytest

from kubediag.errors import ProviderError
from kubediag.llm.client import NoOpClient, OpenAICompatibleClient, new_client
from kubediag.llm.prompts import DEFAULT_PROMPT, RAW_PROMPT_KEY, build_prompt_map, render_prompt
from kubediag.models.config import AIProvider


def _provider(**overrides: object) -> AIProvider:
    data: dict[str, object] = {
        "name": "openai",
        "model": "gpt-test",
        "base_url": "http://llm.local/v1/",
        "api_key": "sk-test",
        "custom_headers": {"X-Team": "sre"},
    }
    data.update(overrides)
    return AIProvider.model_validate(data)


def _completion(content: str) -> dict[str, object]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestOpenAICompatibleClient:
    @pytest.mark.asyncio
    async def test_sends_chat_completion_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion("Error: x"))

        client = OpenAICompatibleClient(_provider(), transport=httpx.MockTransport(handler))
        try:
            answer = await client.get_completion("explain this")
        finally:
            await client.aclose()

        assert answer == "Error: x"
        request = seen[0]
        assert str(request.url) == "http://llm.local/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["X-Team"] == "sre"
        body = json.loads(request.content)
        assert body["model"] == "gpt-test"
        assert body["messages"] == [{"role": "user", "content": "explain this"}]

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited"))
        client = OpenAICompatibleClient(_provider(), transport=transport)
        try:
            with pytest.raises(ProviderError) as exc_info:
                await client.get_completion("p")
        finally:
            await client.aclose()

        assert exc_info.value.status_code == 429
        assert "status code: 429" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_malformed_body(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
        client = OpenAICompatibleClient(_provider(), transport=transport)
        try:
            with pytest.raises(ProviderError, match="unexpected response structure"):
                await client.get_completion("p")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_provider(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = OpenAICompatibleClient(_provider(), transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(ProviderError, match="provider unreachable"):
                await client.get_completion("p")
        finally:
            await client.aclose()

    def test_no_authorization_without_key(self) -> None:
        client = OpenAICompatibleClient(_provider(api_key=""))
        assert "Authorization" not in client._client.headers


class TestNewClient:
    @pytest.mark.asyncio
    async def test_noop(self) -> None:
        client = new_client(_provider(name="noop"))
        assert isinstance(client, NoOpClient)
        assert await client.get_completion("hi") == "I am a noop response to the prompt hi"

    def test_openai_compatible(self) -> None:
        assert isinstance(new_client(_provider(name="ollama")), OpenAICompatibleClient)


class TestPrompts:
    def test_overrides_merge_but_raw_is_reserved(self) -> None:
        prompts = build_prompt_map({"Pod": "P {failures}", RAW_PROMPT_KEY: "ignored"})
        assert prompts["Pod"] == "P {failures}"
        assert RAW_PROMPT_KEY not in prompts
        assert prompts["default"] == DEFAULT_PROMPT

    def test_unknown_kind_uses_default(self) -> None:
        rendered = render_prompt(build_prompt_map(), "Ingress", "french", "no backend")
        assert "--- french ---" in rendered
        assert "--- no backend ---" in rendered
        assert "Error: {Explain error here}" in rendered
