from __future__ import annotations

import json

import allure
import httpx
import pytest

from applykit.errors import ConfigurationError, ProviderError
from applykit.llm.models import ProviderRequest
from applykit.llm.providers import (
    AnthropicClient,
    GeminiClient,
    OpenAICompatibleClient,
    ProviderRegistry,
    normalize_provider_id,
)

pytestmark = [
    allure.epic("LLM Orchestration"),
    allure.feature("Provider Clients"),
]


def _request(model: str = "gpt-4o") -> ProviderRequest:
    return ProviderRequest(
        model=model,
        prompt="Parse this resume text",
        system_prompt="You are a parser.",
        max_output_tokens=512,
        temperature=0.2,
    )


def _registry(handler, **api_keys: str) -> ProviderRegistry:
    return ProviderRegistry(api_keys=api_keys, transport=httpx.MockTransport(handler))


def test_openai_compatible_client_sends_chat_completion() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["title"] = request.headers.get("X-Title")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-2024",
                "choices": [{"message": {"role": "assistant", "content": '{"ok": true}'}}],
                "usage": {"prompt_tokens": 11, "completion_tokens": 4},
            },
        )

    registry = _registry(handler, openrouter="or-key")
    client = registry.get("openrouter")
    response = client.complete(_request())
    registry.close()

    assert isinstance(client, OpenAICompatibleClient)
    assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
    assert seen["auth"] == "Bearer or-key"
    assert seen["title"] == "applykit"
    assert seen["body"] == {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "You are a parser."},
            {"role": "user", "content": "Parse this resume text"},
        ],
        "max_tokens": 512,
        "temperature": 0.2,
    }
    assert response.text == '{"ok": true}'
    assert response.provider == "openrouter"
    assert response.model == "gpt-4o-2024"
    assert response.input_tokens == 11
    assert response.output_tokens == 4


def test_requesty_alias_uses_router_base_url() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

    registry = _registry(handler, requesty="rq-key")
    client = registry.get("router")

    assert client.complete(_request()).text == "hi"
    assert seen == ["https://router.requesty.ai/v1/chat/completions"]
    assert registry.get("requesty") is client


def test_anthropic_client_sends_messages_request() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-api-key")
        seen["version"] = request.headers.get("anthropic-version")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
                "usage": {"input_tokens": 7, "output_tokens": 2},
            },
        )

    registry = _registry(handler, anthropic="ant-key")
    client = registry.get("anthropic")
    response = client.complete(_request("claude-sonnet-4"))

    assert isinstance(client, AnthropicClient)
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["key"] == "ant-key"
    assert seen["version"] == "2023-06-01"
    assert seen["body"]["system"] == "You are a parser."
    assert seen["body"]["max_tokens"] == 512
    assert seen["body"]["messages"] == [{"role": "user", "content": "Parse this resume text"}]
    assert response.text == "Hello there"
    assert response.input_tokens == 7


def test_gemini_client_sends_generate_content_request() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-goog-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "from gemini"}]}}],
                "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 3},
            },
        )

    registry = _registry(handler, google="g-key")
    client = registry.get("gemini")
    response = client.complete(_request("gemini-1.5-pro"))

    assert isinstance(client, GeminiClient)
    assert "generativelanguage.googleapis.com/v1/models/gemini-1.5-pro" in str(seen["url"])
    assert str(seen["url"]).endswith("generateContent")
    assert seen["key"] == "g-key"
    assert seen["body"]["contents"][0]["parts"][0]["text"] == (
        "You are a parser.\n\nParse this resume text"
    )
    assert seen["body"]["generationConfig"] == {"maxOutputTokens": 512, "temperature": 0.2}
    assert response.text == "from gemini"
    assert response.output_tokens == 3


@pytest.mark.parametrize(
    ("status_code", "transient"),
    [(429, True), (503, True), (401, False), (400, False)],
)
def test_http_errors_become_provider_errors(status_code: int, transient: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="upstream says no")

    client = _registry(handler, openai="sk").get("openai")

    with pytest.raises(ProviderError) as excinfo:
        client.complete(_request())

    assert excinfo.value.status_code == status_code
    assert excinfo.value.transient is transient
    assert excinfo.value.provider == "openai"
    assert "upstream says no" in str(excinfo.value)


def test_timeout_is_transient_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    client = _registry(handler, openai="sk").get("openai")

    with pytest.raises(ProviderError, match="timed out") as excinfo:
        client.complete(_request())
    assert excinfo.value.transient


def test_empty_and_non_json_responses_are_rejected() -> None:
    responses = iter(
        [
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, text="<html>oops</html>"),
        ],
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    client = _registry(handler, openai="sk").get("openai")

    with pytest.raises(ProviderError, match="no content"):
        client.complete(_request())
    with pytest.raises(ProviderError, match="non-JSON"):
        client.complete(_request())


def test_missing_api_key_fails_before_any_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = _registry(handler).get("anthropic")

    with pytest.raises(ProviderError, match="API key is not configured"):
        client.complete(_request())
    assert calls == []


def test_unknown_provider_is_a_configuration_error() -> None:
    registry = ProviderRegistry(api_keys={})

    with pytest.raises(ConfigurationError, match="Unknown LLM provider"):
        registry.get("mystery-ai")


def test_registered_client_overrides_default() -> None:
    class _Client:
        name = "openai"

        def complete(self, request: ProviderRequest):
            raise NotImplementedError

    registry = ProviderRegistry(api_keys={})
    stub = _Client()
    registry.register("OpenAI", stub)

    assert registry.get("openai") is stub
    assert normalize_provider_id(" Gemini ") == "google"
