"""HTTP clients for the supported LLM providers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from applykit.errors import ConfigurationError, ProviderError
from applykit.llm.failure_classifier import TRANSIENT_STATUS_CODES
from applykit.llm.models import ProviderRequest, ProviderResponse

if TYPE_CHECKING:
    from applykit.config import LlmSettings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "applykit/0.1 (+https://github.com/applykit/applykit)"
ANTHROPIC_API_VERSION = "2023-06-01"
ERROR_BODY_PREVIEW_CHARS = 500

PROVIDER_BASE_URLS: dict[str, str] = {
    "openrouter": "https://openrouter.ai/api/v1",
    "requesty": "https://router.requesty.ai/v1",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1",
}
PROVIDER_ALIASES: dict[str, str] = {
    "gemini": "google",
    "router": "requesty",
}


class ProviderClient(Protocol):
    """Protocol implemented by provider clients."""

    name: str

    def complete(self, request: ProviderRequest) -> ProviderResponse:
        """Run one completion and return the raw response text."""


class _HttpProviderClient:
    """Shared request/response plumbing for JSON-over-HTTP providers."""

    def __init__(
        self,
        *,
        name: str,
        base_url: str,
        api_key: str | None,
        timeout_seconds: float = 0.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        timeout = httpx.Timeout(timeout_seconds if timeout_seconds > 0 else None)
        self._client = httpx.Client(
            timeout=timeout,
            headers={"User-Agent": DEFAULT_USER_AGENT},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _require_key(self, model: str) -> str:
        if not self._api_key:
            raise ProviderError(
                f"{self.name} API key is not configured.",
                provider=self.name,
                model=model,
            )
        return self._api_key

    def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        model: str,
    ) -> dict[str, Any]:
        try:
            response = self._client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"{self.name} request timed out: {exc}",
                provider=self.name,
                model=model,
                transient=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.name} network error: {exc}",
                provider=self.name,
                model=model,
                transient=True,
            ) from exc

        if not response.is_success:
            preview = response.text[:ERROR_BODY_PREVIEW_CHARS]
            raise ProviderError(
                f"{self.name} API error: HTTP {response.status_code} {preview}".strip(),
                provider=self.name,
                model=model,
                status_code=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.name} returned a non-JSON body.",
                provider=self.name,
                model=model,
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} returned an unexpected payload.",
                provider=self.name,
                model=model,
                status_code=response.status_code,
            )
        return data

    def _empty_content(self, model: str) -> ProviderError:
        return ProviderError(
            f"{self.name} returned no content.",
            provider=self.name,
            model=model,
            transient=True,
        )


class OpenAICompatibleClient(_HttpProviderClient):
    """Chat completions API as served by OpenAI, OpenRouter, and Requesty."""

    def complete(self, request: ProviderRequest) -> ProviderResponse:
        api_key = self._require_key(request.model)
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_output_tokens,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        headers = {"Authorization": f"Bearer {api_key}"}
        if self.name == "openrouter":
            headers["X-Title"] = "applykit"

        data = self._post_json(
            url=f"{self.base_url}/chat/completions",
            payload=payload,
            headers=headers,
            model=request.model,
        )
        choices = data.get("choices")
        text: str | None = None
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                text = message["content"]
        if not text:
            raise self._empty_content(request.model)

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return ProviderResponse(
            text=text,
            provider=self.name,
            model=str(data.get("model") or request.model),
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            raw=data,
        )


class AnthropicClient(_HttpProviderClient):
    """Anthropic messages API."""

    def complete(self, request: ProviderRequest) -> ProviderResponse:
        api_key = self._require_key(request.model)
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_output_tokens,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if request.temperature is not None:
            payload["temperature"] = request.temperature

        data = self._post_json(
            url=f"{self.base_url}/messages",
            payload=payload,
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_API_VERSION},
            model=request.model,
        )
        content = data.get("content")
        if isinstance(content, list):
            text = "".join(
                item.get("text", "") for item in content if isinstance(item, dict)
            )
        elif isinstance(content, str):
            text = content
        else:
            text = ""
        if not text:
            raise self._empty_content(request.model)

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return ProviderResponse(
            text=text,
            provider=self.name,
            model=str(data.get("model") or request.model),
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            raw=data,
        )


class GeminiClient(_HttpProviderClient):
    """Google Gemini ``generateContent`` API."""

    def complete(self, request: ProviderRequest) -> ProviderResponse:
        api_key = self._require_key(request.model)
        model_path = request.model if request.model.startswith("models/") else f"models/{request.model}"
        text_parts = [request.prompt]
        if request.system_prompt:
            text_parts.insert(0, request.system_prompt)
        generation_config: dict[str, Any] = {"maxOutputTokens": request.max_output_tokens}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature

        data = self._post_json(
            url=f"{self.base_url}/{model_path}:generateContent",
            payload={
                "contents": [{"role": "user", "parts": [{"text": "\n\n".join(text_parts)}]}],
                "generationConfig": generation_config,
            },
            headers={"x-goog-api-key": api_key},
            model=request.model,
        )
        text = _gemini_text(data)
        if not text:
            raise self._empty_content(request.model)

        usage = data.get("usageMetadata") if isinstance(data.get("usageMetadata"), dict) else {}
        return ProviderResponse(
            text=text,
            provider=self.name,
            model=request.model,
            input_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
            raw=data,
        )


_CLIENT_CLASSES: dict[str, type[_HttpProviderClient]] = {
    "openrouter": OpenAICompatibleClient,
    "requesty": OpenAICompatibleClient,
    "openai": OpenAICompatibleClient,
    "anthropic": AnthropicClient,
    "google": GeminiClient,
}


def normalize_provider_id(provider: str) -> str:
    normalized = provider.strip().lower()
    return PROVIDER_ALIASES.get(normalized, normalized)


class ProviderRegistry:
    """Lazily built provider clients keyed by provider id."""

    def __init__(
        self,
        *,
        api_keys: dict[str, str],
        timeout_seconds: float = 0.0,
        base_urls: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_keys = dict(api_keys)
        self._timeout_seconds = timeout_seconds
        self._base_urls = {**PROVIDER_BASE_URLS, **(base_urls or {})}
        self._transport = transport
        self._clients: dict[str, ProviderClient] = {}

    @classmethod
    def from_settings(
        cls,
        settings: LlmSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> ProviderRegistry:
        return cls(
            api_keys=settings.api_keys,
            timeout_seconds=settings.timeout_seconds,
            transport=transport,
        )

    def register(self, name: str, client: ProviderClient) -> None:
        """Install a prebuilt client, replacing any default for that id."""

        self._clients[normalize_provider_id(name)] = client

    def get(self, provider: str) -> ProviderClient:
        """Return the client for ``provider``.

        Raises:
            ConfigurationError: for provider ids with no known client.
        """

        provider_id = normalize_provider_id(provider)
        client = self._clients.get(provider_id)
        if client is not None:
            return client
        client_class = _CLIENT_CLASSES.get(provider_id)
        if client_class is None:
            raise ConfigurationError(f"Unknown LLM provider: {provider!r}")
        client = client_class(
            name=provider_id,
            base_url=self._base_urls[provider_id],
            api_key=self._api_keys.get(provider_id),
            timeout_seconds=self._timeout_seconds,
            transport=self._transport,
        )
        self._clients[provider_id] = client
        return client

    def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                close()
        self._clients.clear()


def _gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        return ""
    content = first.get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
