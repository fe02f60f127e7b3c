"""HTTP clients for language-model backends.

Two wire formats cover every supported provider kind:

    native / openai_compatible / local  ->  POST {base}/chat/completions
    anthropic_compatible                ->  POST {base}/messages

Every failure is raised as a ModelCallError subclass so the fallback
manager can decide whether to move on to the next model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from dexter.config import ProviderAuth, ProviderConfig, ProviderKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 1024


class ModelCallError(Exception):
    """A single model call failed."""

    kind = "error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(ModelCallError):
    kind = "transport"


class AuthenticationError(ModelCallError):
    kind = "auth"


class RateLimitError(ModelCallError):
    kind = "rate_limit"


class InvalidPayloadError(ModelCallError):
    kind = "invalid_payload"


class ModelClient(ABC):
    """One provider endpoint. Stateless apart from the provider snapshot."""

    def __init__(self, provider: ProviderConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.provider = provider
        self._transport = transport

    @abstractmethod
    async def complete(self, model: str, system: str, user: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        """Return the model's text reply or raise ModelCallError."""

    async def list_models(self, timeout: float = DEFAULT_TIMEOUT) -> list[str]:
        """Model names the endpoint advertises. Empty if unsupported."""
        return []

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = self.provider.resolve_api_key()
        auth = self.provider.auth
        if auth is ProviderAuth.BEARER and key:
            headers["Authorization"] = f"Bearer {key}"
        elif auth is ProviderAuth.API_KEY_HEADER and key:
            headers["x-api-key"] = key
        return headers

    def _url(self, path: str) -> str:
        base = self.provider.effective_base_url()
        if not base:
            raise TransportError(f"Provider '{self.provider.id}' has no base URL")
        return f"{base}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, timeout: float, payload: dict | None = None) -> Any:
        if self.provider.requires_credential() and not self.provider.resolve_api_key():
            raise AuthenticationError(f"No API key configured for '{self.provider.id}'")
        url = self._url(path)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out after {timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"HTTP {status}: credentials rejected", status)
        if status == 429:
            raise RateLimitError("HTTP 429: rate limited", status)
        if status >= 400:
            raise TransportError(f"HTTP {status}: {response.text[:200]}", status)
        try:
            return response.json()
        except ValueError as e:
            raise InvalidPayloadError("Response body is not JSON") from e


class OpenAICompatibleClient(ModelClient):
    """Chat-completions wire format (OpenAI, Gemini, DeepSeek, Groq, Ollama...)."""

    async def complete(self, model: str, system: str, user: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        data = await self._request(
            "POST",
            "chat/completions",
            timeout,
            {"model": model, "messages": messages, "temperature": 0},
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidPayloadError("No choices[0].message.content in response") from e
        if not isinstance(content, str) or not content.strip():
            raise InvalidPayloadError("Model returned empty content")
        return content

    async def list_models(self, timeout: float = DEFAULT_TIMEOUT) -> list[str]:
        data = await self._request("GET", "models", timeout)
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise InvalidPayloadError("No data[] in model list")
        names = [str(item["id"]) for item in entries if isinstance(item, dict) and item.get("id")]
        return sorted(set(names))


class AnthropicCompatibleClient(ModelClient):
    """Messages wire format."""

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    async def complete(self, model: str, system: str, user: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": MAX_TOKENS,
            "messages": [{"role": "user", "content": user}],
        }
        if system:
            payload["system"] = system
        data = await self._request("POST", "messages", timeout, payload)
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise InvalidPayloadError("No content[] in response")
        text = "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text.strip():
            raise InvalidPayloadError("Model returned empty content")
        return text


def create_client(
    provider: ProviderConfig, transport: httpx.AsyncBaseTransport | None = None
) -> ModelClient:
    """Pick the wire format for a provider's kind."""
    if provider.kind is ProviderKind.ANTHROPIC_COMPATIBLE:
        return AnthropicCompatibleClient(provider, transport)
    return OpenAICompatibleClient(provider, transport)
