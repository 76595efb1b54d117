"""Chat-completion providers.

Two backends share one small interface: an OpenAI-compatible
``/chat/completions`` endpoint (DeepSeek by default) called with httpx, and
Anthropic's Messages API through the official SDK. Any failure (network
error, timeout, non-2xx) surfaces as ``ServiceUnavailable``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import anthropic
import httpx

from labelhub.config import Settings, get_settings
from labelhub.errors import ServiceUnavailable

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    text: str
    model: str
    total_tokens: Optional[int] = None
    latency_ms: int = 0


class CompletionProvider(Protocol):
    async def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Completion: ...


class OpenAICompatibleProvider:
    """POSTs to ``{base_url}/chat/completions`` (DeepSeek, OpenAI-style APIs)."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        fallback_reply: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.fallback_reply = fallback_reply
        self.transport = transport

    async def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        if not self.api_key:
            raise ServiceUnavailable("Completion API key not configured")

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "content-type": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Completion request timed out after %.0fs", self.timeout)
            raise ServiceUnavailable(f"AI service timed out after {self.timeout:.0f}s") from e
        except httpx.HTTPStatusError as e:
            logger.error("Completion API error %s: %s", e.response.status_code, e.response.text[:500])
            raise ServiceUnavailable(f"AI service error ({e.response.status_code})") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Completion request failed: %s", e)
            raise ServiceUnavailable("AI service unreachable") from e

        latency_ms = int((time.time() - start_time) * 1000)
        choices = result.get("choices") or [{}]
        text = (choices[0].get("message") or {}).get("content") or self.fallback_reply
        return Completion(
            text=text,
            model=result.get("model") or model,
            total_tokens=(result.get("usage") or {}).get("total_tokens"),
            latency_ms=latency_ms,
        )


class AnthropicProvider:
    """Anthropic Messages API; the leading system turn becomes ``system=``."""

    def __init__(
        self,
        api_key: str,
        default_model: str,
        timeout: float = 30.0,
        fallback_reply: str = "",
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self.fallback_reply = fallback_reply
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        if not self.api_key and self._client is None:
            raise ServiceUnavailable("Anthropic API key not configured")

        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [m for m in messages if m["role"] != "system"]
        # Agent configs default to a DeepSeek model name
        model = model if model.startswith("claude") else self.default_model
        start_time = time.time()

        try:
            response = await self._get_client().messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=min(temperature, 1.0),
                system=system,
                messages=turns,
            )
        except anthropic.APIError as e:
            logger.error("Anthropic API error: %s", e)
            raise ServiceUnavailable("AI service error") from e

        latency_ms = int((time.time() - start_time) * 1000)
        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        return Completion(
            text=text or self.fallback_reply,
            model=response.model,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            latency_ms=latency_ms,
        )


def get_provider(settings: Optional[Settings] = None) -> CompletionProvider:
    """Build the provider selected by ``chat.provider``."""
    settings = settings or get_settings()
    chat = settings.chat
    if chat.provider == "anthropic":
        return AnthropicProvider(
            api_key=settings.anthropic.api_key,
            default_model=settings.anthropic.model,
            timeout=chat.timeout_seconds,
            fallback_reply=chat.fallback_reply,
        )
    if chat.provider == "deepseek":
        return OpenAICompatibleProvider(
            api_key=settings.deepseek.api_key,
            base_url=settings.deepseek.base_url,
            timeout=chat.timeout_seconds,
            fallback_reply=chat.fallback_reply,
        )
    raise ValueError(f"Unknown chat provider: {chat.provider}")
