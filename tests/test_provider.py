"""Tests for completion providers (no network: httpx mock transport, mocked Anthropic client)."""

import json
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from labelhub.assistant.provider import AnthropicProvider, OpenAICompatibleProvider, get_provider
from labelhub.config import Settings
from labelhub.errors import ServiceUnavailable

MESSAGES = [
    {"role": "system", "content": "Sei l'assistente di X."},
    {"role": "user", "content": "Ciao"},
]


def _deepseek(handler, api_key="sk-test"):
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url="https://api.deepseek.com/",
        timeout=5,
        fallback_reply="Nessuna risposta.",
        transport=httpx.MockTransport(handler),
    )


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_posts_chat_completion(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "deepseek-chat",
                "choices": [{"message": {"role": "assistant", "content": "Ciao!"}}],
                "usage": {"total_tokens": 17},
            })

        result = await _deepseek(handler).complete(MESSAGES, model="deepseek-chat", temperature=0.5, max_tokens=300)

        assert result.text == "Ciao!"
        assert result.total_tokens == 17
        assert seen["url"] == "https://api.deepseek.com/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"] == MESSAGES
        assert seen["body"]["stream"] is False
        assert seen["body"]["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_empty_choice_uses_fallback(self):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        result = await _deepseek(handler).complete(MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=100)
        assert result.text == "Nessuna risposta."
        assert result.total_tokens is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 429, 500, 503])
    async def test_non_2xx_is_service_unavailable(self, status):
        def handler(request):
            return httpx.Response(status, text="boom")

        with pytest.raises(ServiceUnavailable) as exc_info:
            await _deepseek(handler).complete(MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=100)
        assert str(status) in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_is_service_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ServiceUnavailable):
            await _deepseek(handler).complete(MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=100)

    @pytest.mark.asyncio
    async def test_connection_error_is_service_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ServiceUnavailable):
            await _deepseek(handler).complete(MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=100)

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ServiceUnavailable):
            await _deepseek(lambda r: httpx.Response(200), api_key="").complete(
                MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=100
            )


class TestAnthropicProvider:
    def _client(self, text="Ciao da Claude"):
        response = MagicMock()
        response.content = [MagicMock(type="text", text=text)]
        response.model = "claude-haiku-4-5-20251001"
        response.usage = MagicMock(input_tokens=10, output_tokens=5)
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_system_prompt_sent_separately(self):
        client = self._client()
        provider = AnthropicProvider(api_key="", default_model="claude-haiku-4-5-20251001", client=client)

        result = await provider.complete(MESSAGES, model="deepseek-chat", temperature=0.7, max_tokens=200)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Sei l'assistente di X."
        assert kwargs["messages"] == [{"role": "user", "content": "Ciao"}]
        assert kwargs["model"] == "claude-haiku-4-5-20251001"
        assert result.text == "Ciao da Claude"
        assert result.total_tokens == 15

    @pytest.mark.asyncio
    async def test_api_error_is_service_unavailable(self):
        client = MagicMock()
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create = AsyncMock(side_effect=anthropic.APIConnectionError(request=request))
        provider = AnthropicProvider(api_key="", default_model="claude-haiku-4-5-20251001", client=client)

        with pytest.raises(ServiceUnavailable):
            await provider.complete(MESSAGES, model="claude-haiku-4-5-20251001", temperature=0.7, max_tokens=200)


class TestGetProvider:
    def test_default_is_deepseek(self):
        assert isinstance(get_provider(Settings()), OpenAICompatibleProvider)

    def test_anthropic_selected(self):
        settings = Settings()
        settings.chat.provider = "anthropic"
        assert isinstance(get_provider(settings), AnthropicProvider)

    def test_unknown_provider(self):
        settings = Settings()
        settings.chat.provider = "nope"
        with pytest.raises(ValueError):
            get_provider(settings)
