"""Tests for grading-model providers and the provider-backed invoker."""

from unittest.mock import AsyncMock, patch

import pytest

from eval_engine.providers import (
    GenerationMetrics,
    GenerationResponse,
    GoogleProvider,
    OllamaProvider,
    ProviderFactory,
    ProviderModelInvoker,
    ProviderType,
    split_model_id,
)
from eval_engine.types import ChatMessage
from utils.exceptions import ModelInvocationError
from utils.retry import RetryConfig

MESSAGES = [ChatMessage(role="user", content="Grade this")]
NO_RETRY_DELAY = RetryConfig(max_attempts=2, initial_delay=0.0, jitter=False)


def ok_response(text: str = '{"overall": 8}') -> GenerationResponse:
    return GenerationResponse(
        text=text,
        model="qwen2.5:7b",
        provider=ProviderType.OLLAMA,
        metrics=GenerationMetrics(prompt_tokens=20, completion_tokens=5, total_tokens=25),
    )


def error_response(message: str = "model not found") -> GenerationResponse:
    return GenerationResponse(
        text="",
        model="qwen2.5:7b",
        provider=ProviderType.OLLAMA,
        metrics=GenerationMetrics(),
        error=message,
    )


class TestSplitModelId:
    def test_explicit_provider(self) -> None:
        assert split_model_id("google/gemini-2.5-flash") == ("google", "gemini-2.5-flash")
        assert split_model_id("Ollama/qwen2.5:7b") == ("ollama", "qwen2.5:7b")

    def test_default_provider(self) -> None:
        assert split_model_id("qwen2.5:7b", "ollama") == ("ollama", "qwen2.5:7b")

    def test_unknown_prefix_is_part_of_model(self) -> None:
        assert split_model_id("library/qwen2.5", "ollama") == ("ollama", "library/qwen2.5")


class TestProviderFactory:
    def test_registered_providers(self) -> None:
        assert {"ollama", "google"} <= set(ProviderFactory.available_providers())

    def test_create(self) -> None:
        provider = ProviderFactory.create("ollama", model="qwen2.5:7b", host="http://gpu:11434")
        assert isinstance(provider, OllamaProvider)
        assert provider.host == "http://gpu:11434"
        assert provider.is_local is True

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown provider"):
            ProviderFactory.create("anthropic", model="x")


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_generate_chat(self) -> None:
        provider = OllamaProvider(model="qwen2.5:7b")
        provider._client = AsyncMock()
        provider._client.chat.return_value = {
            "message": {"role": "assistant", "content": '{"overall": 7}'},
            "prompt_eval_count": 30,
            "eval_count": 10,
            "total_duration": 2_000_000_000,
        }

        response = await provider.generate_chat(MESSAGES)

        assert response.success
        assert response.text == '{"overall": 7}'
        assert response.metrics.total_tokens == 40
        assert response.metrics.total_duration_ms == 2000.0
        sent = provider._client.chat.await_args.kwargs
        assert sent["messages"] == [{"role": "user", "content": "Grade this"}]
        assert sent["options"]["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_generate_chat_error(self) -> None:
        provider = OllamaProvider(model="qwen2.5:7b")
        provider._client = AsyncMock()
        provider._client.chat.side_effect = ConnectionError("refused")

        response = await provider.generate_chat(MESSAGES)

        assert response.success is False
        assert response.error == "refused"

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        provider = OllamaProvider(model="qwen2.5:7b")
        provider._client = AsyncMock()
        assert await provider.health_check() is True
        provider._client.list.side_effect = ConnectionError("down")
        assert await provider.health_check() is False


class TestGoogleProvider:
    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        provider = GoogleProvider(model="gemini-2.5-flash")

        response = await provider.generate_chat(MESSAGES)

        assert response.success is False
        assert "API key" in response.error
        assert provider.is_local is False
        assert await provider.health_check() is False


class TestProviderModelInvoker:
    @pytest.mark.asyncio
    async def test_converts_response(self) -> None:
        invoker = ProviderModelInvoker(retry_config=NO_RETRY_DELAY)
        with patch.object(OllamaProvider, "generate_chat", new=AsyncMock(return_value=ok_response())):
            response = await invoker("ollama/qwen2.5:7b", MESSAGES)

        assert response.output == '{"overall": 8}'
        assert response.tokens.input == 20
        assert response.tokens.output == 5
        assert response.tokens.total == 25
        assert response.cost == 0.0
        assert response.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_reuses_provider_per_model(self) -> None:
        invoker = ProviderModelInvoker(retry_config=NO_RETRY_DELAY)
        assert invoker.get_provider("ollama/a") is invoker.get_provider("ollama/a")
        assert invoker.get_provider("ollama/a") is not invoker.get_provider("ollama/b")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        invoker = ProviderModelInvoker(retry_config=NO_RETRY_DELAY)
        generate = AsyncMock(side_effect=[error_response("busy"), ok_response()])
        with patch.object(OllamaProvider, "generate_chat", new=generate):
            response = await invoker("ollama/qwen2.5:7b", MESSAGES)

        assert response.output == '{"overall": 8}'
        assert generate.await_count == 2

    @pytest.mark.asyncio
    async def test_raises_after_retries(self) -> None:
        invoker = ProviderModelInvoker(retry_config=NO_RETRY_DELAY)
        generate = AsyncMock(return_value=error_response("model not found"))
        with patch.object(OllamaProvider, "generate_chat", new=generate):
            with pytest.raises(ModelInvocationError, match="model not found"):
                await invoker("ollama/qwen2.5:7b", MESSAGES)
        assert generate.await_count == 2

    @pytest.mark.asyncio
    async def test_cloud_cost_unknown(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
        invoker = ProviderModelInvoker(retry_config=NO_RETRY_DELAY)
        response = ok_response()
        response.provider = ProviderType.GOOGLE
        with patch.object(GoogleProvider, "generate_chat", new=AsyncMock(return_value=response)):
            result = await invoker("google/gemini-2.5-flash", MESSAGES)
        assert result.cost is None
