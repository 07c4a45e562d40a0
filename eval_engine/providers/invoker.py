"""
Provider-backed ModelInvoker.

Bridges the provider layer to the LLM grading adapter: resolves a model id
such as "ollama/qwen2.5:7b" or "google/gemini-2.5-flash" to a provider,
sends the messages, and converts the response into a ModelResponse.
Provider errors are retried with backoff and finally raised, which the
adapter turns into a failed verdict.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import config as app_config
from utils.exceptions import ModelInvocationError
from utils.retry import RetryableError, RetryConfig, async_retry_with_backoff

from ..types import ChatMessage, ModelResponse, TokenUsage
from .base import BaseProvider, GenerationConfig, ProviderFactory

logger = logging.getLogger(__name__)


def split_model_id(model_id: str, default_provider: Optional[str] = None) -> Tuple[str, str]:
    """Split "provider/model" into its parts.

    Ids without a known provider prefix use the default provider, so
    "qwen2.5:7b" and "library/qwen2.5" both resolve to Ollama by default.
    """
    default_provider = default_provider or app_config.DEFAULT_PROVIDER
    prefix, sep, rest = model_id.partition("/")
    if sep and prefix.lower() in ProviderFactory.available_providers():
        return prefix.lower(), rest
    return default_provider, model_id


class ProviderModelInvoker:
    """Callable ModelInvoker that caches one provider instance per model id."""

    def __init__(
        self,
        generation_config: Optional[GenerationConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        default_provider: Optional[str] = None,
    ):
        self.generation_config = generation_config or GenerationConfig()
        self.retry_config = retry_config or RetryConfig(
            max_attempts=app_config.LLM_MAX_ATTEMPTS,
            initial_delay=app_config.LLM_RETRY_DELAY,
        )
        self.default_provider = default_provider
        self._providers: Dict[str, BaseProvider] = {}

    def get_provider(self, model_id: str) -> BaseProvider:
        provider = self._providers.get(model_id)
        if provider is None:
            provider_name, model = split_model_id(model_id, self.default_provider)
            provider = ProviderFactory.create(
                provider_name, model=model, config=self.generation_config
            )
            self._providers[model_id] = provider
        return provider

    async def _invoke_once(
        self, provider: BaseProvider, messages: List[ChatMessage]
    ) -> ModelResponse:
        start = time.perf_counter()
        response = await provider.generate_chat(messages)
        latency_ms = (time.perf_counter() - start) * 1000

        if not response.success:
            raise RetryableError(response.error)

        metrics = response.metrics
        return ModelResponse(
            output=response.text,
            tokens=TokenUsage(
                input=metrics.prompt_tokens,
                output=metrics.completion_tokens,
                total=metrics.total_tokens,
            ),
            latency_ms=latency_ms,
            cost=0.0 if provider.is_local else None,
        )

    async def __call__(self, model_id: str, messages: List[ChatMessage]) -> ModelResponse:
        """Invoke the grading model.

        Raises:
            ModelInvocationError: If every attempt failed.
            ValueError: If the provider is unknown.
        """
        provider = self.get_provider(model_id)
        try:
            return await async_retry_with_backoff(
                self._invoke_once,
                args=(provider, messages),
                config=self.retry_config,
            )
        except RetryableError as e:
            raise ModelInvocationError(f"{model_id}: {e}") from e
