"""
Ollama Provider Implementation

Local grading models served by Ollama.

Usage:
    provider = OllamaProvider(model="qwen2.5:7b")
    response = await provider.generate_chat(messages)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ollama import AsyncClient

import config as app_config

from ..types import ChatMessage
from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    ProviderFactory,
    ProviderType,
)

logger = logging.getLogger(__name__)


class OllamaProvider(BaseProvider):
    """
    Ollama provider for local grading models.

    Connects to the server named by OLLAMA_HOST (default http://localhost:11434).
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        host: Optional[str] = None,
    ):
        """
        Args:
            model: Ollama model name (e.g., "qwen2.5:7b").
            config: Generation configuration.
            timeout: Request timeout in seconds.
            host: Ollama server URL (defaults to OLLAMA_HOST).
        """
        super().__init__(model, config, timeout)
        self.host = host or app_config.OLLAMA_HOST
        self._client = AsyncClient(host=self.host, timeout=timeout)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def _options(self, cfg: GenerationConfig) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "num_predict": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.seed is not None:
            options["seed"] = cfg.seed
        return options

    async def generate_chat(
        self,
        messages: List[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Send messages to Ollama's chat endpoint."""
        cfg = config or self.config
        ollama_messages = [{"role": m.role, "content": m.content} for m in messages]

        try:
            response = await self._client.chat(
                model=self.model,
                messages=ollama_messages,
                options=self._options(cfg),
                stream=False,
            )

            result = GenerationResponse(
                text=response.get("message", {}).get("content", "") or "",
                model=self.model,
                provider=self.provider_type,
                metrics=self._extract_metrics(response),
                timestamp=datetime.now(),
            )
            return result

        except Exception as e:
            logger.error(f"Ollama chat failed: {e}")
            return GenerationResponse(
                text="",
                model=self.model,
                provider=self.provider_type,
                metrics=GenerationMetrics(),
                error=str(e),
            )

    async def list_models(self) -> List[str]:
        """List models pulled on the Ollama server."""
        try:
            response = await self._client.list()
            return [
                m.get("model") or m.get("name", "") for m in response.get("models", [])
            ]
        except Exception as e:
            logger.error(f"Failed to list models: {e}")
            return []

    async def health_check(self) -> bool:
        """Check if the Ollama server is reachable."""
        try:
            await self._client.list()
            return True
        except Exception as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

    def _extract_metrics(self, response: Any) -> GenerationMetrics:
        """Token counts and duration from an Ollama response."""
        prompt_tokens = response.get("prompt_eval_count", 0) or 0
        completion_tokens = response.get("eval_count", 0) or 0

        # Ollama reports durations in nanoseconds
        total_ns = response.get("total_duration", 0) or 0

        return GenerationMetrics(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            total_duration_ms=total_ns / 1_000_000,
        )


ProviderFactory.register("ollama", OllamaProvider)
